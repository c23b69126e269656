from __future__ import annotations

import itertools
import re
from contextlib import contextmanager
from typing import Iterator, Mapping, Optional, Sequence, Tuple, cast

import structlog
from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine, Result

logger = structlog.get_logger("timegrid.db")

Params = Sequence[object] | Mapping[str, object] | None

_PLACEHOLDER = re.compile(r"\?")


def _prepare_statement(sql: str, params: Params) -> Tuple[str, dict]:
    """Rewrite ``?`` placeholders into named binds understood by ``text()``."""
    if params is None:
        return sql, {}
    if isinstance(params, Mapping):
        return sql, dict(params)
    if not isinstance(params, Sequence):
        raise TypeError("Unsupported parameter type; expected sequence or mapping.")

    placeholders = len(_PLACEHOLDER.findall(sql))
    if placeholders != len(params):
        raise ValueError(
            f"Parameter count mismatch: expected {placeholders}, got {len(params)}."
        )
    counter = itertools.count()
    statement = _PLACEHOLDER.sub(lambda _match: f":p{next(counter)}", sql)
    return statement, {f"p{index}": value for index, value in enumerate(params)}


class ResultWrapper:
    def __init__(self, result: Result):
        self._result = result

    def fetchone(self) -> Optional[Mapping[str, object]]:
        row = self._result.fetchone()
        return None if row is None else cast(Mapping[str, object], row._mapping)

    def fetchall(self) -> list[Mapping[str, object]]:
        return [
            cast(Mapping[str, object], row._mapping) for row in self._result.fetchall()
        ]

    def scalar(self):
        return self._result.scalar()

    def scalar_one(self):
        return self._result.scalar_one()

    @property
    def rowcount(self) -> int:
        raw = getattr(self._result, "rowcount", None)
        return int(raw or 0)


class SQLAlchemyConnectionWrapper:
    def __init__(self, connection: Connection):
        self._connection = connection

    def execute(self, sql: str, params: Params = None) -> ResultWrapper:
        statement, bound_params = _prepare_statement(sql, params)
        result = self._connection.execute(text(statement), bound_params)
        return ResultWrapper(result)

    def insert_returning_id(self, sql: str, params: Params = None) -> int:
        """Run an ``INSERT ... RETURNING id`` and hand back the new primary key."""
        return int(self.execute(sql, params).scalar_one())

    def close(self) -> None:
        self._connection.close()


@contextmanager
def transactional_connection(engine: Engine) -> Iterator[SQLAlchemyConnectionWrapper]:
    """Yield a connection inside one transaction; commit on success, roll back on error."""
    with engine.connect() as raw:
        transaction = raw.begin()
        try:
            yield SQLAlchemyConnectionWrapper(raw)
        except Exception as exc:
            transaction.rollback()
            logger.debug("db.transaction_rolled_back", error=type(exc).__name__)
            raise
        transaction.commit()


def connection(engine: Engine) -> SQLAlchemyConnectionWrapper:
    """Plain connection for reads; callers close it."""
    return SQLAlchemyConnectionWrapper(engine.connect())
