"""Errors raised by repositories and translated to API errors by services."""


class RepositoryError(Exception):
    """Base repository error."""


class NotFoundError(RepositoryError):
    """Raised when an entity is not found (or not owned by the caller)."""


class ConflictError(RepositoryError):
    """Raised when an action conflicts with a uniqueness rule."""


class StateError(RepositoryError):
    """Raised when a row is in a state that forbids the action."""


def violates_unique(exc, constraint: str, table: str, columns) -> bool:
    """Whether an IntegrityError came from the named unique constraint or index.

    PostgreSQL reports the constraint name; SQLite only lists the columns.
    """
    message = str(getattr(exc, "orig", None) or exc)
    if constraint in message:
        return True
    sqlite_columns = ", ".join(f"{table}.{column}" for column in columns)
    return message.rstrip().endswith(f"UNIQUE constraint failed: {sqlite_columns}")
