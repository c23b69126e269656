import os
import tempfile
from datetime import datetime, timezone

_DB_DIR = tempfile.mkdtemp(prefix="timegrid-tests-")
os.environ["DATABASE_URL"] = os.environ.get("TEST_DATABASE_URL") or (
    f"sqlite:///{os.path.join(_DB_DIR, 'timegrid.db')}"
)

import jwt  # noqa: E402
import pytest  # noqa: E402
import timeutils  # noqa: E402
from app import app  # noqa: E402
from extensions import db  # noqa: E402
from infra import cache_manager, rate_limiter  # noqa: E402
from models import User  # noqa: E402
from services import idempotency  # noqa: E402

# Wednesday of the week starting Monday 2026-10-12
FROZEN_NOW = datetime(2026, 10, 14, 12, 0, 0)
CSRF_TOKEN = "csrf-token"


@pytest.fixture()
def client():
    app.config.update({"TESTING": True, "API_KEY": None})

    try:
        with app.app_context():
            db.session.remove()
            db.drop_all()
            db.create_all()
    except Exception as exc:  # pragma: no cover - skip if database unavailable
        pytest.skip(f"Database not available: {exc}")

    rate_limiter.reset()
    cache_manager.reset_cache()
    idempotency.reset()

    with app.test_client() as client:
        yield client

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture()
def frozen_now():
    current = {"value": FROZEN_NOW}
    timeutils.set_now_provider(lambda: current["value"])
    yield current
    timeutils.reset_now_provider()


@pytest.fixture()
def make_user(client):
    def _make(username: str = "alice") -> int:
        with app.app_context():
            user = User(username=username, created_at=datetime.now(timezone.utc))
            db.session.add(user)
            db.session.commit()
            return user.id

    return _make


def token_for(user_id: int, **claims) -> str:
    payload = {"sub": str(user_id), "csrf": CSRF_TOKEN, **claims}
    return jwt.encode(payload, app.config["JWT_SECRET"], algorithm=app.config["JWT_ALGORITHM"])


@pytest.fixture()
def auth_headers(make_user):
    def _headers(user_id=None):
        if user_id is None:
            user_id = make_user()
        return {
            "Authorization": f"Bearer {token_for(user_id)}",
            "X-CSRF-Token": CSRF_TOKEN,
        }

    return _headers


@pytest.fixture()
def headers(auth_headers):
    return auth_headers()
