import os
from contextlib import redirect_stderr, redirect_stdout
from datetime import datetime, timedelta, timezone
from io import StringIO
from pathlib import Path

import pytest

# Ensure tests run against SQLite when DATABASE_URL is not defined
os.environ.setdefault("DATABASE_URL", "sqlite:////tmp/advisory_test.db")

from alembic import command
from alembic.config import Config
from fastapi.testclient import TestClient

from advisory.config import Settings
from advisory.db import dispose_session_factory, init_db
from advisory.dependencies import get_redis, get_stripe_gateway
from advisory.main import app
from advisory.models import Booking, Event, StripeEvent, User
from tests.utils.fakes import FakeRedis, FakeStripeGateway


def _sqlite_path() -> Path | None:
    db_url = os.environ.get("DATABASE_URL", "")
    if db_url.startswith("sqlite:///"):
        return Path(db_url.replace("sqlite:///", ""))
    return None


@pytest.fixture(scope="session", autouse=True)
def apply_migrations():
    """Apply Alembic migrations to a fresh database before running tests."""
    db_path = _sqlite_path()
    if db_path is not None and db_path.exists():
        db_path.unlink()
    cfg_path = Path(__file__).resolve().parent.parent / "alembic.ini"
    config = Config(str(cfg_path))
    stdout_buf, stderr_buf = StringIO(), StringIO()
    try:
        with redirect_stdout(stdout_buf), redirect_stderr(stderr_buf):
            command.upgrade(config, "head")
    except Exception as exc:
        print("Alembic upgrade failed:", exc)
        print("stdout:\n", stdout_buf.getvalue())
        print("stderr:\n", stderr_buf.getvalue())
        raise
    yield
    db_path = _sqlite_path()
    if db_path is not None and db_path.exists():
        db_path.unlink()


@pytest.fixture(scope="session")
def session_factory(apply_migrations):
    factory = init_db(Settings())
    yield factory
    dispose_session_factory(factory)


@pytest.fixture(autouse=True)
def clean_tables(session_factory):
    with session_factory() as db:
        for model in (Booking, Event, StripeEvent, User):
            db.query(model).delete()
        db.commit()
    yield


@pytest.fixture
def make_user(session_factory):
    """Create a subscriber; retainer fields default to an active, unused period."""

    def _make(user_id: str = "user-1", **fields) -> str:
        now = datetime.now(timezone.utc)
        values = {
            "email": f"{user_id}@example.com",
            "retainer_active": True,
            "retainer_period_start": now - timedelta(days=1),
            "retainer_period_end": now + timedelta(days=29),
            "retainer_sessions_used": 0,
            "retainer_sessions_this_week": 0,
            "retainer_last_session_week": None,
        }
        values.update(fields)
        with session_factory() as db:
            db.add(User(id=user_id, **values))
            db.commit()
        return user_id

    return _make


@pytest.fixture
def load_user(session_factory):
    def _load(user_id: str = "user-1") -> User | None:
        with session_factory() as db:
            return db.get(User, user_id)

    return _load


@pytest.fixture(autouse=True)
def mock_redis():
    fake = FakeRedis()
    app.dependency_overrides[get_redis] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_redis, None)


@pytest.fixture
def fake_gateway():
    gateway = FakeStripeGateway.from_settings(Settings())
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway
    yield gateway
    app.dependency_overrides.pop(get_stripe_gateway, None)


@pytest.fixture
def client(session_factory):
    """Yields a TestClient with lifespan events."""
    with TestClient(app) as client:
        yield client
