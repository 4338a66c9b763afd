import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure backend/ is importable as the top-level "poolcast" package even when pytest runs from repo root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

# Ensure the application runs in test/sqlite mode *before* importing any poolcast modules
os.environ["ENV"] = "test"
os.environ.setdefault("TEST_DATABASE_URL", "sqlite://")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.pop("GAS_PRICE_API_KEY", None)

# Import the DB session module first so we can patch it before the app is imported
import poolcast.db.session as db_session  # noqa: E402

# --- Use a single in-memory SQLite DB for the whole test session ---
ENGINE = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    future=True,
)
SessionTesting = sessionmaker(bind=ENGINE, autocommit=False, autoflush=False, future=True)

# --- Ensure tests and app code share the SAME in-memory engine/sessionmaker ---
setattr(db_session, "ENGINE", ENGINE)
db_session.SessionLocal = SessionTesting
db_session.get_engine = lambda: ENGINE  # type: ignore

from poolcast.db.base import Base  # noqa: E402
from poolcast.db.session import get_db  # noqa: E402
from poolcast.main import app  # noqa: E402
from poolcast.services.inference import default_engine  # noqa: E402

from _helpers import FakeEngine, make_observations  # noqa: E402

# 2024-03-04 is a Monday
NOW = datetime(2024, 3, 4, 10, 20, tzinfo=timezone.utc)

Base.metadata.create_all(bind=ENGINE)


@pytest.fixture(scope="function")
def reset_db():
    Base.metadata.drop_all(bind=ENGINE)
    Base.metadata.create_all(bind=ENGINE)
    yield
    Base.metadata.drop_all(bind=ENGINE)
    Base.metadata.create_all(bind=ENGINE)


@pytest.fixture(scope="function")
def db(reset_db):
    session = SessionTesting()

    def _override_get_db():
        try:
            yield session
        finally:
            pass

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture(scope="function")
def fake_engine():
    return FakeEngine()


@pytest.fixture(scope="function")
def client(db, fake_engine):
    app.dependency_overrides[default_engine] = lambda: fake_engine
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.pop(default_engine, None)


@pytest.fixture(scope="function")
def now():
    return NOW


@pytest.fixture(scope="function")
def history(db, now):
    """Ten days of hourly observations ending at the hour before ``now``."""
    from poolcast.services.store import append_observations

    end = now.replace(minute=0) - timedelta(hours=1)
    records = make_observations(end - timedelta(hours=239), 240)
    append_observations(db, records)
    return records
