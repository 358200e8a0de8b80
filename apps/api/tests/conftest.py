"""
Pytest configuration and fixtures

Every test gets its own in-memory SQLite database built from the models,
so nothing leaks between tests. Redis is replaced by FakeRedis.
"""
import fnmatch
import os
import sys
from datetime import date

import pytest

# Settings are read at import time: point them at SQLite and keep real Redis out
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CACHE_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "text")

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import sessionmaker

from core.cache import RoutineCache
from core.database import Base, build_engine
from services import routine_store


class FakeRedis:
    """Minimal in-memory Redis mock for unit tests."""

    def __init__(self):
        self._store: dict = {}
        self._ttls: dict = {}

    def get(self, key):
        return self._store.get(key)

    def setex(self, key, ttl, value):
        self._store[key] = value
        self._ttls[key] = ttl

    def delete(self, *keys):
        deleted = 0
        for k in keys:
            if k in self._store:
                deleted += 1
            self._store.pop(k, None)
            self._ttls.pop(k, None)
        return deleted

    def keys(self, pattern):
        return [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]

    def exists(self, key):
        return key in self._store

    def ping(self):
        return True


@pytest.fixture
def engine():
    test_engine = build_engine("sqlite://")
    Base.metadata.create_all(test_engine)
    yield test_engine
    Base.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture
def db_session(engine):
    """Session with the same options as the application's SessionLocal."""
    TestSession = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    session = TestSession()
    yield session
    session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return RoutineCache(fake_redis)


@pytest.fixture
def make_routine(db_session):
    """Factory: create a routine with sensible defaults."""

    def _make(**fields):
        values = {
            "name": "Drink water",
            "times_per_day": 1,
            "schedule": {"type": "daily"},
            "active_from": date(2024, 1, 1),
        }
        values.update(fields)
        return routine_store.create_routine(values, db_session)

    return _make


@pytest.fixture
def client(db_session, cache):
    """TestClient wired to the test session and FakeRedis-backed cache."""
    from fastapi.testclient import TestClient

    from core.cache import get_routine_cache
    from core.database import get_db
    from main import app

    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_routine_cache] = lambda: cache
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
