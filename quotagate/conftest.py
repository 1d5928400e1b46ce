# quotagate/conftest.py
import os

import pytest

# Point every engine at a throwaway in-memory database before settings load
os.environ.setdefault("TEST_DATABASE_URL", "sqlite://")

from quotagate.core.config import settings  # noqa: E402
from quotagate.core.database import (  # noqa: E402
    get_db_session,
    get_session_factory,
    init_engine,
    reset_database,
)
from quotagate.features.catalog.service import seed_catalog  # noqa: E402
from quotagate.features.entitlements.service import EntitlementEngine  # noqa: E402
from quotagate.tests.mocks import TEST_FEATURES, TEST_PLANS, RecordingNotifier  # noqa: E402


ADMIN_KEY = "test-admin-key"


@pytest.fixture(autouse=True)
def db():
    """Fresh in-memory database per test."""
    engine = init_engine("sqlite://")
    reset_database()
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """One transaction, committed when the test finishes."""
    with get_db_session(session_factory) as s:
        yield s


@pytest.fixture
def catalog(session_factory):
    with get_db_session(session_factory) as s:
        seed_catalog(s, plan_config=TEST_PLANS, feature_config=TEST_FEATURES)
    return TEST_PLANS


@pytest.fixture
def file_session_factory(db, tmp_path):
    """Seeded file-backed SQLite, for tests that need separate connections."""
    file_engine = init_engine(f"sqlite:///{tmp_path / 'quotagate.db'}")
    reset_database()
    factory = get_session_factory()
    with get_db_session(factory) as s:
        seed_catalog(s, plan_config=TEST_PLANS, feature_config=TEST_FEATURES)
    yield factory
    file_engine.dispose()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(session_factory, notifier):
    return EntitlementEngine(session_factory=session_factory, notifier=notifier)


@pytest.fixture
def admin_key(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_KEY", ADMIN_KEY)
    return ADMIN_KEY


@pytest.fixture
def admin_headers(admin_key):
    return {"X-Admin-Key": admin_key}


@pytest.fixture
def client(engine):
    from fastapi.testclient import TestClient
    from quotagate.main import app
    from quotagate.api.entitlements import get_entitlement_engine

    app.dependency_overrides[get_entitlement_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()
