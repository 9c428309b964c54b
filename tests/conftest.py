"""
Pytest configuration and fixtures

Tests run against an in-memory SQLite database. The schema is created fresh
for every test and dropped afterwards, so nothing leaks between tests.
Redis caching is disabled; the app falls back to uncached reads.
"""
import os
import sys

# Must be set before core.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CACHE_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "text"
os.environ["TERRA_SIGNING_SECRET"] = "test-terra-secret"
os.environ.pop("WHOOP_CLIENT_SECRET", None)

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# And this directory, for the fixtures package
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest
from uuid import uuid4
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

from core.config import settings
from core.database import Base, SessionLocal, engine, get_db
import models  # noqa: F401
from models import ProviderConnection, User


@pytest.fixture(autouse=True)
def _ensure_encryption_key(monkeypatch):
    """Valid Fernet key for token encryption; the cached cipher is reset around each test."""
    import services.token_encryption as te_mod
    monkeypatch.setattr(settings, "TOKEN_ENCRYPTION_KEY", Fernet.generate_key().decode())
    te_mod._token_encryption = None
    yield
    te_mod._token_encryption = None


@pytest.fixture
def db_session():
    """
    Fresh schema and a session for one test.

    The same session is handed to the app through a get_db override so
    fixtures and request handlers see the same data.
    """
    from main import app

    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    def _override_get_db():
        try:
            yield session
        finally:
            pass

    app.dependency_overrides[get_db] = _override_get_db
    yield session
    app.dependency_overrides.pop(get_db, None)
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    from main import app
    return TestClient(app)


@pytest.fixture
def test_user(db_session):
    user = User(email=f"test_{uuid4()}@example.com", display_name="Test User")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def terra_connection(db_session, test_user):
    """Active Terra connection relaying a Withings scale."""
    connection = ProviderConnection(
        user_id=test_user.id,
        provider="TERRA",
        external_user_id="terra-user-1",
        device_provider="WITHINGS",
        is_active=True,
    )
    db_session.add(connection)
    db_session.commit()
    return connection


@pytest.fixture
def whoop_connection(db_session, test_user):
    """Active Whoop connection with an encrypted access token."""
    from services.token_encryption import encrypt_token
    connection = ProviderConnection(
        user_id=test_user.id,
        provider="WHOOP",
        external_user_id="10129",
        device_provider="WHOOP",
        access_token=encrypt_token("whoop-access-token"),
        refresh_token=encrypt_token("whoop-refresh-token"),
        is_active=True,
    )
    db_session.add(connection)
    db_session.commit()
    return connection
