"""
Pytest configuration and fixtures

Tests run against an in-memory SQLite database built from the ORM metadata.
The schema is created fresh for every test and dropped afterwards, so nothing
leaks between tests. The app shares the test's session through a get_db override.
"""
import os
import sys
from uuid import uuid4

# Must be set before anything imports core.config.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-jwt-signing-0123456789")
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["LOG_FORMAT"] = "text"
os.environ["ENVIRONMENT"] = "test"

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from fastapi.testclient import TestClient

from core.database import Base, SessionLocal, engine, get_db
from core.security import create_access_token
from main import app
from models import Profile


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema + session, shared with the app via dependency override."""
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
    return TestClient(app)


@pytest.fixture
def make_profile(db_session):
    """Factory: make_profile(role="coach", email=...) -> committed Profile."""
    def _make(role: str = "athlete", email: str = None, display_name: str = None) -> Profile:
        profile = Profile(
            email=email or f"{role}_{uuid4().hex[:8]}@example.com",
            display_name=display_name or role.title(),
            role=role,
        )
        db_session.add(profile)
        db_session.commit()
        db_session.refresh(profile)
        return profile

    return _make


@pytest.fixture
def athlete(make_profile):
    return make_profile("athlete")


@pytest.fixture
def coach(make_profile):
    return make_profile("coach")


@pytest.fixture
def owner(make_profile):
    return make_profile("owner")


def auth_headers(user: Profile) -> dict:
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}
