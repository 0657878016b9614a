# tests/conftest.py
import os

# Keep the test run away from any local database file and .env overrides
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdefghijklmnop")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("LOG_JSON", "false")

import itertools
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clinicgate import models
from clinicgate.config import get_settings
from clinicgate.database import create_tables, drop_tables, get_db
from clinicgate.limiter import RateLimiterRegistry
from clinicgate.main import create_app
from clinicgate.roles import Role
from clinicgate.security import create_access_token, get_password_hash

DEFAULT_PASSWORD = "Vivid-Orbit-42"

_sequence = itertools.count(1)


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(bind=test_engine)
    yield test_engine
    drop_tables(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def rate_limiters(clock):
    return RateLimiterRegistry.from_settings(get_settings(), clock=clock)


@pytest.fixture
def app(db_session, rate_limiters):
    application = create_app(settings=get_settings(), rate_limiters=rate_limiters)

    def override_get_db():
        yield db_session

    application.dependency_overrides[get_db] = override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    # Lifespan is not entered, so no cleanup task and no tables on the default engine
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def make_user(db_session):
    def _make_user(role=Role.PATIENT, verified=True, email=None, name=None, password=DEFAULT_PASSWORD):
        n = next(_sequence)
        user = models.User(
            name=name or f"User {n}",
            email=email or f"user{n}@example.com",
            hashed_password=get_password_hash(password),
            role=role,
            email_verified=datetime(2024, 1, 1, tzinfo=timezone.utc) if verified else None,
            is_active=verified,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_patient(db_session):
    def _make_patient(user=None, first_name="Asha", last_name="Rao"):
        patient = models.Patient(
            first_name=first_name,
            last_name=last_name,
            email=user.email if user else None,
            user_id=user.id if user else None,
        )
        db_session.add(patient)
        db_session.commit()
        db_session.refresh(patient)
        return patient

    return _make_patient


@pytest.fixture
def auth_headers():
    def _auth_headers(user) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user)}"}

    return _auth_headers
