"""
Shared test fixtures.

Sets up an isolated SQLite database so tests never touch the
real ledger. Tables are created before each test and dropped
after it, so no test data persists.
"""

import os

# base.py builds its engine at import time from DATABASE_URL
os.environ["DATABASE_URL"] = "sqlite:///./test.db"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import vn_ledger.models  # noqa: F401
from vn_ledger.main import app
from vn_ledger.models.base import Base, get_db
from vn_ledger.models.enums import Role
from vn_ledger.schemas.common import Actor


TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)

TestSessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
)


@pytest.fixture(autouse=True)
def setup_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    """Provide a database session for direct service testing."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client(db_session):
    """
    Provide a test client bound to the test session.

    get_db is overridden so the app and the test share one
    session and see each other's writes.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


# --- Actors ---

@pytest.fixture
def accountant():
    return Actor(username="ketoan01", role=Role.ACCOUNTANT)


@pytest.fixture
def chief():
    return Actor(username="ktt", role=Role.CHIEF_ACCOUNTANT)


@pytest.fixture
def admin():
    return Actor(username="admin", role=Role.ADMIN)
