"""Pytest configuration and fixtures for teamcoach tests.

Test isolation strategy:
- DATABASE_URL defaults to in-memory SQLite (schema created from the models);
  point it at a migrated PostgreSQL database to run the suite there
- Tests that use db_session get an outer transaction that rolls back
- Every store, route and the auth callback in a test share that one session
- Auth tests use authenticated_client with test JWT tokens
"""

import os
import sys
from collections.abc import Generator
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from teamcoach.app import create_app
from teamcoach.auth.middleware import AuthMiddleware
from teamcoach.config import clear_settings_cache, get_settings
from teamcoach.db.engine import create_db_engine
from teamcoach.db.session import get_db
from teamcoach.schemas.account import AccountOut, IdentityClaim
from teamcoach.stores import Stores, build_stores
from tests.helpers import FakeClock, create_test_subject
from tests.support.test_verifier import MockJwtVerifier
from tests.utils.db import TestDatabaseManager, ensure_schema


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    """One engine for the whole session; schema is ensured once."""
    engine = create_db_engine(os.environ["DATABASE_URL"])
    ensure_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine: Engine) -> Generator[Session, None, None]:
    """Provide a database session with savepoint isolation.

    Each test gets a fresh session that is rolled back after the test,
    ensuring no data persists between tests.
    """
    with TestDatabaseManager(engine) as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stores(clock: FakeClock) -> Stores:
    """Fresh caches and stores per test, on a hand-driven clock."""
    return build_stores(get_settings(), clock=clock)


def _bind_db(app: FastAPI, db_session: Session) -> None:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def client(db_session: Session, stores: Stores) -> Generator[TestClient, None, None]:
    """Provide a FastAPI test client without authentication.

    Suitable for public endpoints and error-envelope checks.
    """
    app = create_app(skip_auth_middleware=True, stores=stores)
    _bind_db(app, db_session)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def test_verifier() -> MockJwtVerifier:
    return MockJwtVerifier()


@pytest.fixture
def authenticated_app(db_session: Session, stores: Stores) -> FastAPI:
    """App with auth middleware using the test verifier.

    Identity resolution runs the real reconciler on the test session.
    """

    def identity_callback(claim: IdentityClaim) -> AccountOut:
        return stores.identity.resolve(db_session, claim)

    app = create_app(skip_auth_middleware=True, stores=stores)
    _bind_db(app, db_session)
    app.add_middleware(
        AuthMiddleware,
        verifier=MockJwtVerifier(),
        requires_internal_header=False,
        internal_secret=None,
        identity_callback=identity_callback,
    )
    return app


@pytest.fixture
def authenticated_client(authenticated_app: FastAPI) -> Generator[TestClient, None, None]:
    """Client with auth middleware. Use auth_headers() to authenticate requests."""
    with TestClient(authenticated_app) as client:
        yield client


@pytest.fixture
def subject() -> str:
    return create_test_subject()


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
