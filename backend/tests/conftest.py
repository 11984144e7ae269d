"""Pytest configuration and fixtures."""

import os

# Keep the app's own engine off the filesystem; tests use their own engine below.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import get_db
from app.main import app
# Import all models to ensure they're registered with Base.metadata
from app.models import *
from app.models.customer import Customer
from app.models.product import Product
from app.models.restaurant import Table

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


def role_headers(role: str, user_id: int = 1) -> dict:
    """Auth headers carrying the given role."""
    token = create_access_token({
        "sub": str(user_id),
        "username": f"{role}-{user_id}",
        "role": role,
    })
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiter during tests to avoid flaky failures
    from app.core.rate_limit import limiter as global_limiter
    global_limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict:
    return role_headers("admin")


@pytest.fixture
def waiter_headers() -> dict:
    return role_headers("waiter", user_id=2)


@pytest.fixture
def kitchen_headers() -> dict:
    return role_headers("kitchen", user_id=3)


@pytest.fixture
def table(db_session: Session) -> Table:
    """A free table numbered T1."""
    table = Table(number="T1", description="Window", status="free")
    db_session.add(table)
    db_session.commit()
    db_session.refresh(table)
    return table


@pytest.fixture
def other_table(db_session: Session) -> Table:
    table = Table(number="T2", status="free")
    db_session.add(table)
    db_session.commit()
    db_session.refresh(table)
    return table


@pytest.fixture
def product(db_session: Session) -> Product:
    """Create a test product."""
    product = Product(name="Bandeja Paisa", code="BP01", unit="UND", price=Decimal("1000"), active=True)
    db_session.add(product)
    db_session.commit()
    db_session.refresh(product)
    return product


@pytest.fixture
def second_product(db_session: Session) -> Product:
    product = Product(name="Limonada", code="LM01", unit="UND", price=Decimal("500"), active=True)
    db_session.add(product)
    db_session.commit()
    db_session.refresh(product)
    return product


@pytest.fixture
def customer(db_session: Session) -> Customer:
    """Create a test customer."""
    customer = Customer(name="Consumidor Final", document="222222222")
    db_session.add(customer)
    db_session.commit()
    db_session.refresh(customer)
    return customer
