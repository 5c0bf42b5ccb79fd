import os
from decimal import Decimal

# Must be set before the application modules create the engine and Redis client
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_ENABLED"] = "false"
os.environ.setdefault("SECRET_KEY", "restaurant-pos-test-secret-key-0123456789")

import pytest
from fastapi.testclient import TestClient

import auth
import main
import models
from database import Base, SessionLocal, engine
from redis_client import cart_store


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    cart_store._local.clear()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def menu(db):
    """Item A at 10.00, Item B at 5.00 and an unavailable Item C."""
    items = [
        models.MenuItem(name="Item A", price=Decimal("10.00"), category="Mains"),
        models.MenuItem(name="Item B", price=Decimal("5.00"), category="Drinks"),
        models.MenuItem(name="Item C", price=Decimal("7.50"), category="Mains", is_available=False),
    ]
    db.add_all(items)
    db.commit()
    return {item.name: item.id for item in items}


@pytest.fixture
def dining_tables(db):
    tables = [
        models.Table(id=1, name="Table 1", capacity=4, location="Main Dining", table_type="Regular"),
        models.Table(id=2, name="Table 2", capacity=2, location="Main Dining", table_type="Regular"),
        models.Table(id=3, name="Table 3", capacity=6, location="Terrace", table_type="Regular"),
    ]
    db.add_all(tables)
    db.commit()
    return [table.id for table in tables]


@pytest.fixture
def client():
    return TestClient(main.app)


@pytest.fixture
def login_as(db):
    """Create a user with the given role and return bearer headers for it."""
    def _login_as(username, role, name=None):
        user = models.User(
            username=username,
            password=auth.get_password_hash("secret-pass"),
            name=name or username.title(),
            role=role,
        )
        db.add(user)
        db.commit()
        token = auth.create_access_token({"sub": username, "role": role})
        return {"Authorization": f"Bearer {token}"}
    return _login_as
