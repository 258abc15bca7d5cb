# tests/conftest.py
"""
Pytest configuration and fixtures shared by the service and API tests.

The environment is pointed at a throw-away SQLite file before anything from
``storefront`` is imported, because configuration is read at import time.
"""

import os
import tempfile

_TEST_DB_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"
os.environ["MONITORING_ENABLED"] = "false"
os.environ["MONITORING_CONFIG_PATH"] = ""
os.environ["JWT_SECRET"] = "test-secret"
os.environ["SMTP_HOST"] = ""
os.environ["ADMIN_EMAILS"] = ""
os.environ["STRUCTURED_LOGS_ENABLED"] = "false"

import pytest
from werkzeug.security import generate_password_hash

from storefront.database import Base, SessionLocal, engine
from storefront.main import app as flask_app
from storefront.models import Category, Product, User, UserRole
from storefront.observability.metrics import reset_metrics
from storefront.security import TokenBlacklist, create_access_token
from storefront.services.notification_service import NotificationService

DEFAULT_PASSWORD = "password123"


@pytest.fixture(autouse=True)
def _fresh_state():
    """Every test starts with empty tables and empty in-process stores."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    reset_metrics()
    TokenBlacklist.clear()
    NotificationService().clear_notifications()
    yield
    NotificationService().clear_notifications()


@pytest.fixture
def app():
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def db_session():
    """Create a fresh database session for each test"""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make_user(role=UserRole.CUSTOMER, is_active=True, password=DEFAULT_PASSWORD, **overrides):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            username=overrides.pop("username", f"testuser_{n}"),
            email=overrides.pop("email", f"test_{n}@example.com"),
            role=role,
            is_active=is_active,
            **overrides,
        )
        user.passwordHash = generate_password_hash(password)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def customer(make_user):
    return make_user(username="customer", email="customer@example.com")


@pytest.fixture
def admin(make_user):
    return make_user(role=UserRole.ADMIN, username="admin", email="admin@example.com")


def bearer(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def auth_headers():
    return bearer


@pytest.fixture
def customer_headers(customer):
    return bearer(customer)


@pytest.fixture
def admin_headers(admin):
    return bearer(admin)


@pytest.fixture
def category(db_session):
    category = Category(name="Electronics", slug="electronics", description="Gadgets")
    db_session.add(category)
    db_session.commit()
    db_session.refresh(category)
    return category


@pytest.fixture
def sample_products(db_session, category):
    """Create sample products for testing"""
    products = [
        Product(
            name="Test Product 1",
            description="Wireless keyboard",
            price=10.99,
            stock=100,
            categoryID=category.categoryID,
            sku="TP-1",
            images=[],
            tags=[],
            specifications=[],
        ),
        Product(
            name="Test Product 2",
            description="Noise cancelling headphones",
            price=25.50,
            discount_price=20.00,
            stock=5,
            categoryID=category.categoryID,
            sku="TP-2",
            is_featured=True,
            images=[],
            tags=[],
            specifications=[],
        ),
    ]
    for product in products:
        db_session.add(product)
    db_session.commit()
    for product in products:
        db_session.refresh(product)
    return products


@pytest.fixture
def shipping_address():
    return {
        "full_name": "Jane Doe",
        "phone": "+1 555 123 4567",
        "address": "1 Main Street",
        "city": "Springfield",
        "zip_code": "12345",
        "country": "US",
    }
