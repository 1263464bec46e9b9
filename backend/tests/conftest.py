"""
Pytest fixtures for back-office tests.

Provides the app on an in-memory database, a per-test clean database,
users for each role with ready-made auth headers, and catalog helpers.
"""

import pytest

from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import Product, User
from backoffice.services.auth_service import (
    ROLE_ADMIN,
    ROLE_MANAGER,
    ROLE_SELLER,
    create_session,
    hash_password,
)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'COMMISSION_FALLBACK_PERCENT': 5,
        'CUSTOMER_CODE_WIDTH': 5,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# Hashing once keeps bcrypt's cost out of every fixture
_PASSWORD = "senha123"
_PASSWORD_HASH = None


def _make_user(db_session, username: str, name: str, role: str) -> User:
    global _PASSWORD_HASH
    if _PASSWORD_HASH is None:
        _PASSWORD_HASH = hash_password(_PASSWORD)
    user = User(username=username, name=name, role=role, password_hash=_PASSWORD_HASH, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    return _make_user(db_session, "admin", "Administrador", ROLE_ADMIN)


@pytest.fixture(scope='function')
def manager_user(db_session):
    return _make_user(db_session, "gerente", "Gerente", ROLE_MANAGER)


@pytest.fixture(scope='function')
def seller_user(db_session):
    return _make_user(db_session, "vendedor", "Vendedor", ROLE_SELLER)


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    _, token = create_session(admin_user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def manager_headers(manager_user):
    _, token = create_session(manager_user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def seller_headers(seller_user):
    _, token = create_session(seller_user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(name, price_cents, stock, **extra)."""
    def _make(name="Produto", price_cents=1000, stock=10, **extra):
        product = Product(name=name, price_cents=price_cents, stock=stock, **extra)
        db_session.add(product)
        db_session.commit()
        return product
    return _make


def get_auth_token(client, username: str, password: str = _PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
