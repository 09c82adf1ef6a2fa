"""
Pytest fixtures for KasirNest backend tests.

Provides a fresh in-memory database per test, a test client, and helpers
that register accounts and create products through the public API.
"""

import pytest

from kasirnest import create_app
from kasirnest.extensions import db
from kasirnest.services import auth_service, products_service


TEST_PASSWORD = "pw123456"


def make_app(database_uri: str = "sqlite:///:memory:"):
    return create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": database_uri,
        "SQLALCHEMY_ENGINE_OPTIONS": {},
        "BCRYPT_ROUNDS": 4,
        "LOG_LEVEL": "WARNING",
    })


@pytest.fixture(scope='function')
def app():
    """Application with an empty schema, torn down after each test."""
    app = make_app()

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def register(client, username: str, email: str, password: str = TEST_PASSWORD, **extra) -> dict:
    """Register through the API and return the response data (user, token, store...)."""
    response = client.post('/api/auth/register', json={
        'username': username,
        'email': email,
        'password': password,
        **extra,
    })
    assert response.status_code == 201, response.get_json()
    return response.get_json()['data']


def login(client, identifier: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': identifier,
        'password': password,
    })
    assert response.status_code == 200, response.get_json()
    return response.get_json()['data']['token']


def create_product(client, headers: dict, **fields) -> dict:
    payload = {'name': 'Shirt', 'price_cents': 50000, 'stock': 10}
    payload.update(fields)
    response = client.post('/api/products', json=payload, headers=headers)
    assert response.status_code == 201, response.get_json()
    return response.get_json()['data']


def sell(client, headers: dict, product_id: int, quantity: int, **extra):
    return client.post('/api/transactions', json={
        'items': [{'product_id': product_id, 'quantity': quantity}],
        'payment_method': 'cash',
        **extra,
    }, headers=headers)


@pytest.fixture(scope='function')
def owner(client):
    """Owner of a fresh store: registration payload plus ready-made headers."""
    data = register(client, 'alice', 'alice@x.com')
    data['headers'] = auth_headers(data['token'])
    return data


@pytest.fixture(scope='function')
def owner_headers(owner):
    return owner['headers']


@pytest.fixture(scope='function')
def staff_headers(client, owner_headers):
    """A staff member of the owner's store, logged in."""
    response = client.post('/api/users', json={
        'email': 'bob@x.com',
        'username': 'bob',
        'password': TEST_PASSWORD,
        'role': 'staff',
    }, headers=owner_headers)
    assert response.status_code == 201, response.get_json()
    return auth_headers(login(client, 'bob@x.com'))


@pytest.fixture(scope='function')
def other_owner(client):
    """Owner of a second, unrelated store."""
    data = register(client, 'carol', 'carol@x.com')
    data['headers'] = auth_headers(data['token'])
    return data


@pytest.fixture(scope='function')
def store_owner(app):
    """Service-level fixture: (user, store) created without HTTP."""
    user, store, _membership = auth_service.register_user('dave', 'dave@x.com', TEST_PASSWORD)
    return user, store


@pytest.fixture(scope='function')
def make_product(store_owner):
    """Service-level product factory in the store_owner's store."""
    user, store = store_owner

    def _make(**fields):
        patch = {'name': 'Widget', 'price_cents': 10000, 'stock': 10}
        patch.update(fields)
        return products_service.create_product(store.id, patch, user_id=user.id)

    return _make
