"""
Pytest fixtures for commerce backend tests.

Provides test database setup, catalog / shopper factories, service
instances, and test client.
"""

from decimal import Decimal

import pytest
from commerce import create_app
from commerce.extensions import db
from commerce.models import Product, ProductVariant, PaymentMethod
from commerce.services.cart_service import CartService
from commerce.services.checkout_service import CheckoutService
from commerce.services.guest_service import GuestService, hash_password
from commerce.services.order_service import OrderCreationService
from commerce.services.payment_service import PaymentService
from commerce.models import User
from commerce.store import DocumentStore


SHIPPING_ADDRESS = {
    "name": "Jane Doe",
    "line1": "1 Main St",
    "city": "Springfield",
    "postal_code": "12345",
    "country": "US",
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        # Minimum bcrypt cost keeps conversions fast
        'BCRYPT_ROUNDS': 4,
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


# =============================================================================
# SERVICES
# =============================================================================

@pytest.fixture(scope='function')
def store(db_session):
    return DocumentStore()


@pytest.fixture(scope='function')
def cart_service(store):
    return CartService(store)


@pytest.fixture(scope='function')
def checkout_service(store):
    return CheckoutService(store)


@pytest.fixture(scope='function')
def order_service(store):
    return OrderCreationService(store)


@pytest.fixture(scope='function')
def payment_service(store):
    return PaymentService(store)


@pytest.fixture(scope='function')
def guest_service(store, cart_service):
    return GuestService(store, cart_service=cart_service)


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture(scope='function')
def make_user(db_session):
    """Create a registered user."""
    def _make(username="shopper", email=None, password="secret123"):
        user = User(
            username=username,
            email=email or f"{username}@example.com",
            password_hash=hash_password(password),
            first_name="Test",
            last_name="User",
            confirmed=True,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture(scope='function')
def make_product(db_session):
    """Create a catalog product; pass inventory to also create one variant."""
    counter = {"n": 0}

    def _make(price="10.00", title=None, inventory=None, variant_price=None, **fields):
        counter["n"] += 1
        product = Product(
            sku=f"SKU-{counter['n']:03d}",
            title=title or f"Product {counter['n']}",
            description="Test product",
            base_price=Decimal(str(price)),
            **fields,
        )
        db_session.add(product)
        db_session.commit()
        if inventory is None:
            return product, None

        variant = ProductVariant(
            product_id=product.id,
            sku=f"SKU-{counter['n']:03d}-V",
            name="Default",
            price=Decimal(str(variant_price if variant_price is not None else price)),
            inventory=inventory,
        )
        db_session.add(variant)
        db_session.commit()
        return product, variant
    return _make


@pytest.fixture(scope='function')
def payment_method(db_session):
    method = PaymentMethod(code="bank_transfer", name="Bank Transfer", is_active=True)
    db_session.add(method)
    db_session.commit()
    return method


@pytest.fixture(scope='function')
def checkout_ready(cart_service, checkout_service, make_product):
    """
    Guest cart with two lines (2 x 50.00 variant + 1 x 50.00 product) and an
    active checkout session to a US address: 150.00 of goods plus 12.00 tax,
    free shipping, 162.00 USD waiting to be placed.
    """
    def _make(session_id="sess-checkout"):
        product_a, variant_a = make_product(price="50.00", inventory=5)
        product_b, _ = make_product(price="50.00")

        cart = cart_service.create_guest_cart(session_id)
        cart_service.add_item(cart.id, product_a.id, 2, variant_id=variant_a.id)
        cart_service.add_item(cart.id, product_b.id, 1)
        session = checkout_service.start_checkout(cart.id, SHIPPING_ADDRESS)
        return cart_service.get_cart(cart.id), session
    return _make


def shopper_headers(session_id=None, user_id=None) -> dict:
    """Helper to create shopper identity headers."""
    headers = {}
    if session_id:
        headers['X-Session-Id'] = session_id
    if user_id is not None:
        headers['X-User-Id'] = str(user_id)
    return headers


def staff_headers(staff_id='admin@example.com') -> dict:
    """Helper to create staff identity headers."""
    return {'X-Staff-Id': staff_id}
