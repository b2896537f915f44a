"""
Pytest fixtures for ShopSphere backend tests.

Provides test database setup, catalog fixtures, and test client.
"""

import pytest
from shopsphere import create_app
from shopsphere.extensions import db
from shopsphere.models import User, Product, LoyaltyAccount
from shopsphere.services import inventory_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'OTP_PROCESSING_DELAY_SECONDS': 0,
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


@pytest.fixture(scope='function')
def customer(db_session):
    """Create a customer (users table)."""
    user = User(name="Asha Verma", email="asha@example.com")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def other_customer(db_session):
    user = User(name="Rahul Nair", email="rahul@example.com")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def product(db_session):
    """₹1000 product."""
    product = Product(sku="SS-JACKET-01", name="Denim Jacket", category="Apparel", price_paise=100_000)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def cheap_product(db_session):
    """₹50 product, too cheap to earn points on its own."""
    product = Product(sku="SS-SOCKS-01", name="Socks", category="Apparel", price_paise=5_000)
    db_session.add(product)
    db_session.commit()
    return product


def stock(product_id: int, store_location: str, quantity: int, is_available: bool = True):
    """Helper to set the stock of a product at a store."""
    return inventory_service.upsert_store_inventory(
        product_id=product_id,
        store_location=store_location,
        stock_quantity=quantity,
        is_available=is_available,
    )


def on_hand(product_id: int, store_location: str) -> int:
    """Helper to read the current stock of a product at a store."""
    return inventory_service.get_inventory_record(product_id, store_location).stock_quantity


def give_points(user_id: int, points: int) -> LoyaltyAccount:
    """Helper to set a user's loyalty balance directly."""
    account = db.session.query(LoyaltyAccount).filter_by(user_id=user_id).first()
    if account is None:
        account = LoyaltyAccount(user_id=user_id, points_balance=0, total_earned=0)
        db.session.add(account)
    account.points_balance = points
    account.total_earned = max(account.total_earned or 0, points)
    db.session.commit()
    return account
