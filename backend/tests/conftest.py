"""
Pytest fixtures for the Duka backend tests.

Provides an in-memory database, per-test table wipe, shop/user/product
factories and caller headers for the test client.
"""

import pytest

from duka import create_app
from duka.extensions import db
from duka.models import Product, Shop, User, ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
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


def _make_shop(session, code, region, location=None):
    shop = Shop(code=code, name=f"{code} Shop", location=location or region, region=region)
    session.add(shop)
    session.commit()
    return shop


def _make_user(session, email, role, shop=None):
    user = User(
        email=email,
        name=email.split("@")[0].upper(),
        role=role,
        shop_id=shop.id if shop else None,
        is_active=True,
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def shop_ja(db_session):
    """JA, Nyeri region."""
    return _make_shop(db_session, "JA", "Nyeri")


@pytest.fixture(scope='function')
def shop_jc(db_session):
    """JC, Nyeri region."""
    return _make_shop(db_session, "JC", "Nyeri")


@pytest.fixture(scope='function')
def shop_e1(db_session):
    """E1, Nakuru region."""
    return _make_shop(db_session, "E1", "Nakuru")


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "admin@autospare.com", ROLE_ADMIN)


@pytest.fixture(scope='function')
def manager(db_session, shop_ja):
    return _make_user(db_session, "manager@autospare.com", ROLE_MANAGER, shop_ja)


@pytest.fixture(scope='function')
def sales_ja(db_session, shop_ja):
    return _make_user(db_session, "ja@autospare.com", ROLE_SALES, shop_ja)


@pytest.fixture(scope='function')
def sales_jc(db_session, shop_jc):
    return _make_user(db_session, "jc@autospare.com", ROLE_SALES, shop_jc)


@pytest.fixture(scope='function')
def sales_e1(db_session, shop_e1):
    return _make_user(db_session, "e1@autospare.com", ROLE_SALES, shop_e1)


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(shop, sku, stock=..., **fields)."""
    def _make(shop, sku="BRK-001", stock=10, name="Brake Pads - Front",
              price_cents=250_000, cost_cents=180_000, **fields):
        product = Product(
            shop_id=shop.id,
            product_group=shop.code,
            sku=sku,
            name=name,
            price_cents=price_cents,
            cost_cents=cost_cents,
            stock=stock,
            opening_stock=stock,
            **fields,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


def caller_headers(user) -> dict:
    """Helper to create the identity gateway header for a user."""
    return {'X-Caller-Id': str(user.id)}


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """Application on a file database, so each thread gets its own connection."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
