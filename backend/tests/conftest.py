"""
Pytest fixtures for ledgerpos backend tests.

Provides the application on an in-memory database, a per-test table wipe,
and small factories for products, suppliers and customers.
"""

import pytest

from ledgerpos import create_app
from ledgerpos.extensions import db
from ledgerpos.services import customer_service, products_service, supplier_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_ATTEMPTS': 1,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema (Core deletes skip the ledger's ORM guards)
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    db.session.expunge_all()

    yield db.session

    # Cleanup after test
    db.session.rollback()


@pytest.fixture(scope='function')
def cli_runner(app):
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def supplier(db_session):
    return supplier_service.create_supplier(name="Acme Wholesale", email="orders@acme.test")


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(name, price_cents=..., stock=..., minimum=..., loyalty_price_cents=...)."""
    counter = {"n": 0}

    def _make(name=None, *, price_cents=1000, stock=0, minimum=0, loyalty_price_cents=None, **extra):
        counter["n"] += 1
        patch = {
            "name": name or f"Product {counter['n']}",
            "price_cents": price_cents,
            "minimum_stock": minimum,
            "loyalty_price_cents": loyalty_price_cents,
        }
        patch.update(extra)
        return products_service.create_product(patch=patch, stock_quantity=stock)

    return _make


@pytest.fixture(scope='function')
def customer(db_session):
    return customer_service.create_customer(name="Walk Regular", email="regular@example.test")


@pytest.fixture(scope='function')
def loyalty_customer(db_session):
    return customer_service.create_customer(name="Lena Loyal", email="lena@example.test", is_loyalty=True)
