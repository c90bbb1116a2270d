"""
Concurrent writer tests on a file-backed database.

A second connection changes a product row after the sale has read it and
before the sale writes it. The version check on Product must reject the
stale write, and the unit of work must retry against the fresh row.
"""

import pytest
from sqlalchemy import create_engine, text

from ledgerpos import create_app
from ledgerpos.errors import InsufficientStockError
from ledgerpos.extensions import db
from ledgerpos.models import InventoryMovement, Product, Sale
from ledgerpos.services import products_service, sales_service


CASH = {"payment_method": "cash"}


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_ATTEMPTS': 3,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def other_writer(file_app):
    """A second engine on the same database file, standing in for another process."""
    engine = create_engine(file_app.config['SQLALCHEMY_DATABASE_URI'])
    yield engine
    engine.dispose()


def _write_stock_after_first_lock(monkeypatch, engine, product_id, stock):
    """Commit a competing stock write right after the sale's first product lock."""
    calls = []
    lock_products = sales_service.lock_products

    def _lock(product_ids):
        products = lock_products(product_ids)
        calls.append(sorted(products))
        if len(calls) == 1:
            with engine.begin() as conn:
                conn.execute(
                    text("UPDATE products SET stock_quantity = :stock, version_id = version_id + 1 WHERE id = :id"),
                    {"stock": stock, "id": product_id},
                )
        return products

    monkeypatch.setattr(sales_service, "lock_products", _lock)
    return calls


def _stock(product_id):
    return db.session.get(Product, product_id).stock_quantity


class TestConcurrentSales:

    def test_stale_stock_is_rechecked_after_retry(self, file_app, other_writer, monkeypatch):
        product = products_service.create_product(patch={"name": "Last kettle", "price_cents": 2500}, stock_quantity=5)
        calls = _write_stock_after_first_lock(monkeypatch, other_writer, product.id, 1)

        with pytest.raises(InsufficientStockError) as exc_info:
            sales_service.create_sale([{"product_id": product.id, "quantity": 3}], payment_meta=CASH)

        assert len(calls) == 2
        assert exc_info.value.details["items"][0]["available_quantity"] == 1
        assert _stock(product.id) == 1
        assert db.session.query(Sale).count() == 0
        assert db.session.query(InventoryMovement).filter_by(reference_type="sale").count() == 0

    def test_retry_debits_the_fresh_stock(self, file_app, other_writer, monkeypatch):
        product = products_service.create_product(patch={"name": "Teapot", "price_cents": 1500}, stock_quantity=5)
        calls = _write_stock_after_first_lock(monkeypatch, other_writer, product.id, 3)

        sale = sales_service.create_sale([{"product_id": product.id, "quantity": 3}], payment_meta=CASH)

        assert len(calls) == 2
        assert _stock(product.id) == 0
        assert sale.invoice_number.endswith("-0001")
        out = db.session.query(InventoryMovement).filter_by(reference=sale.invoice_number).one()
        assert (out.previous_stock, out.new_stock) == (3, 0)
