"""
Stock ledger tests.

Every stock change goes through apply_stock_movement and leaves exactly one
InventoryMovement with before/after values.
"""

import pytest

from ledgerpos.errors import NegativeStockRejectedError, NotFoundError, ValidationError
from ledgerpos.extensions import db
from ledgerpos.models import InventoryMovement, Product
from ledgerpos.models.inventory import ImmutableRecordError
from ledgerpos.services import ledger_service


def _movements(product_id):
    return (
        db.session.query(InventoryMovement)
        .filter_by(product_id=product_id)
        .order_by(InventoryMovement.id.asc())
        .all()
    )


class TestOpeningStock:
    """Opening stock is written through the ledger."""

    def test_opening_stock_creates_in_movement(self, db_session, make_product):
        product = make_product("Widget", stock=12)

        moves = _movements(product.id)
        assert product.stock_quantity == 12
        assert len(moves) == 1
        assert moves[0].movement_type == "in"
        assert moves[0].reference == "OPENING"
        assert (moves[0].previous_stock, moves[0].new_stock) == (0, 12)

    def test_zero_opening_stock_writes_no_movement(self, db_session, make_product):
        product = make_product("Empty", stock=0)
        assert _movements(product.id) == []


class TestAdjustStock:

    def test_positive_delta_is_adjustment_in(self, db_session, make_product):
        product = make_product(stock=5)

        movement = ledger_service.adjust_stock(product.id, 3, "Recount")

        assert movement.movement_type == "adjustment_in"
        assert movement.quantity == 3
        assert (movement.previous_stock, movement.new_stock) == (5, 8)
        assert db.session.get(Product, product.id).stock_quantity == 8

    def test_negative_delta_is_adjustment_out(self, db_session, make_product):
        product = make_product(stock=5)

        movement = ledger_service.adjust_stock(product.id, -2, "Damaged")

        assert movement.movement_type == "adjustment_out"
        assert movement.quantity == 2
        assert movement.new_stock == 3
        assert movement.reason == "Damaged"

    def test_overdraw_is_rejected_and_nothing_changes(self, db_session, make_product):
        product = make_product(stock=2)

        with pytest.raises(NegativeStockRejectedError) as exc_info:
            ledger_service.adjust_stock(product.id, -5, "Shrinkage")

        assert exc_info.value.details["available_quantity"] == 2
        assert exc_info.value.details["requested_quantity"] == 5
        assert db.session.get(Product, product.id).stock_quantity == 2
        assert len(_movements(product.id)) == 1  # only the opening entry

    def test_forced_overdraw_drains_to_zero(self, db_session, make_product):
        product = make_product(stock=2)

        movement = ledger_service.adjust_stock(product.id, -5, "Flood", force=True)

        assert movement.quantity == 2
        assert movement.new_stock == 0
        assert db.session.get(Product, product.id).stock_quantity == 0

    def test_forced_adjustment_on_empty_product_is_rejected(self, db_session, make_product):
        product = make_product(stock=0)

        with pytest.raises(NegativeStockRejectedError):
            ledger_service.adjust_stock(product.id, -1, "Flood", force=True)

    def test_zero_delta_is_invalid(self, db_session, make_product):
        product = make_product(stock=1)
        with pytest.raises(ValidationError):
            ledger_service.adjust_stock(product.id, 0, "Nothing")

    def test_reason_is_required(self, db_session, make_product):
        product = make_product(stock=1)
        with pytest.raises(ValidationError):
            ledger_service.adjust_stock(product.id, 1, "  ")

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            ledger_service.adjust_stock(9999, 1, "Recount")


class TestRecordMovement:

    def test_out_movement_debits(self, db_session, make_product):
        product = make_product(stock=10)

        movement = ledger_service.record_movement(
            product_id=product.id,
            movement_type="out",
            quantity=4,
            reference="MANUAL-1",
        )

        assert movement.new_stock == 6
        assert movement.reference_type == "manual"

    def test_invalid_type(self, db_session, make_product):
        product = make_product(stock=10)
        with pytest.raises(ValidationError):
            ledger_service.record_movement(product_id=product.id, movement_type="teleport", quantity=1)

    def test_quantity_must_be_positive(self, db_session, make_product):
        product = make_product(stock=10)
        with pytest.raises(ValidationError):
            ledger_service.record_movement(product_id=product.id, movement_type="in", quantity=0)


class TestLedgerImmutability:

    def test_movement_cannot_be_updated(self, db_session, make_product):
        product = make_product(stock=3)
        movement = _movements(product.id)[0]

        movement.reason = "rewritten"
        with pytest.raises(ImmutableRecordError):
            db.session.flush()
        db.session.rollback()

    def test_movement_cannot_be_deleted(self, db_session, make_product):
        product = make_product(stock=3)
        movement = _movements(product.id)[0]

        db.session.delete(movement)
        with pytest.raises(ImmutableRecordError):
            db.session.flush()
        db.session.rollback()


def test_list_movements_newest_first(db_session, make_product):
    product = make_product(stock=5)
    ledger_service.adjust_stock(product.id, 1, "Found one")
    ledger_service.adjust_stock(product.id, -2, "Broken")

    moves = ledger_service.list_movements(product_id=product.id)
    assert [m.movement_type for m in moves] == ["adjustment_out", "adjustment_in", "in"]

    limited = ledger_service.list_movements(product_id=product.id, movement_type="adjustment_in", limit=5)
    assert len(limited) == 1


def test_stock_always_matches_ledger(db_session, make_product):
    product = make_product(stock=10)
    ledger_service.adjust_stock(product.id, -3, "Sample")
    ledger_service.adjust_stock(product.id, 7, "Delivery")
    ledger_service.adjust_stock(product.id, -20, "Write-off", force=True)

    moves = _movements(product.id)
    net = sum(m.signed_quantity for m in moves)
    assert net == db.session.get(Product, product.id).stock_quantity == 0
    for earlier, later in zip(moves, moves[1:]):
        assert earlier.new_stock == later.previous_stock
