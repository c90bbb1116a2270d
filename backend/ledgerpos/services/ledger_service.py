# Overview: Service-layer operations for the stock ledger; the only code path that changes stock.

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import NegativeStockRejectedError, NotFoundError, ValidationError
from ..models import Product, InventoryMovement
from ..models.inventory import (
    MOVEMENT_TYPES,
    INBOUND_MOVEMENT_TYPES,
    MOVEMENT_ADJUSTMENT_IN,
    MOVEMENT_ADJUSTMENT_OUT,
)
from ..validation import coerce_int, coerce_positive_int, coerce_datetime, optional_text
from .concurrency import lock_for_update, run_atomic
from ledgerpos.time_utils import utcnow
"""
Stock Ledger Invariants (authoritative)

- Product.stock_quantity is the single source of truth for on-hand units.
- apply_stock_movement is the ONLY function that writes stock_quantity.
- Every stock change writes exactly one InventoryMovement in the same
  DB transaction, capturing previous_stock and new_stock.
- Movements are append-only (no updates/deletes).
- Stock may never go negative; a movement that would overdraw raises
  NegativeStockRejectedError and the caller's unit of work rolls back.
"""

REFERENCE_TYPE_OPENING = "opening"
REFERENCE_TYPE_SALE = "sale"
REFERENCE_TYPE_SALE_REVERSAL = "sale_reversal"
REFERENCE_TYPE_PURCHASE = "purchase"
REFERENCE_TYPE_MANUAL = "manual"


def get_product_for_update(product_id: int) -> Product:
    """Load a product with a row lock held for the rest of the transaction."""
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def lock_products(product_ids) -> dict[int, Product]:
    """
    Lock every product in ascending id order (consistent order avoids deadlocks).

    Raises NotFoundError naming every missing id.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    products = (
        lock_for_update(db.session.query(Product).filter(Product.id.in_(ids)))
        .order_by(Product.id.asc())
        .all()
    )
    found = {p.id: p for p in products}
    missing = [pid for pid in ids if pid not in found]
    if missing:
        raise NotFoundError(
            f"Product(s) not found: {', '.join(str(m) for m in missing)}",
            details={"product_ids": missing},
        )
    return found


def apply_stock_movement(
    product: Product,
    *,
    movement_type: str,
    quantity: int,
    reference: str | None = None,
    reference_type: str = REFERENCE_TYPE_MANUAL,
    reason: str | None = None,
    notes: str | None = None,
    movement_date: datetime | None = None,
) -> InventoryMovement:
    """
    Apply one stock change and record it.

    - No commit here: runs inside the caller's unit of work.
    - quantity is always positive; direction comes from movement_type.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(
            f"Invalid movement_type. Must be one of: {', '.join(sorted(MOVEMENT_TYPES))}"
        )
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    previous_stock = product.stock_quantity
    if movement_type in INBOUND_MOVEMENT_TYPES:
        new_stock = previous_stock + quantity
    else:
        new_stock = previous_stock - quantity

    if new_stock < 0:
        raise NegativeStockRejectedError(
            f"Stock for {product.name} cannot go negative",
            details={
                "product_id": product.id,
                "product_name": product.name,
                "movement_type": movement_type,
                "requested_quantity": quantity,
                "available_quantity": previous_stock,
            },
        )

    movement = InventoryMovement(
        product_id=product.id,
        movement_type=movement_type,
        quantity=quantity,
        previous_stock=previous_stock,
        new_stock=new_stock,
        reference=reference,
        reference_type=reference_type,
        reason=reason,
        notes=notes,
        movement_date=movement_date or utcnow(),
    )
    product.stock_quantity = new_stock

    db.session.add(movement)
    db.session.flush()  # ensures movement.id is assigned without committing
    return movement


def record_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity,
    reference: str | None = None,
    reference_type: str | None = None,
    reason: str | None = None,
    notes: str | None = None,
    movement_date=None,
) -> InventoryMovement:
    """
    Record a manual stock movement of any type (in/out/adjustment_in/adjustment_out).

    Raises:
        ValidationError: bad type or quantity
        NotFoundError: product does not exist
        NegativeStockRejectedError: the movement would overdraw stock
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(
            f"Invalid movement_type. Must be one of: {', '.join(sorted(MOVEMENT_TYPES))}"
        )
    qty = coerce_positive_int(quantity, "quantity")
    when = coerce_datetime(movement_date, "movement_date")

    def _op():
        product = get_product_for_update(product_id)
        return apply_stock_movement(
            product,
            movement_type=movement_type,
            quantity=qty,
            reference=optional_text(reference, "reference", max_length=64),
            reference_type=optional_text(reference_type, "reference_type", max_length=32) or REFERENCE_TYPE_MANUAL,
            reason=optional_text(reason, "reason"),
            notes=optional_text(notes, "notes", max_length=None),
            movement_date=when,
        )

    try:
        movement = run_atomic(_op)
    except NegativeStockRejectedError as exc:
        current_app.logger.warning("Rejected %s movement: %s", movement_type, exc.details)
        raise

    current_app.logger.info(
        "Stock movement %s product=%s qty=%s %s->%s",
        movement.movement_type, movement.product_id, movement.quantity,
        movement.previous_stock, movement.new_stock,
    )
    return movement


def adjust_stock(
    product_id: int,
    delta,
    reason: str,
    *,
    force: bool = False,
    notes: str | None = None,
    movement_date=None,
) -> InventoryMovement:
    """
    Manual stock adjustment by a signed delta.

    - delta > 0 -> adjustment_in, delta < 0 -> adjustment_out
    - Overdrawing raises NegativeStockRejectedError, unless force=True:
      a forced adjustment drains stock to exactly zero and records the
      quantity actually removed.
    """
    delta = coerce_int(delta, "delta")
    if delta == 0:
        raise ValidationError("delta must be non-zero")
    reason = optional_text(reason, "reason")
    if not reason:
        raise ValidationError("reason is required for a stock adjustment")
    when = coerce_datetime(movement_date, "movement_date")

    def _op():
        product = get_product_for_update(product_id)

        movement_type = MOVEMENT_ADJUSTMENT_IN if delta > 0 else MOVEMENT_ADJUSTMENT_OUT
        quantity = abs(delta)
        if force and delta < 0 and quantity > product.stock_quantity:
            quantity = product.stock_quantity
            if quantity == 0:
                raise NegativeStockRejectedError(
                    f"{product.name} is already out of stock",
                    details={
                        "product_id": product.id,
                        "product_name": product.name,
                        "requested_quantity": abs(delta),
                        "available_quantity": 0,
                    },
                )

        return apply_stock_movement(
            product,
            movement_type=movement_type,
            quantity=quantity,
            reference="ADJUSTMENT",
            reference_type=REFERENCE_TYPE_MANUAL,
            reason=reason,
            notes=optional_text(notes, "notes", max_length=None),
            movement_date=when,
        )

    try:
        movement = run_atomic(_op)
    except NegativeStockRejectedError as exc:
        current_app.logger.warning("Rejected stock adjustment: %s", exc.details)
        raise

    current_app.logger.info(
        "Stock adjusted product=%s %s %s->%s (%s)",
        movement.product_id, movement.movement_type,
        movement.previous_stock, movement.new_stock, reason,
    )
    return movement


def list_movements(
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    reference: str | None = None,
    limit: int | None = None,
) -> list[InventoryMovement]:
    """Newest first."""
    query = db.session.query(InventoryMovement)
    if product_id is not None:
        query = query.filter(InventoryMovement.product_id == product_id)
    if movement_type:
        if movement_type not in MOVEMENT_TYPES:
            raise ValidationError(f"Invalid movement_type: {movement_type}")
        query = query.filter(InventoryMovement.movement_type == movement_type)
    if reference:
        query = query.filter(InventoryMovement.reference == reference)
    query = query.order_by(InventoryMovement.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()
