# Overview: Service-layer operations for purchase orders and goods receipt.

"""
Purchase Service

LIFECYCLE:
1. pending: Created; lines and header may still be edited or the order deleted
2. received: Stock credited for every line (movement "in"), exactly once

IMMUTABLE: Once received, a purchase cannot be modified, deleted or received
again (AlreadyReceivedError).

DESIGN:
- Supplier is REQUIRED on the purchase header
- Purchase numbers (PUR-YYYYMMDD-NNNN) come from the per-day document counter
- Line total = unit cost x quantity; line final = total + shipping + tax
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..errors import AlreadyReceivedError, NotFoundError, ValidationError
from ..models import Purchase, PurchaseLine, Supplier
from ..models.inventory import MOVEMENT_IN
from ..models.purchases import PURCHASE_STATUS_PENDING, PURCHASE_STATUS_RECEIVED
from ..validation import (
    PurchaseLineInput,
    coerce_datetime,
    coerce_int,
    optional_text,
    parse_purchase_lines,
    require_text,
)
from .concurrency import lock_for_update, run_atomic
from .document_service import next_document_number, DOCUMENT_TYPE_PURCHASE
from .ledger_service import apply_stock_movement, lock_products, REFERENCE_TYPE_PURCHASE
from .supplier_service import get_supplier
from ledgerpos.time_utils import utcnow


PURCHASE_TYPE_SINGLE = "single"
PURCHASE_TYPE_BULK = "bulk"

PURCHASE_STATUSES = {PURCHASE_STATUS_PENDING, PURCHASE_STATUS_RECEIVED}

PURCHASE_META_FIELDS = {"payment_method", "order_date", "expected_delivery_date", "notes", "supplier_id"}


def _parse_purchase_meta(meta: dict | None, *, partial: bool) -> dict:
    if meta is None:
        meta = {}
    if not isinstance(meta, dict):
        raise ValidationError("payment_meta must be an object")
    for k in meta.keys():
        if k not in PURCHASE_META_FIELDS:
            raise ValidationError(f"Field not allowed: {k}")

    cleaned: dict = {}
    if not partial or "payment_method" in meta:
        cleaned["payment_method"] = require_text(meta.get("payment_method"), "payment_method", max_length=50)
    if not partial or "order_date" in meta:
        cleaned["order_date"] = coerce_datetime(meta.get("order_date"), "order_date")
    if "expected_delivery_date" in meta:
        cleaned["expected_delivery_date"] = coerce_datetime(
            meta["expected_delivery_date"], "expected_delivery_date", default_now=False
        )
    if "notes" in meta:
        cleaned["notes"] = optional_text(meta["notes"], "notes", max_length=None)
    if partial and "supplier_id" in meta:
        cleaned["supplier_id"] = coerce_int(meta["supplier_id"], "supplier_id")
    return cleaned


def _get_purchase_locked(purchase_id: int) -> Purchase:
    purchase = lock_for_update(db.session.query(Purchase).filter_by(id=purchase_id)).first()
    if not purchase:
        raise NotFoundError(f"Purchase {purchase_id} not found", details={"purchase_id": purchase_id})
    return purchase


def _ensure_pending(purchase: Purchase) -> None:
    if purchase.status == PURCHASE_STATUS_RECEIVED:
        raise AlreadyReceivedError(
            f"Purchase {purchase.purchase_number} has already been received",
            details={
                "purchase_id": purchase.id,
                "purchase_number": purchase.purchase_number,
                "received_date": purchase.received_date.isoformat() if purchase.received_date else None,
            },
        )


def _build_lines(lines: list[PurchaseLineInput]) -> list[PurchaseLine]:
    built = []
    for i, line in enumerate(lines):
        total = line.unit_cost_cents * line.quantity
        built.append(PurchaseLine(
            line_number=i + 1,
            product_id=line.product_id,
            quantity=line.quantity,
            unit_cost_cents=line.unit_cost_cents,
            total_cost_cents=total,
            shipping_cost_cents=line.shipping_cost_cents,
            tax_cents=line.tax_cents,
            final_cost_cents=total + line.shipping_cost_cents + line.tax_cents,
        ))
    return built


def _apply_totals(purchase: Purchase, lines: list[PurchaseLine]) -> None:
    purchase.total_cost_cents = sum(line.total_cost_cents for line in lines)
    purchase.shipping_cost_cents = sum(line.shipping_cost_cents for line in lines)
    purchase.tax_cents = sum(line.tax_cents for line in lines)
    purchase.final_cost_cents = sum(line.final_cost_cents for line in lines)
    purchase.purchase_type = PURCHASE_TYPE_BULK if len(lines) > 1 else PURCHASE_TYPE_SINGLE


def create_purchase(lines, supplier_id: int, payment_meta: dict | None = None) -> Purchase:
    """
    Create a pending purchase order. Stock is not touched until receipt.

    Args:
        lines: list of {product_id, quantity, unit_cost_cents, shipping_cost_cents?, tax_cents?}
        supplier_id: supplier placing the order (REQUIRED)
        payment_meta: {payment_method, order_date?, expected_delivery_date?, notes?}

    Raises:
        ValidationError: malformed lines or header fields
        NotFoundError: unknown supplier or product
    """
    parsed = parse_purchase_lines(lines)
    supplier_id = coerce_int(supplier_id, "supplier_id")
    meta = _parse_purchase_meta(payment_meta, partial=False)

    def _op():
        supplier = get_supplier(supplier_id)
        lock_products(line.product_id for line in parsed)

        purchase_number = next_document_number(
            document_type=DOCUMENT_TYPE_PURCHASE,
            prefix=current_app.config.get("PURCHASE_PREFIX", "PUR"),
        )
        built = _build_lines(parsed)
        purchase = Purchase(
            purchase_number=purchase_number,
            supplier_id=supplier.id,
            status=PURCHASE_STATUS_PENDING,
            payment_method=meta["payment_method"],
            order_date=meta["order_date"],
            expected_delivery_date=meta.get("expected_delivery_date"),
            notes=meta.get("notes"),
        )
        purchase.lines = built
        _apply_totals(purchase, built)
        db.session.add(purchase)
        db.session.flush()
        return purchase

    purchase = run_atomic(_op)
    current_app.logger.info(
        "Purchase %s created (%s line(s), final=%s)",
        purchase.purchase_number, len(purchase.lines), purchase.final_cost_cents,
    )
    return purchase


def receive_purchase(purchase_id: int) -> Purchase:
    """
    Receive a pending purchase: credit stock for every line.

    Raises:
        NotFoundError: purchase does not exist
        AlreadyReceivedError: purchase was received before (stock unchanged)
    """
    def _op():
        purchase = _get_purchase_locked(purchase_id)
        _ensure_pending(purchase)

        now = utcnow()
        products = lock_products(line.product_id for line in purchase.lines)
        for line in purchase.lines:
            apply_stock_movement(
                products[line.product_id],
                movement_type=MOVEMENT_IN,
                quantity=line.quantity,
                reference=purchase.purchase_number,
                reference_type=REFERENCE_TYPE_PURCHASE,
                reason=f"Purchase {purchase.purchase_number} received",
                movement_date=now,
            )

        purchase.status = PURCHASE_STATUS_RECEIVED
        purchase.received_date = now
        db.session.flush()
        return purchase

    try:
        purchase = run_atomic(_op)
    except AlreadyReceivedError as exc:
        current_app.logger.warning("Rejected receive of purchase %s: %s", purchase_id, exc.details)
        raise

    current_app.logger.info(
        "Purchase %s received; %s unit(s) credited",
        purchase.purchase_number, purchase.total_quantity,
    )
    return purchase


def update_purchase(purchase_id: int, new_lines=None, payment_meta: dict | None = None) -> Purchase:
    """Edit a pending purchase. new_lines=None keeps the current lines."""
    parsed = parse_purchase_lines(new_lines) if new_lines is not None else None
    meta = _parse_purchase_meta(payment_meta, partial=True)

    def _op():
        purchase = _get_purchase_locked(purchase_id)
        _ensure_pending(purchase)

        if "supplier_id" in meta:
            get_supplier(meta["supplier_id"])
        for k, v in meta.items():
            setattr(purchase, k, v)

        if parsed is not None:
            lock_products(line.product_id for line in parsed)
            built = _build_lines(parsed)
            purchase.lines.clear()
            db.session.flush()
            purchase.lines.extend(built)
            _apply_totals(purchase, built)
        db.session.flush()
        return purchase

    purchase = run_atomic(_op)
    current_app.logger.info("Purchase %s updated", purchase.purchase_number)
    return purchase


def delete_purchase(purchase_id: int) -> None:
    """Delete a pending purchase. Received purchases are part of the stock history."""
    def _op():
        purchase = _get_purchase_locked(purchase_id)
        _ensure_pending(purchase)
        number = purchase.purchase_number
        db.session.delete(purchase)
        return number

    number = run_atomic(_op)
    current_app.logger.info("Purchase %s deleted", number)


def get_purchase(purchase_id: int) -> Purchase:
    purchase = db.session.get(Purchase, purchase_id)
    if not purchase:
        raise NotFoundError(f"Purchase {purchase_id} not found", details={"purchase_id": purchase_id})
    return purchase


def list_purchases(
    *,
    status: str | None = None,
    supplier_id: int | None = None,
    start: datetime | str | None = None,
    end: datetime | str | None = None,
    search: str | None = None,
) -> list[Purchase]:
    """Newest first. start/end are inclusive bounds on order_date."""
    query = db.session.query(Purchase)
    if status:
        if status not in PURCHASE_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(sorted(PURCHASE_STATUSES))}")
        query = query.filter(Purchase.status == status)
    if supplier_id is not None:
        query = query.filter(Purchase.supplier_id == supplier_id)
    start_dt = coerce_datetime(start, "start", default_now=False)
    end_dt = coerce_datetime(end, "end", default_now=False)
    if start_dt:
        query = query.filter(Purchase.order_date >= start_dt)
    if end_dt:
        query = query.filter(Purchase.order_date <= end_dt)
    if search:
        like = f"%{search.strip()}%"
        query = query.join(Supplier).filter(or_(
            Purchase.purchase_number.ilike(like),
            Supplier.name.ilike(like),
        ))
    return query.order_by(Purchase.order_date.desc(), Purchase.id.desc()).all()
