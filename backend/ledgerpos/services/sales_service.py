"""
Sales Service - stock-debiting sale processing

A sale is one document (invoice INV-YYYYMMDD-NNNN) with one or more typed
lines. Creating, editing and deleting a sale each run as a single unit of
work: stock movements, the sale rows and loyalty points are committed
together or not at all.

STOCK:
- Every line debits stock through ledger_service (movement "out").
- All lines are validated up front; every shortfall is reported at once.
- Editing restores the previous lines first, then validates and debits the
  new ones, so the net stock effect equals one delta application.
- Deleting restores every line.

LOYALTY:
- For a loyalty-enrolled customer, lines whose product has a loyalty price
  are repriced at that price.
- When any line was repriced the customer earns floor(final amount) points
  (1 point per whole currency unit, i.e. final_amount_cents // 100).
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import Customer, Product, Sale, SaleLine
from ..models.inventory import MOVEMENT_IN, MOVEMENT_OUT
from ..models.sales import SALE_STATUSES
from ..validation import (
    SaleLineInput,
    coerce_datetime,
    optional_text,
    parse_sale_lines,
    require_text,
)
from .concurrency import lock_for_update, run_atomic
from .customer_service import award_sale_points, get_customer_for_update, reverse_sale_points
from .document_service import next_document_number, DOCUMENT_TYPE_SALE
from .ledger_service import (
    apply_stock_movement,
    lock_products,
    REFERENCE_TYPE_SALE,
    REFERENCE_TYPE_SALE_REVERSAL,
)


SALE_TYPE_SINGLE = "single"
SALE_TYPE_BULK = "bulk"

PAYMENT_META_FIELDS = {
    "payment_method",
    "status",
    "sale_date",
    "customer_name",
    "customer_email",
    "customer_phone",
    "notes",
}

WALK_IN_CUSTOMER_NAME = "Walk-in customer"


def _parse_payment_meta(meta: dict | None, *, partial: bool) -> dict:
    """
    Validate sale header fields.

    partial=False: create semantics (payment_method required, defaults filled)
    partial=True: edit semantics (only provided keys are validated)
    """
    if meta is None:
        meta = {}
    if not isinstance(meta, dict):
        raise ValidationError("payment_meta must be an object")
    for k in meta.keys():
        if k not in PAYMENT_META_FIELDS:
            raise ValidationError(f"Field not allowed: {k}")

    cleaned: dict = {}
    if not partial or "payment_method" in meta:
        cleaned["payment_method"] = require_text(meta.get("payment_method"), "payment_method", max_length=50)
    if not partial or "status" in meta:
        status = meta.get("status") or "completed"
        if status not in SALE_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(sorted(SALE_STATUSES))}")
        cleaned["status"] = status
    if not partial or "sale_date" in meta:
        cleaned["sale_date"] = coerce_datetime(meta.get("sale_date"), "sale_date")
    for k in ("customer_name", "customer_email"):
        if k in meta:
            cleaned[k] = optional_text(meta[k], k)
    if "customer_phone" in meta:
        cleaned["customer_phone"] = optional_text(meta["customer_phone"], "customer_phone", max_length=32)
    if "notes" in meta:
        cleaned["notes"] = optional_text(meta["notes"], "notes", max_length=None)
    return cleaned


def _get_sale_locked(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def _validate_products_active(lines: list[SaleLineInput], products: dict[int, Product]) -> None:
    inactive = sorted({line.product_id for line in lines if not products[line.product_id].is_active})
    if inactive:
        raise ValidationError(
            f"Inactive product(s) cannot be sold: {', '.join(str(i) for i in inactive)}",
            details={"product_ids": inactive},
        )


def _validate_stock(lines: list[SaleLineInput], products: dict[int, Product]) -> None:
    """Collect every shortfall (quantities of repeated products are summed)."""
    requested: dict[int, int] = {}
    for line in lines:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

    insufficient = []
    for product_id, qty in requested.items():
        product = products[product_id]
        if product.stock_quantity < qty:
            insufficient.append({
                "product_id": product_id,
                "product_name": product.name,
                "requested_quantity": qty,
                "available_quantity": product.stock_quantity,
            })

    if insufficient:
        names = ", ".join(
            f"{item['product_name']} (requested {item['requested_quantity']}, available {item['available_quantity']})"
            for item in insufficient
        )
        raise InsufficientStockError(f"Insufficient stock: {names}", details={"items": insufficient})


def _price_lines(
    lines: list[SaleLineInput],
    products: dict[int, Product],
    customer: Customer | None,
) -> list[SaleLine]:
    loyalty_customer = customer is not None and customer.is_loyalty
    priced: list[SaleLine] = []
    for i, line in enumerate(lines):
        product = products[line.product_id]
        unit_price = line.unit_price_cents if line.unit_price_cents is not None else product.price_cents
        loyalty_price_applied = False
        if loyalty_customer and product.loyalty_price_cents is not None:
            unit_price = product.loyalty_price_cents
            loyalty_price_applied = True

        subtotal = unit_price * line.quantity
        final = subtotal - line.discount_cents + line.tax_cents
        if final < 0:
            raise ValidationError(
                f"Line {i + 1}: discount exceeds line total",
                details={"line": i + 1, "subtotal_cents": subtotal, "discount_cents": line.discount_cents},
            )

        priced.append(SaleLine(
            line_number=i + 1,
            product_id=product.id,
            quantity=line.quantity,
            unit_price_cents=unit_price,
            subtotal_cents=subtotal,
            discount_cents=line.discount_cents,
            tax_cents=line.tax_cents,
            final_amount_cents=final,
            loyalty_price_applied=loyalty_price_applied,
        ))
    return priced


def _apply_totals(sale: Sale, lines: list[SaleLine]) -> None:
    sale.subtotal_cents = sum(line.subtotal_cents for line in lines)
    sale.discount_cents = sum(line.discount_cents for line in lines)
    sale.tax_cents = sum(line.tax_cents for line in lines)
    sale.final_amount_cents = sum(line.final_amount_cents for line in lines)
    sale.loyalty_applied = any(line.loyalty_price_applied for line in lines)


def _debit_lines(sale: Sale, products: dict[int, Product], when: datetime | None = None) -> None:
    for line in sale.lines:
        apply_stock_movement(
            products[line.product_id],
            movement_type=MOVEMENT_OUT,
            quantity=line.quantity,
            reference=sale.invoice_number,
            reference_type=REFERENCE_TYPE_SALE,
            reason=f"Sale {sale.invoice_number}",
            movement_date=when,
        )


def _restore_lines(sale: Sale, products: dict[int, Product], reason: str) -> None:
    for line in sale.lines:
        apply_stock_movement(
            products[line.product_id],
            movement_type=MOVEMENT_IN,
            quantity=line.quantity,
            reference=sale.invoice_number,
            reference_type=REFERENCE_TYPE_SALE_REVERSAL,
            reason=reason,
        )


def _points_earned(sale: Sale, customer: Customer | None) -> int:
    if customer is None or not sale.loyalty_applied:
        return 0
    return sale.final_amount_cents // 100


def _award_points(sale: Sale, customer: Customer | None) -> None:
    sale.points_awarded = 0
    points = _points_earned(sale, customer)
    if points:
        sale.points_awarded = award_sale_points(customer, points, reference=sale.invoice_number)


def _settle_points(sale: Sale, customer: Customer | None, previous_points: int) -> None:
    """Post only the difference between the points already awarded and the new award."""
    points = _points_earned(sale, customer)
    delta = points - previous_points
    if customer is not None and delta > 0:
        award_sale_points(customer, delta, reference=sale.invoice_number)
    elif customer is not None and delta < 0:
        reverse_sale_points(customer, -delta, reference=sale.invoice_number)
    sale.points_awarded = points


def _create(lines, customer_id, payment_meta, *, force_bulk: bool) -> Sale:
    parsed = parse_sale_lines(lines)
    meta = _parse_payment_meta(payment_meta, partial=False)
    sale_type = SALE_TYPE_BULK if force_bulk or len(parsed) > 1 else SALE_TYPE_SINGLE

    def _op():
        customer = get_customer_for_update(customer_id) if customer_id is not None else None
        products = lock_products(line.product_id for line in parsed)
        _validate_products_active(parsed, products)
        _validate_stock(parsed, products)
        priced = _price_lines(parsed, products, customer)

        invoice_number = next_document_number(
            document_type=DOCUMENT_TYPE_SALE,
            prefix=current_app.config.get("INVOICE_PREFIX", "INV"),
        )

        sale = Sale(
            invoice_number=invoice_number,
            sale_type=sale_type,
            customer_id=customer.id if customer else None,
            customer_name=meta.get("customer_name") or (customer.name if customer else WALK_IN_CUSTOMER_NAME),
            customer_email=meta.get("customer_email") or (customer.email if customer else None),
            customer_phone=meta.get("customer_phone") or (customer.phone if customer else None),
            payment_method=meta["payment_method"],
            status=meta["status"],
            sale_date=meta["sale_date"],
            notes=meta.get("notes"),
        )
        sale.lines = priced
        _apply_totals(sale, priced)
        db.session.add(sale)
        db.session.flush()

        _debit_lines(sale, products, meta["sale_date"])
        _award_points(sale, customer)
        return sale

    try:
        sale = run_atomic(_op)
    except InsufficientStockError as exc:
        current_app.logger.warning("Sale rejected for insufficient stock: %s", exc.details)
        raise

    current_app.logger.info(
        "Sale %s created (%s line(s), final=%s, points=%s)",
        sale.invoice_number, len(sale.lines), sale.final_amount_cents, sale.points_awarded,
    )
    return sale


def create_sale(lines, customer_id: int | None = None, payment_meta: dict | None = None) -> Sale:
    """
    Create a sale, debit stock and accrue loyalty points atomically.

    Args:
        lines: list of {product_id, quantity, unit_price_cents?, discount_cents?, tax_cents?}
            (or SaleLineInput values)
        customer_id: optional customer; enables loyalty pricing if enrolled
        payment_meta: {payment_method, status?, sale_date?, customer_name?,
            customer_email?, customer_phone?, notes?}

    Raises:
        ValidationError: malformed lines or header fields
        NotFoundError: unknown customer or product
        InsufficientStockError: one or more lines exceed available stock
    """
    return _create(lines, customer_id, payment_meta, force_bulk=False)


def create_bulk_sale(lines, customer_id: int | None = None, payment_meta: dict | None = None) -> Sale:
    """Multi-line sale under one invoice; always recorded as sale_type "bulk"."""
    return _create(lines, customer_id, payment_meta, force_bulk=True)


def update_sale(sale_id: int, new_lines, payment_meta: dict | None = None) -> Sale:
    """
    Replace a sale's lines (and optionally header fields).

    Restore-then-apply: the previous lines are put back into stock, then
    the new lines are validated, priced and debited. Loyalty points move
    by the difference between the old and new award only. Re-issuing the
    same edit leaves stock and points unchanged. A line whose product
    changed restores the old product and debits the new one.
    """
    parsed = parse_sale_lines(new_lines)
    meta = _parse_payment_meta(payment_meta, partial=True)

    def _op():
        sale = _get_sale_locked(sale_id)
        customer = get_customer_for_update(sale.customer_id) if sale.customer_id is not None else None

        product_ids = {line.product_id for line in sale.lines} | {line.product_id for line in parsed}
        products = lock_products(product_ids)

        _restore_lines(sale, products, reason=f"Sale {sale.invoice_number} edited")
        previous_points = sale.points_awarded or 0

        _validate_products_active(parsed, products)
        _validate_stock(parsed, products)
        priced = _price_lines(parsed, products, customer)

        sale.lines.clear()
        db.session.flush()
        sale.lines.extend(priced)
        _apply_totals(sale, priced)
        if len(priced) > 1:
            sale.sale_type = SALE_TYPE_BULK
        for k, v in meta.items():
            setattr(sale, k, v)
        db.session.flush()

        _debit_lines(sale, products)
        _settle_points(sale, customer, previous_points)
        return sale

    try:
        sale = run_atomic(_op)
    except InsufficientStockError as exc:
        current_app.logger.warning("Sale %s edit rejected for insufficient stock: %s", sale_id, exc.details)
        raise

    current_app.logger.info("Sale %s updated (final=%s)", sale.invoice_number, sale.final_amount_cents)
    return sale


def delete_sale(sale_id: int) -> None:
    """Delete a sale, restoring the stock it debited and reversing its points."""
    def _op():
        sale = _get_sale_locked(sale_id)
        customer = get_customer_for_update(sale.customer_id) if sale.customer_id is not None else None
        products = lock_products(line.product_id for line in sale.lines)
        _restore_lines(sale, products, reason=f"Sale {sale.invoice_number} deleted")
        if customer is not None and sale.points_awarded:
            reverse_sale_points(customer, sale.points_awarded, reference=sale.invoice_number)
        invoice_number = sale.invoice_number
        db.session.delete(sale)
        return invoice_number

    invoice_number = run_atomic(_op)
    current_app.logger.info("Sale %s deleted; stock restored", invoice_number)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def list_sales(
    *,
    status: str | None = None,
    start: datetime | str | None = None,
    end: datetime | str | None = None,
    search: str | None = None,
    customer_id: int | None = None,
) -> list[Sale]:
    """Newest first. start/end are inclusive bounds on sale_date."""
    query = db.session.query(Sale)
    if status:
        query = query.filter(Sale.status == status)
    if customer_id is not None:
        query = query.filter(Sale.customer_id == customer_id)
    start_dt = coerce_datetime(start, "start", default_now=False)
    end_dt = coerce_datetime(end, "end", default_now=False)
    if start_dt:
        query = query.filter(Sale.sale_date >= start_dt)
    if end_dt:
        query = query.filter(Sale.sale_date <= end_dt)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Sale.invoice_number.ilike(like),
            Sale.customer_name.ilike(like),
            Sale.customer_email.ilike(like),
            Sale.customer_phone.ilike(like),
        ))
    return query.order_by(Sale.sale_date.desc(), Sale.id.desc()).all()
