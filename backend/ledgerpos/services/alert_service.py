# Overview: Derived stock alert status for products; nothing here is stored.

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..errors import ValidationError
from ..models import Product
from .concurrency import run_atomic
from .ledger_service import get_product_for_update


STATUS_CRITICAL = "critical"
STATUS_LOW = "low"
STATUS_NORMAL = "normal"

ALERT_STATUSES = (STATUS_CRITICAL, STATUS_LOW, STATUS_NORMAL)


def stock_status(stock_quantity: int, minimum_stock: int) -> str:
    """critical at zero stock, low at or below the minimum, normal above it."""
    if stock_quantity <= 0:
        return STATUS_CRITICAL
    if stock_quantity <= minimum_stock:
        return STATUS_LOW
    return STATUS_NORMAL


def _alert_dict(product: Product) -> dict:
    data = product.to_dict()
    data["status"] = stock_status(product.stock_quantity, product.minimum_stock)
    return data


def evaluate_alerts() -> dict:
    """Tally every product by status: {critical, low, normal, total}."""
    counts = {status: 0 for status in ALERT_STATUSES}
    rows = db.session.query(Product.stock_quantity, Product.minimum_stock).all()
    for stock, minimum in rows:
        counts[stock_status(stock, minimum)] += 1
    counts["total"] = len(rows)
    return counts


def list_alerts(
    *,
    status: str | None = None,
    search: str | None = None,
    limit: int | None = None,
) -> list[dict]:
    """
    Products in alert (low or critical), lowest stock first.

    status narrows to one status; "normal" returns the products that are
    not in alert.
    """
    if status is not None and status not in ALERT_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(ALERT_STATUSES)}")

    query = db.session.query(Product)
    if status == STATUS_CRITICAL:
        query = query.filter(Product.stock_quantity == 0)
    elif status == STATUS_LOW:
        query = query.filter(Product.stock_quantity > 0, Product.stock_quantity <= Product.minimum_stock)
    elif status == STATUS_NORMAL:
        query = query.filter(Product.stock_quantity > Product.minimum_stock, Product.stock_quantity > 0)
    else:
        query = query.filter(or_(Product.stock_quantity == 0, Product.stock_quantity <= Product.minimum_stock))

    if search:
        query = query.filter(Product.name.ilike(f"%{search.strip()}%"))

    query = query.order_by(Product.stock_quantity.asc(), Product.id.asc())
    if limit:
        query = query.limit(limit)
    return [_alert_dict(p) for p in query.all()]


def active_alerts() -> list[dict]:
    return list_alerts(limit=current_app.config.get("ACTIVE_ALERT_LIMIT", 10))


def resolve_alert(product_id: int) -> Product:
    """
    Acknowledge an alert by lowering the product's minimum below its stock.

    A product at zero stock keeps a minimum of 0 and stays critical.
    """
    def _op():
        product = get_product_for_update(product_id)
        product.minimum_stock = max(product.stock_quantity - 1, 0)
        return product

    product = run_atomic(_op)
    current_app.logger.info(
        "Stock alert resolved for product %s (minimum_stock=%s)", product.id, product.minimum_stock,
    )
    return product
