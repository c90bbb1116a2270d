# Overview: Read-only aggregate reports over sales, purchases, stock and customers.

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import case, func

from ..extensions import db
from ..models import Customer, Product, Purchase, Sale, SaleLine, Supplier
from ..models.purchases import PURCHASE_STATUS_PENDING, PURCHASE_STATUS_RECEIVED
from ..validation import coerce_datetime
from .alert_service import STATUS_NORMAL, evaluate_alerts, stock_status
from ledgerpos.time_utils import to_utc_z, utcnow


TOP_N = 5


def _month_range(start, end) -> tuple[datetime, datetime]:
    """Default range is the current calendar month."""
    start_dt = coerce_datetime(start, "start", default_now=False)
    end_dt = coerce_datetime(end, "end", default_now=False)
    now = utcnow()
    if start_dt is None:
        start_dt = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if end_dt is None:
        next_month = (start_dt.replace(day=28) + timedelta(days=4)).replace(day=1)
        end_dt = next_month - timedelta(microseconds=1)
    return start_dt, end_dt


def _monthly_totals(rows) -> list[dict]:
    totals: dict[str, int] = {}
    for when, amount in rows:
        key = when.strftime("%Y-%m")
        totals[key] = totals.get(key, 0) + int(amount or 0)
    return [{"month": month, "total_cents": totals[month]} for month in sorted(totals)]


def sales_report(start=None, end=None) -> dict:
    start_dt, end_dt = _month_range(start, end)
    in_range = (Sale.sale_date >= start_dt, Sale.sale_date <= end_dt)

    count, revenue, discounts, taxes = db.session.query(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.final_amount_cents), 0),
        func.coalesce(func.sum(Sale.discount_cents), 0),
        func.coalesce(func.sum(Sale.tax_cents), 0),
    ).filter(*in_range).one()

    status_counts = dict(
        db.session.query(Sale.status, func.count(Sale.id)).group_by(Sale.status).all()
    )

    top_products = (
        db.session.query(
            SaleLine.product_id,
            Product.name,
            func.count(SaleLine.id).label("line_count"),
            func.sum(SaleLine.quantity).label("total_quantity"),
            func.sum(SaleLine.final_amount_cents).label("total_revenue"),
        )
        .join(Sale, Sale.id == SaleLine.sale_id)
        .join(Product, Product.id == SaleLine.product_id)
        .filter(*in_range)
        .group_by(SaleLine.product_id, Product.name)
        .order_by(func.sum(SaleLine.final_amount_cents).desc())
        .limit(TOP_N)
        .all()
    )

    monthly = db.session.query(Sale.sale_date, Sale.final_amount_cents).filter(*in_range).all()

    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "total_sales": int(count or 0),
        "total_revenue_cents": int(revenue or 0),
        "total_discount_cents": int(discounts or 0),
        "total_tax_cents": int(taxes or 0),
        "completed_sales": int(status_counts.get("completed", 0)),
        "pending_sales": int(status_counts.get("pending", 0)),
        "top_products": [
            {
                "product_id": row.product_id,
                "name": row.name,
                "line_count": int(row.line_count or 0),
                "total_quantity": int(row.total_quantity or 0),
                "total_revenue_cents": int(row.total_revenue or 0),
            }
            for row in top_products
        ],
        "monthly_totals": _monthly_totals(monthly),
    }


def purchase_report(start=None, end=None) -> dict:
    start_dt, end_dt = _month_range(start, end)
    in_range = (Purchase.order_date >= start_dt, Purchase.order_date <= end_dt)

    count, spent = db.session.query(
        func.count(Purchase.id),
        func.coalesce(func.sum(Purchase.final_cost_cents), 0),
    ).filter(*in_range).one()

    status_counts = dict(
        db.session.query(Purchase.status, func.count(Purchase.id)).group_by(Purchase.status).all()
    )

    top_suppliers = (
        db.session.query(
            Purchase.supplier_id,
            Supplier.name,
            func.count(Purchase.id).label("purchase_count"),
            func.sum(Purchase.final_cost_cents).label("total_spent"),
        )
        .join(Supplier, Supplier.id == Purchase.supplier_id)
        .filter(*in_range)
        .group_by(Purchase.supplier_id, Supplier.name)
        .order_by(func.sum(Purchase.final_cost_cents).desc())
        .limit(TOP_N)
        .all()
    )

    monthly = db.session.query(Purchase.order_date, Purchase.final_cost_cents).filter(*in_range).all()

    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "total_purchases": int(count or 0),
        "total_amount_cents": int(spent or 0),
        "pending_purchases": int(status_counts.get(PURCHASE_STATUS_PENDING, 0)),
        "received_purchases": int(status_counts.get(PURCHASE_STATUS_RECEIVED, 0)),
        "top_suppliers": [
            {
                "supplier_id": row.supplier_id,
                "name": row.name,
                "purchase_count": int(row.purchase_count or 0),
                "total_spent_cents": int(row.total_spent or 0),
            }
            for row in top_suppliers
        ],
        "monthly_totals": _monthly_totals(monthly),
    }


def _category_breakdown(products) -> list[dict]:
    """Per-category stock and retail value; categories without products are left out."""
    rows: dict[int, dict] = {}
    for product in products:
        if product.category is None:
            continue
        row = rows.setdefault(product.category_id, {
            "category_id": product.category_id,
            "category": product.category.name,
            "total_items": 0,
            "total_units": 0,
            "total_value_cents": 0,
            "low_stock": 0,
        })
        row["total_items"] += 1
        row["total_units"] += product.stock_quantity
        row["total_value_cents"] += product.stock_quantity * product.price_cents
        if stock_status(product.stock_quantity, product.minimum_stock) != STATUS_NORMAL:
            row["low_stock"] += 1
    return sorted(rows.values(), key=lambda row: row["category"])


def inventory_overview() -> dict:
    """Stock counts and value at cost (products without a cost price are skipped in the value)."""
    products = db.session.query(Product).order_by(Product.name.asc()).all()

    total_units = 0
    stock_value_cents = 0
    retail_value_cents = 0
    for product in products:
        total_units += product.stock_quantity
        retail_value_cents += product.stock_quantity * product.price_cents
        if product.cost_price_cents is not None:
            stock_value_cents += product.stock_quantity * product.cost_price_cents

    return {
        "total_products": len(products),
        "active_products": sum(1 for p in products if p.is_active),
        "total_units": total_units,
        "stock_value_cents": stock_value_cents,
        "retail_value_cents": retail_value_cents,
        "categories": _category_breakdown(products),
        "alerts": evaluate_alerts(),
    }


def customer_report() -> dict:
    total, loyalty, points = db.session.query(
        func.count(Customer.id),
        func.coalesce(func.sum(case((Customer.is_loyalty.is_(True), 1), else_=0)), 0),
        func.coalesce(func.sum(Customer.loyalty_points), 0),
    ).one()

    top_customers = (
        db.session.query(
            Customer.id,
            Customer.name,
            func.count(Sale.id).label("sale_count"),
            func.sum(Sale.final_amount_cents).label("total_spent"),
        )
        .join(Sale, Sale.customer_id == Customer.id)
        .group_by(Customer.id, Customer.name)
        .order_by(func.sum(Sale.final_amount_cents).desc())
        .limit(TOP_N)
        .all()
    )

    return {
        "total_customers": int(total or 0),
        "loyalty_customers": int(loyalty or 0),
        "outstanding_points": int(points or 0),
        "top_customers": [
            {
                "customer_id": row.id,
                "name": row.name,
                "sale_count": int(row.sale_count or 0),
                "total_spent_cents": int(row.total_spent or 0),
            }
            for row in top_customers
        ],
    }
