# backend/ledgerpos/services/products_service.py
"""
Products Service

Catalogue maintenance. Stock is NOT a writable field here: opening stock is
posted through the ledger on create, and later changes go through sales,
purchases or ledger_service.adjust_stock.

DELETION: a product referenced by a sale line, a purchase line or a stock
movement cannot be deleted (the ledger is append-only); deactivate it.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Category, InventoryMovement, Product, PurchaseLine, SaleLine, Supplier
from ..models.inventory import MOVEMENT_IN
from ..validation import (
    coerce_cents,
    coerce_int,
    optional_text,
    require_text,
    validate_patch,
)
from .concurrency import lock_for_update, run_atomic
from .ledger_service import apply_stock_movement, REFERENCE_TYPE_OPENING

PRODUCT_MUTABLE_FIELDS = {
    "sku",
    "barcode",
    "name",
    "description",
    "price_cents",
    "loyalty_price_cents",
    "cost_price_cents",
    "minimum_stock",
    "supplier_id",
    "category_id",
    "is_active",
}

# Columns that must be unique across products when set
UNIQUE_PRODUCT_CODES = ("sku", "barcode")


def _clean_product_fields(patch: dict) -> dict:
    cleaned: dict = {}
    for k, v in patch.items():
        if k == "name":
            cleaned[k] = require_text(v, "name")
        elif k in UNIQUE_PRODUCT_CODES:
            cleaned[k] = optional_text(v, k, max_length=64)
        elif k == "description":
            cleaned[k] = optional_text(v, "description", max_length=None)
        elif k == "price_cents":
            cleaned[k] = coerce_cents(v, "price_cents")
        elif k in ("loyalty_price_cents", "cost_price_cents"):
            cleaned[k] = coerce_cents(v, k, default=None)
        elif k == "minimum_stock":
            minimum = coerce_int(v, "minimum_stock")
            if minimum < 0:
                raise ValidationError("minimum_stock must be >= 0")
            cleaned[k] = minimum
        elif k == "supplier_id":
            supplier_id = None if v is None else coerce_int(v, "supplier_id")
            if supplier_id is not None and db.session.get(Supplier, supplier_id) is None:
                raise NotFoundError(f"Supplier {supplier_id} not found", details={"supplier_id": supplier_id})
            cleaned[k] = supplier_id
        elif k == "category_id":
            category_id = None if v is None else coerce_int(v, "category_id")
            if category_id is not None and db.session.get(Category, category_id) is None:
                raise NotFoundError(f"Category {category_id} not found", details={"category_id": category_id})
            cleaned[k] = category_id
        elif k == "is_active":
            cleaned[k] = bool(v)
    return cleaned


def _ensure_unique_codes(fields: dict, product_id: int | None = None) -> None:
    for column in UNIQUE_PRODUCT_CODES:
        value = fields.get(column)
        if not value:
            continue
        query = db.session.query(Product.id).filter(getattr(Product, column) == value)
        if product_id is not None:
            query = query.filter(Product.id != product_id)
        if query.first():
            raise ValidationError(f"{column.upper()} {value} already exists", details={column: value})


# =============================================================================
# Categories
# =============================================================================

def create_category(*, name: str, description: str | None = None, color: str | None = None) -> Category:
    """
    Create a product category.

    Raises:
        ValidationError: name missing or already used
    """
    name = require_text(name, "name")
    if db.session.query(Category.id).filter(Category.name == name).first():
        raise ValidationError(f"Category {name} already exists", details={"name": name})

    def _op():
        category = Category(
            name=name,
            description=optional_text(description, "description", max_length=None),
            color=optional_text(color, "color", max_length=16),
        )
        db.session.add(category)
        db.session.flush()
        return category

    return run_atomic(_op)


def list_categories() -> list[Category]:
    return db.session.query(Category).order_by(Category.name.asc()).all()


# =============================================================================
# Products
# =============================================================================

def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def find_product_by_barcode(barcode: str) -> Product:
    """Scanner lookup. Only active products are returned."""
    barcode = (barcode or "").strip()
    if not barcode:
        raise ValidationError("barcode is required")
    product = (
        db.session.query(Product)
        .filter(Product.barcode == barcode, Product.is_active.is_(True))
        .first()
    )
    if product is None:
        raise NotFoundError(f"No active product with barcode {barcode}", details={"barcode": barcode})
    return product


def list_products(
    *,
    search: str | None = None,
    active_only: bool = False,
    category_id: int | None = None,
) -> list[Product]:
    query = db.session.query(Product)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Product.name.ilike(like), Product.sku.ilike(like), Product.barcode.ilike(like)))
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def create_product(*, patch: dict, stock_quantity=0) -> Product:
    """
    Create a product.

    A non-zero opening stock is posted as an "in" movement (reference
    OPENING) in the same transaction, so the ledger explains every unit.

    Raises:
        ValidationError: missing name, bad values, or a duplicate SKU/barcode
        NotFoundError: supplier_id or category_id does not exist
    """
    patch = validate_patch(patch, PRODUCT_MUTABLE_FIELDS)
    if "name" not in patch:
        raise ValidationError("Missing required fields: name")
    fields = _clean_product_fields(patch)

    opening = coerce_int(stock_quantity, "stock_quantity")
    if opening < 0:
        raise ValidationError("stock_quantity must be >= 0")

    _ensure_unique_codes(fields)

    def _op():
        product = Product(stock_quantity=0, **fields)
        db.session.add(product)
        db.session.flush()
        if opening:
            apply_stock_movement(
                product,
                movement_type=MOVEMENT_IN,
                quantity=opening,
                reference="OPENING",
                reference_type=REFERENCE_TYPE_OPENING,
                reason="Opening stock",
            )
        return product

    product = run_atomic(_op)
    current_app.logger.info("Created product %s (%s) opening stock %s", product.id, product.name, opening)
    return product


def update_product(product_id: int, patch: dict) -> Product:
    """Update catalogue fields. stock_quantity is rejected: use adjust_stock."""
    if isinstance(patch, dict) and "stock_quantity" in patch:
        raise ValidationError("stock_quantity cannot be patched; record a stock adjustment instead")
    patch = validate_patch(patch, PRODUCT_MUTABLE_FIELDS)
    fields = _clean_product_fields(patch)

    def _op():
        product = get_product(product_id)
        _ensure_unique_codes(fields, product.id)
        for k, v in fields.items():
            setattr(product, k, v)
        return product

    return run_atomic(_op)


def delete_product(product_id: int) -> None:
    """
    Delete a product that has never been traded.

    Raises:
        NotFoundError: product does not exist
        ValidationError: sales, purchases or stock movements reference it
    """
    def _op():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", details={"product_id": product_id})

        references = {
            "sales": db.session.query(SaleLine.id).filter_by(product_id=product.id).count(),
            "purchases": db.session.query(PurchaseLine.id).filter_by(product_id=product.id).count(),
            "movements": db.session.query(InventoryMovement.id).filter_by(product_id=product.id).count(),
        }
        if any(references.values()):
            raise ValidationError(
                f"Cannot delete product {product.name} with related sales, purchases or stock movements; "
                "deactivate it instead",
                details={"product_id": product.id, **references},
            )
        name = product.name
        db.session.delete(product)
        return name

    name = run_atomic(_op)
    current_app.logger.info("Deleted product %s (%s)", product_id, name)
