# Overview: Service-layer operations for suppliers; encapsulates business logic and database work.

"""
Supplier Service

Suppliers are required on every purchase order. A supplier is never
deleted once it has purchases; deactivate it instead.
"""

from sqlalchemy import or_

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Supplier
from ..validation import optional_text, require_text
from .concurrency import run_atomic


def create_supplier(
    *,
    name: str,
    contact_person: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    address: str | None = None,
    notes: str | None = None,
) -> Supplier:
    """
    Create a new supplier.

    Raises:
        ValidationError: If the name is missing or a field is too long
    """
    supplier = Supplier(
        name=require_text(name, "name"),
        contact_person=optional_text(contact_person, "contact_person"),
        email=optional_text(email, "email"),
        phone=optional_text(phone, "phone", max_length=32),
        address=optional_text(address, "address", max_length=None),
        notes=optional_text(notes, "notes", max_length=None),
        is_active=True,
    )

    def _op():
        db.session.add(supplier)
        db.session.flush()
        return supplier

    return run_atomic(_op)


def get_supplier(supplier_id: int, *, require_active: bool = False) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if not supplier:
        raise NotFoundError(f"Supplier {supplier_id} not found", details={"supplier_id": supplier_id})
    if require_active and not supplier.is_active:
        raise ValidationError(f"Supplier {supplier.name} is inactive", details={"supplier_id": supplier_id})
    return supplier


def list_suppliers(*, search: str | None = None, include_inactive: bool = False) -> list[Supplier]:
    query = db.session.query(Supplier)
    if not include_inactive:
        query = query.filter(Supplier.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Supplier.name.ilike(like), Supplier.contact_person.ilike(like)))
    return query.order_by(Supplier.name.asc()).all()
