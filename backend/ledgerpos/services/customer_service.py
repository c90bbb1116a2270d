# Overview: Service-layer operations for customers and loyalty accounts.

"""
Customer & Loyalty Service

LOYALTY ACCOUNT:
- Enrollment generates a unique card number (LOY<YYYY><NNNN>) and starts
  the balance at 0, but only the first time. Re-enabling keeps the card,
  start date and balance.
- Every balance change appends a LoyaltyPointEntry in the same transaction.
- The balance never goes below zero.

Points earned from sales are credited by sales_service through
award_sale_points / reverse_sale_points, which run inside the sale's
unit of work and do not commit.
"""

from __future__ import annotations

import secrets

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..errors import InvalidPointAmountError, LedgerPosError, NotFoundError, ValidationError
from ..models import Customer, LoyaltyPointEntry
from ..validation import coerce_int, optional_text, require_text, validate_patch
from .concurrency import lock_for_update, run_atomic
from ledgerpos.time_utils import utcnow


ENTRY_EARN = "EARN"
ENTRY_MANUAL = "MANUAL"
ENTRY_REDEEM = "REDEEM"
ENTRY_REVERSAL = "REVERSAL"

CUSTOMER_MUTABLE_FIELDS = {"name", "email", "phone", "address", "notes", "is_loyalty"}

_CODE_ATTEMPTS = 25


def _generate_unique_code(column, prefix: str, digits: int) -> str:
    """PREFIX + current year + random zero-padded digits, unique in column."""
    year = utcnow().year
    upper = 10 ** digits - 1
    for _ in range(_CODE_ATTEMPTS):
        candidate = f"{prefix}{year}{secrets.randbelow(upper) + 1:0{digits}d}"
        exists = db.session.query(Customer.id).filter(column == candidate).first()
        if not exists:
            return candidate
    raise LedgerPosError(f"Could not allocate a unique {prefix} code", details={"prefix": prefix})


def _generate_card_number() -> str:
    prefix = current_app.config.get("LOYALTY_CARD_PREFIX", "LOY")
    return _generate_unique_code(Customer.loyalty_card_number, prefix, 4)


def _generate_barcode() -> str:
    prefix = current_app.config.get("CUSTOMER_BARCODE_PREFIX", "CUST")
    return _generate_unique_code(Customer.barcode, prefix, 5)


def _coerce_points(amount) -> int:
    try:
        points = coerce_int(amount, "points")
    except ValidationError as exc:
        raise InvalidPointAmountError(str(exc), details={"points": amount})
    if points <= 0:
        raise InvalidPointAmountError("points must be a positive integer", details={"points": amount})
    return points


def get_customer_for_update(customer_id: int) -> Customer:
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


def _post_points(
    customer: Customer,
    *,
    entry_type: str,
    points: int,
    reference: str | None = None,
    reason: str | None = None,
) -> LoyaltyPointEntry:
    """Apply a signed point change and append its entry. No commit."""
    new_balance = customer.loyalty_points + points
    if new_balance < 0:
        raise InvalidPointAmountError(
            "Insufficient loyalty points",
            details={
                "customer_id": customer.id,
                "requested_points": -points,
                "available_points": customer.loyalty_points,
            },
        )
    customer.loyalty_points = new_balance
    entry = LoyaltyPointEntry(
        customer_id=customer.id,
        entry_type=entry_type,
        points=points,
        balance_after=new_balance,
        reference=reference,
        reason=reason,
        occurred_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def _enroll(customer: Customer) -> None:
    customer.is_loyalty = True
    if not customer.loyalty_card_number:
        customer.loyalty_card_number = _generate_card_number()
        customer.loyalty_start_date = utcnow()
        customer.loyalty_points = 0


# =============================================================================
# Customers
# =============================================================================

def create_customer(
    *,
    name: str,
    email: str | None = None,
    phone: str | None = None,
    address: str | None = None,
    notes: str | None = None,
    is_loyalty: bool = False,
) -> Customer:
    """Register a customer; enrolls in loyalty immediately when is_loyalty is set."""
    name = require_text(name, "name")

    def _op():
        customer = Customer(
            name=name,
            email=optional_text(email, "email"),
            phone=optional_text(phone, "phone", max_length=32),
            address=optional_text(address, "address", max_length=None),
            notes=optional_text(notes, "notes", max_length=None),
            barcode=_generate_barcode(),
            is_loyalty=False,
            loyalty_points=0,
        )
        if is_loyalty:
            _enroll(customer)
        db.session.add(customer)
        db.session.flush()
        return customer

    customer = run_atomic(_op)
    current_app.logger.info("Created customer %s (loyalty=%s)", customer.id, customer.is_loyalty)
    return customer


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


def find_customer_by_barcode(code: str) -> Customer:
    """Look up by customer barcode or loyalty card number."""
    code = (code or "").strip().upper()
    if not code:
        raise ValidationError("barcode is required")
    customer = (
        db.session.query(Customer)
        .filter(or_(Customer.barcode == code, Customer.loyalty_card_number == code))
        .first()
    )
    if not customer:
        raise NotFoundError(f"No customer with barcode {code}", details={"barcode": code})
    return customer


def list_customers(*, search: str | None = None, loyalty: bool | None = None) -> list[Customer]:
    query = db.session.query(Customer)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Customer.name.ilike(like),
            Customer.email.ilike(like),
            Customer.phone.ilike(like),
            Customer.loyalty_card_number.ilike(like),
        ))
    if loyalty is not None:
        query = query.filter(Customer.is_loyalty.is_(loyalty))
    return query.order_by(Customer.name.asc()).all()


def update_customer(customer_id: int, patch: dict) -> Customer:
    """Patch contact fields; switching is_loyalty on follows enroll_loyalty rules."""
    patch = validate_patch(patch, CUSTOMER_MUTABLE_FIELDS)

    def _op():
        customer = get_customer_for_update(customer_id)
        for k, v in patch.items():
            if k == "name":
                customer.name = require_text(v, "name")
            elif k == "is_loyalty":
                if bool(v):
                    _enroll(customer)
                else:
                    customer.is_loyalty = False
            elif k == "phone":
                customer.phone = optional_text(v, "phone", max_length=32)
            elif k in ("address", "notes"):
                setattr(customer, k, optional_text(v, k, max_length=None))
            else:
                setattr(customer, k, optional_text(v, k))
        return customer

    return run_atomic(_op)


# =============================================================================
# Loyalty account
# =============================================================================

def enroll_loyalty(customer_id: int) -> Customer:
    """
    Enroll a customer in the loyalty program.

    Idempotent: an existing card number, start date and balance are kept.
    """
    def _op():
        customer = get_customer_for_update(customer_id)
        _enroll(customer)
        return customer

    customer = run_atomic(_op)
    current_app.logger.info("Customer %s enrolled in loyalty (card %s)", customer.id, customer.loyalty_card_number)
    return customer


def disable_loyalty(customer_id: int) -> Customer:
    """Stop loyalty pricing; card and balance are kept for re-enrollment."""
    def _op():
        customer = get_customer_for_update(customer_id)
        customer.is_loyalty = False
        return customer

    return run_atomic(_op)


def toggle_loyalty(customer_id: int) -> Customer:
    def _op():
        customer = get_customer_for_update(customer_id)
        if customer.is_loyalty:
            customer.is_loyalty = False
        else:
            _enroll(customer)
        return customer

    return run_atomic(_op)


def add_loyalty_points(customer_id: int, amount, reason: str | None = None) -> Customer:
    """
    Manually credit points.

    Raises:
        InvalidPointAmountError: amount is not a positive integer
        NotFoundError: customer does not exist
    """
    points = _coerce_points(amount)

    def _op():
        customer = get_customer_for_update(customer_id)
        _post_points(customer, entry_type=ENTRY_MANUAL, points=points, reason=optional_text(reason, "reason"))
        return customer

    customer = run_atomic(_op)
    current_app.logger.info("Added %s loyalty points to customer %s", points, customer.id)
    return customer


def redeem_loyalty_points(
    customer_id: int,
    amount,
    *,
    reference: str | None = None,
    reason: str | None = None,
) -> Customer:
    """
    Spend points.

    Raises:
        InvalidPointAmountError: amount not positive, or larger than the balance
    """
    points = _coerce_points(amount)

    def _op():
        customer = get_customer_for_update(customer_id)
        _post_points(
            customer,
            entry_type=ENTRY_REDEEM,
            points=-points,
            reference=reference,
            reason=optional_text(reason, "reason"),
        )
        return customer

    return run_atomic(_op)


def award_sale_points(customer: Customer, points: int, *, reference: str) -> int:
    """Credit points earned by a sale. Runs inside the caller's transaction."""
    if points <= 0:
        return 0
    _post_points(customer, entry_type=ENTRY_EARN, points=points, reference=reference, reason="Loyalty sale")
    return points


def reverse_sale_points(customer: Customer, points: int, *, reference: str) -> int:
    """
    Take back points earned by a sale being edited or deleted.

    If the customer already spent some of them, only the remaining balance
    is reversed. Returns the number of points actually reversed.
    """
    reversible = min(points, customer.loyalty_points)
    if reversible <= 0:
        return 0
    _post_points(
        customer,
        entry_type=ENTRY_REVERSAL,
        points=-reversible,
        reference=reference,
        reason="Sale edited or deleted",
    )
    return reversible


def list_point_entries(customer_id: int) -> list[LoyaltyPointEntry]:
    get_customer(customer_id)
    return (
        db.session.query(LoyaltyPointEntry)
        .filter_by(customer_id=customer_id)
        .order_by(LoyaltyPointEntry.id.asc())
        .all()
    )
