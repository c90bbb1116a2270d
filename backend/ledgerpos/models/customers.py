from __future__ import annotations

from ..extensions import db
from ledgerpos.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data for tracking purchases and loyalty.

    LOYALTY: is_loyalty switches loyalty pricing on. The card number, start
    date and points are populated lazily on first enrollment and kept when
    loyalty is later disabled and re-enabled.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.CheckConstraint("loyalty_points >= 0", name="ck_customers_points_non_negative"),
        db.Index("ix_customers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)
    barcode = db.Column(db.String(32), nullable=True, unique=True)

    is_loyalty = db.Column(db.Boolean, nullable=False, default=False, index=True)
    loyalty_card_number = db.Column(db.String(32), nullable=True, unique=True)
    loyalty_start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    loyalty_points = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_loyalty_dict(self) -> dict:
        return {
            "customer_id": self.id,
            "is_loyalty": self.is_loyalty,
            "loyalty_card_number": self.loyalty_card_number,
            "loyalty_start_date": to_utc_z(self.loyalty_start_date) if self.loyalty_start_date else None,
            "loyalty_points": self.loyalty_points,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "barcode": self.barcode,
            "is_loyalty": self.is_loyalty,
            "loyalty_card_number": self.loyalty_card_number,
            "loyalty_start_date": to_utc_z(self.loyalty_start_date) if self.loyalty_start_date else None,
            "loyalty_points": self.loyalty_points,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class LoyaltyPointEntry(db.Model):
    """
    Append-only ledger of loyalty point events.

    ENTRY TYPES:
    - EARN: Points earned from a loyalty-priced sale
    - MANUAL: Points added by staff
    - REDEEM: Points spent by the customer
    - REVERSAL: Points taken back when an earning sale is edited or deleted

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "loyalty_point_entries"
    __table_args__ = (
        db.Index("ix_loyalty_entries_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    entry_type = db.Column(db.String(16), nullable=False, index=True)  # EARN, MANUAL, REDEEM, REVERSAL
    points = db.Column(db.Integer, nullable=False)  # Positive for earn, negative for redeem/reversal
    balance_after = db.Column(db.Integer, nullable=False)

    reference = db.Column(db.String(64), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    customer = db.relationship("Customer", backref=db.backref("point_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "entry_type": self.entry_type,
            "points": self.points,
            "balance_after": self.balance_after,
            "reference": self.reference,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }
