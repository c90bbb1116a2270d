"""
Customer & loyalty account tests.
"""

import re

import pytest

from ledgerpos.errors import InvalidPointAmountError, NotFoundError, ValidationError
from ledgerpos.extensions import db
from ledgerpos.models import Customer, LoyaltyPointEntry
from ledgerpos.services import customer_service


class TestEnrollment:

    def test_enroll_generates_card_and_zero_balance(self, db_session, customer):
        enrolled = customer_service.enroll_loyalty(customer.id)

        assert enrolled.is_loyalty is True
        assert re.fullmatch(r"LOY\d{4}\d{4}", enrolled.loyalty_card_number)
        assert enrolled.loyalty_points == 0
        assert enrolled.loyalty_start_date is not None

    def test_reenrolling_keeps_card_and_balance(self, db_session, customer):
        first = customer_service.enroll_loyalty(customer.id)
        card = first.loyalty_card_number
        customer_service.add_loyalty_points(customer.id, 40)
        customer_service.disable_loyalty(customer.id)

        again = customer_service.enroll_loyalty(customer.id)

        assert again.loyalty_card_number == card
        assert again.loyalty_points == 40

    def test_toggle(self, db_session, customer):
        assert customer_service.toggle_loyalty(customer.id).is_loyalty is True
        assert customer_service.toggle_loyalty(customer.id).is_loyalty is False

    def test_enroll_unknown_customer(self, db_session):
        with pytest.raises(NotFoundError):
            customer_service.enroll_loyalty(404)

    def test_create_customer_with_loyalty(self, db_session, loyalty_customer):
        assert loyalty_customer.is_loyalty is True
        assert loyalty_customer.loyalty_card_number.startswith("LOY")
        assert loyalty_customer.barcode.startswith("CUST")


class TestPoints:

    def test_add_points(self, db_session, loyalty_customer):
        updated = customer_service.add_loyalty_points(loyalty_customer.id, 25, reason="Birthday")

        assert updated.loyalty_points == 25
        entry = db.session.query(LoyaltyPointEntry).filter_by(customer_id=loyalty_customer.id).one()
        assert entry.entry_type == customer_service.ENTRY_MANUAL
        assert entry.reason == "Birthday"
        assert entry.balance_after == 25

    @pytest.mark.parametrize("amount", [0, -5, "abc", 2.5, None, True])
    def test_invalid_amounts(self, db_session, loyalty_customer, amount):
        with pytest.raises(InvalidPointAmountError):
            customer_service.add_loyalty_points(loyalty_customer.id, amount)
        assert db.session.get(Customer, loyalty_customer.id).loyalty_points == 0

    def test_points_may_be_added_before_enrollment(self, db_session, customer):
        assert customer_service.add_loyalty_points(customer.id, 10).loyalty_points == 10

    def test_redeem_cannot_overdraw(self, db_session, loyalty_customer):
        customer_service.add_loyalty_points(loyalty_customer.id, 30)

        with pytest.raises(InvalidPointAmountError) as exc_info:
            customer_service.redeem_loyalty_points(loyalty_customer.id, 31)

        assert exc_info.value.details["available_points"] == 30
        assert db.session.get(Customer, loyalty_customer.id).loyalty_points == 30

    def test_entries_sum_to_balance(self, db_session, loyalty_customer):
        customer_service.add_loyalty_points(loyalty_customer.id, 30)
        customer_service.redeem_loyalty_points(loyalty_customer.id, 12, reference="INV-X")
        customer_service.add_loyalty_points(loyalty_customer.id, 5)

        entries = customer_service.list_point_entries(loyalty_customer.id)
        assert [e.points for e in entries] == [30, -12, 5]
        assert sum(e.points for e in entries) == db.session.get(Customer, loyalty_customer.id).loyalty_points == 23

    def test_reverse_sale_points_is_clamped(self, db_session, loyalty_customer):
        customer_service.add_loyalty_points(loyalty_customer.id, 10)
        locked = customer_service.get_customer_for_update(loyalty_customer.id)

        reversed_points = customer_service.reverse_sale_points(locked, 50, reference="INV-1")
        db.session.commit()

        assert reversed_points == 10
        assert db.session.get(Customer, loyalty_customer.id).loyalty_points == 0


class TestCustomerLookup:

    def test_find_by_barcode_or_card(self, db_session, loyalty_customer):
        by_barcode = customer_service.find_customer_by_barcode(loyalty_customer.barcode.lower())
        by_card = customer_service.find_customer_by_barcode(loyalty_customer.loyalty_card_number)
        assert by_barcode.id == by_card.id == loyalty_customer.id

    def test_unknown_barcode(self, db_session):
        with pytest.raises(NotFoundError):
            customer_service.find_customer_by_barcode("CUST000000000")

    def test_list_filters(self, db_session, customer, loyalty_customer):
        assert [c.id for c in customer_service.list_customers(loyalty=True)] == [loyalty_customer.id]
        assert [c.id for c in customer_service.list_customers(search="regular")] == [customer.id]

    def test_update_rejects_unknown_fields(self, db_session, customer):
        with pytest.raises(ValidationError):
            customer_service.update_customer(customer.id, {"loyalty_points": 1000})

    def test_update_contact_fields(self, db_session, customer):
        updated = customer_service.update_customer(customer.id, {"phone": " 555-0100 ", "name": "Walt"})
        assert updated.phone == "555-0100"
        assert updated.name == "Walt"

    def test_name_required(self, db_session):
        with pytest.raises(ValidationError):
            customer_service.create_customer(name="   ")
