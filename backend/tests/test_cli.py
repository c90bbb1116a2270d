"""
CLI command tests (flask test_cli_runner).
"""

import json

from ledgerpos.extensions import db
from ledgerpos.models import Category, Customer, Product, Purchase, Sale
from ledgerpos.services import purchase_service


class TestInventoryCommands:

    def test_adjust(self, cli_runner, db_session, make_product):
        product = make_product(stock=5)

        result = cli_runner.invoke(args=["inventory", "adjust", str(product.id), "--delta=-2", "--reason", "Broken"])

        assert result.exit_code == 0, result.output
        assert "5 -> 3" in result.output
        assert db.session.get(Product, product.id).stock_quantity == 3

    def test_adjust_overdraw_fails_cleanly(self, cli_runner, db_session, make_product):
        product = make_product(stock=1)

        result = cli_runner.invoke(args=["inventory", "adjust", str(product.id), "--delta=-9", "--reason", "Lost"])

        assert result.exit_code == 1
        assert "cannot go negative" in result.output
        assert db.session.get(Product, product.id).stock_quantity == 1

    def test_adjust_force(self, cli_runner, db_session, make_product):
        product = make_product(stock=1)

        result = cli_runner.invoke(
            args=["inventory", "adjust", str(product.id), "--delta=-9", "--reason", "Lost", "--force"]
        )

        assert result.exit_code == 0, result.output
        assert db.session.get(Product, product.id).stock_quantity == 0

    def test_alerts(self, cli_runner, db_session, make_product):
        make_product("Empty shelf", stock=0, minimum=3)
        make_product("Full shelf", stock=30, minimum=3)

        result = cli_runner.invoke(args=["inventory", "alerts"])

        assert result.exit_code == 0, result.output
        assert "critical=1 low=0 normal=1 total=2" in result.output
        assert "Empty shelf" in result.output
        assert "Full shelf" not in result.output

    def test_movements(self, cli_runner, db_session, make_product):
        make_product(stock=4)

        result = cli_runner.invoke(args=["inventory", "movements", "--limit", "5"])

        assert result.exit_code == 0, result.output
        assert "OPENING" in result.output


class TestPurchaseAndCustomerCommands:

    def test_receive_twice(self, cli_runner, db_session, supplier, make_product):
        product = make_product(stock=0)
        purchase = purchase_service.create_purchase(
            [{"product_id": product.id, "quantity": 6, "unit_cost_cents": 100}],
            supplier.id,
            {"payment_method": "cash"},
        )

        first = cli_runner.invoke(args=["purchases", "receive", str(purchase.id)])
        second = cli_runner.invoke(args=["purchases", "receive", str(purchase.id)])

        assert first.exit_code == 0, first.output
        assert second.exit_code == 1
        assert "already been received" in second.output
        assert db.session.get(Product, product.id).stock_quantity == 6

    def test_enroll_and_add_points(self, cli_runner, db_session, customer):
        enrolled = cli_runner.invoke(args=["customers", "enroll", str(customer.id)])
        added = cli_runner.invoke(args=["customers", "add-points", str(customer.id), "15", "--reason", "Promo"])

        assert enrolled.exit_code == 0, enrolled.output
        assert "card LOY" in enrolled.output
        assert added.exit_code == 0, added.output
        assert db.session.get(Customer, customer.id).loyalty_points == 15

    def test_enroll_json_output(self, cli_runner, db_session, customer):
        result = cli_runner.invoke(args=["customers", "enroll", str(customer.id), "--json"])

        assert result.exit_code == 0, result.output
        account = json.loads(result.output.strip().splitlines()[-1])
        assert account["customer_id"] == customer.id
        assert account["is_loyalty"] is True
        assert account["loyalty_card_number"].startswith("LOY")
        assert account["loyalty_points"] == 0
        assert account["loyalty_start_date"].endswith("Z")

    def test_add_invalid_points(self, cli_runner, db_session, customer):
        result = cli_runner.invoke(args=["customers", "add-points", str(customer.id), "zero"])
        assert result.exit_code == 1
        assert db.session.get(Customer, customer.id).loyalty_points == 0


class TestSystemAndReports:

    def test_seed_demo(self, cli_runner, db_session):
        result = cli_runner.invoke(args=["system", "seed-demo"])

        assert result.exit_code == 0, result.output
        assert db.session.query(Product).count() == 3
        assert db.session.query(Category).count() == 2
        assert db.session.query(Product).filter(Product.barcode.isnot(None)).count() == 3
        assert db.session.query(Purchase).filter_by(status="received").count() == 1
        sale = db.session.query(Sale).one()
        assert sale.points_awarded > 0

    def test_reports(self, cli_runner, db_session, make_product):
        make_product(price_cents=500, cost_price_cents=300, stock=2)

        sales = cli_runner.invoke(args=["reports", "sales"])
        inventory = cli_runner.invoke(args=["reports", "inventory"])

        assert sales.exit_code == 0, sales.output
        assert "Sales: 0" in sales.output
        assert inventory.exit_code == 0, inventory.output
        assert "Units on hand: 2" in inventory.output
        assert "Value at cost: 6.00" in inventory.output

    def test_reset_db_requires_confirmation(self, cli_runner, db_session, make_product):
        make_product(stock=1)

        result = cli_runner.invoke(args=["system", "reset-db"], input="n\n")

        assert result.exit_code == 1
        assert db.session.query(Product).count() == 1
