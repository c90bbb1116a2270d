from datetime import datetime

from ledgerpos.services import products_service, purchase_service, reporting_service, sales_service


class TestSalesReport:

    def test_totals_for_a_period(self, db_session, make_product):
        coffee = make_product("Coffee", price_cents=1000, stock=20)
        tea = make_product("Tea", price_cents=500, stock=20)
        sales_service.create_sale(
            [{"product_id": coffee.id, "quantity": 2, "discount_cents": 100, "tax_cents": 50}],
            payment_meta={"payment_method": "cash", "sale_date": "2024-05-03T10:00:00"},
        )
        sales_service.create_sale(
            [{"product_id": tea.id, "quantity": 1}],
            payment_meta={"payment_method": "cash", "sale_date": "2024-05-20T10:00:00", "status": "pending"},
        )
        # outside the period
        sales_service.create_sale(
            [{"product_id": tea.id, "quantity": 1}],
            payment_meta={"payment_method": "cash", "sale_date": "2024-06-02T10:00:00"},
        )

        report = reporting_service.sales_report("2024-05-01", "2024-05-31T23:59:59")

        assert report["total_sales"] == 2
        assert report["total_revenue_cents"] == 1950 + 500
        assert report["total_discount_cents"] == 100
        assert report["total_tax_cents"] == 50
        assert report["top_products"][0]["name"] == "Coffee"
        assert report["monthly_totals"] == [{"month": "2024-05", "total_cents": 2450}]

    def test_default_range_is_current_month(self, db_session):
        report = reporting_service.sales_report()
        start = datetime.fromisoformat(report["start"].rstrip("Z"))
        assert start.day == 1
        assert report["total_sales"] == 0


def test_purchase_report(db_session, supplier, make_product):
    product = make_product(stock=0)
    first = purchase_service.create_purchase(
        [{"product_id": product.id, "quantity": 10, "unit_cost_cents": 100}],
        supplier.id,
        {"payment_method": "bank_transfer", "order_date": "2024-05-04"},
    )
    purchase_service.create_purchase(
        [{"product_id": product.id, "quantity": 5, "unit_cost_cents": 100}],
        supplier.id,
        {"payment_method": "bank_transfer", "order_date": "2024-05-10"},
    )
    purchase_service.receive_purchase(first.id)

    report = reporting_service.purchase_report("2024-05-01", "2024-05-31")

    assert report["total_purchases"] == 2
    assert report["total_amount_cents"] == 1500
    assert report["pending_purchases"] == 1
    assert report["received_purchases"] == 1
    assert report["top_suppliers"][0]["name"] == "Acme Wholesale"


def test_inventory_overview(db_session, make_product):
    make_product(price_cents=200, cost_price_cents=120, stock=10, minimum=2)
    make_product(price_cents=1000, stock=0, minimum=1)

    report = reporting_service.inventory_overview()

    assert report["total_products"] == 2
    assert report["total_units"] == 10
    assert report["stock_value_cents"] == 1200
    assert report["retail_value_cents"] == 2000
    assert report["alerts"]["critical"] == 1


def test_inventory_overview_by_category(db_session, make_product):
    drinks = products_service.create_category(name="Drinks")
    kitchen = products_service.create_category(name="Kitchen")
    products_service.create_category(name="Empty aisle")
    make_product("Cola", category_id=drinks.id, price_cents=150, stock=10, minimum=2)
    make_product("Juice", category_id=drinks.id, price_cents=300, stock=2, minimum=2)
    make_product("Mug", category_id=kitchen.id, price_cents=900, stock=0, minimum=1)
    make_product("Loose item", price_cents=100, stock=1)

    report = reporting_service.inventory_overview()

    assert report["categories"] == [
        {
            "category_id": drinks.id,
            "category": "Drinks",
            "total_items": 2,
            "total_units": 12,
            "total_value_cents": 2100,
            "low_stock": 1,
        },
        {
            "category_id": kitchen.id,
            "category": "Kitchen",
            "total_items": 1,
            "total_units": 0,
            "total_value_cents": 0,
            "low_stock": 1,
        },
    ]
    assert report["total_products"] == 4


def test_customer_report(db_session, make_product, customer, loyalty_customer):
    product = make_product(price_cents=10000, loyalty_price_cents=8000, stock=5)
    sales_service.create_sale(
        [{"product_id": product.id, "quantity": 1}],
        customer_id=loyalty_customer.id,
        payment_meta={"payment_method": "card"},
    )

    report = reporting_service.customer_report()

    assert report["total_customers"] == 2
    assert report["loyalty_customers"] == 1
    assert report["outstanding_points"] == 80
    assert report["top_customers"][0]["customer_id"] == loyalty_customer.id
