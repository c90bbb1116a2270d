import pytest

from ledgerpos.errors import NotFoundError, ValidationError
from ledgerpos.services import alert_service, ledger_service, sales_service


@pytest.mark.parametrize(
    "stock, minimum, expected",
    [
        (0, 5, "critical"),
        (0, 0, "critical"),
        (3, 5, "low"),
        (5, 5, "low"),
        (10, 5, "normal"),
        (1, 0, "normal"),
    ],
)
def test_stock_status(stock, minimum, expected):
    assert alert_service.stock_status(stock, minimum) == expected


class TestEvaluateAlerts:

    def test_counts_by_status(self, db_session, make_product):
        make_product(stock=0, minimum=5)
        make_product(stock=3, minimum=5)
        make_product(stock=5, minimum=5)
        make_product(stock=10, minimum=5)

        assert alert_service.evaluate_alerts() == {"critical": 1, "low": 2, "normal": 1, "total": 4}

    def test_empty_catalogue(self, db_session):
        assert alert_service.evaluate_alerts() == {"critical": 0, "low": 0, "normal": 0, "total": 0}

    def test_sale_moves_product_into_alert(self, db_session, make_product):
        product = make_product(stock=6, minimum=5)
        assert alert_service.evaluate_alerts()["normal"] == 1

        sales_service.create_sale([{"product_id": product.id, "quantity": 2}], payment_meta={"payment_method": "cash"})
        assert alert_service.evaluate_alerts()["low"] == 1

        ledger_service.adjust_stock(product.id, -4, "Write-off")
        assert alert_service.evaluate_alerts()["critical"] == 1


class TestListAlerts:

    def test_lists_products_in_alert_lowest_stock_first(self, db_session, make_product):
        low = make_product("Low", stock=3, minimum=5)
        out = make_product("Out", stock=0, minimum=2)
        make_product("Fine", stock=50, minimum=5)

        rows = alert_service.list_alerts()

        assert [r["id"] for r in rows] == [out.id, low.id]
        assert [r["status"] for r in rows] == ["critical", "low"]

    def test_filter_by_status_and_search(self, db_session, make_product):
        make_product("Blue pen", stock=0, minimum=2)
        make_product("Red pen", stock=1, minimum=2)
        make_product("Stapler", stock=9, minimum=2)

        assert [r["name"] for r in alert_service.list_alerts(status="low")] == ["Red pen"]
        assert [r["name"] for r in alert_service.list_alerts(status="normal")] == ["Stapler"]
        assert [r["name"] for r in alert_service.list_alerts(search="blue")] == ["Blue pen"]

    def test_invalid_status(self, db_session):
        with pytest.raises(ValidationError):
            alert_service.list_alerts(status="urgent")

    def test_active_alerts_respects_limit(self, app, db_session, make_product):
        for _ in range(4):
            make_product(stock=0, minimum=1)

        old_limit = app.config["ACTIVE_ALERT_LIMIT"]
        app.config["ACTIVE_ALERT_LIMIT"] = 3
        try:
            assert len(alert_service.active_alerts()) == 3
        finally:
            app.config["ACTIVE_ALERT_LIMIT"] = old_limit


class TestResolveAlert:

    def test_resolve_lowers_minimum_below_stock(self, db_session, make_product):
        product = make_product(stock=4, minimum=10)

        resolved = alert_service.resolve_alert(product.id)

        assert resolved.minimum_stock == 3
        assert alert_service.stock_status(resolved.stock_quantity, resolved.minimum_stock) == "normal"

    def test_resolve_out_of_stock_stays_critical(self, db_session, make_product):
        product = make_product(stock=0, minimum=10)

        resolved = alert_service.resolve_alert(product.id)

        assert resolved.minimum_stock == 0
        assert alert_service.stock_status(resolved.stock_quantity, resolved.minimum_stock) == "critical"

    def test_resolve_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            alert_service.resolve_alert(8080)
