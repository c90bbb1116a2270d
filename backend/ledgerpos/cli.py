# Overview: Flask CLI command groups for bootstrap, stock operations and reports.

# backend/ledgerpos/cli.py
# Commands Legend (run from the repository root):
# - flask --app ledgerpos <group> <command> [options]
#
# System bootstrap/repair:
# - flask --app ledgerpos system init-db
#   Create all tables (idempotent).
# - flask --app ledgerpos system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - flask --app ledgerpos system seed-demo
#   Create demo categories, a supplier, products, a loyalty customer, a received purchase and a sale.
#
# Inventory:
# - flask --app ledgerpos inventory adjust 3 --delta=-2 --reason "Damaged" [--force]
#   Manual stock adjustment by a signed delta.
# - flask --app ledgerpos inventory alerts [--status low|critical|normal] [--active]
#   Stock alert summary plus the products in alert.
# - flask --app ledgerpos inventory movements [--product-id 3] [--type out] [--limit 20]
#   Newest stock ledger entries.
#
# Purchases / customers:
# - flask --app ledgerpos purchases receive 7
# - flask --app ledgerpos customers enroll 4 [--json]
# - flask --app ledgerpos customers add-points 4 150 --reason "Goodwill"
#
# Reports:
# - flask --app ledgerpos reports sales [--start 2024-05-01 --end 2024-05-31]
# - flask --app ledgerpos reports inventory

import functools
import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import LedgerPosError
from .extensions import db
from .services import (
    alert_service,
    customer_service,
    ledger_service,
    products_service,
    purchase_service,
    reporting_service,
    sales_service,
    supplier_service,
)


def _service_errors(func):
    """Turn service errors into clean CLI failures (exit code 1)."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LedgerPosError as exc:
            message = f"FAIL {exc.message}"
            if exc.details:
                message += f" {json.dumps(exc.details, default=str)}"
            raise click.ClickException(message)
        except click.ClickException:
            raise
        except Exception:
            current_app.logger.exception("Command %s failed", func.__name__)
            raise
    return wrapper


def _money(cents: int) -> str:
    return f"{cents / 100:.2f}"


# =============================================================================
# system
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'flask system seed-demo' for sample data.")


@system_group.command('seed-demo')
@with_appcontext
@_service_errors
def seed_demo():
    """
    Populate a small demo data set through the service layer.

    Every unit of stock it creates is explained by ledger entries.
    """
    db.create_all()

    supplier = supplier_service.create_supplier(
        name="Demo Wholesale",
        contact_person="Front desk",
        email="orders@demo-wholesale.test",
    )
    click.echo(f"PASS Supplier: {supplier.name} (ID: {supplier.id})")

    drinks = products_service.create_category(name="Drinks", color="#10B981")
    kitchen = products_service.create_category(name="Kitchen", color="#3B82F6")
    click.echo(f"PASS Categories: {drinks.name}, {kitchen.name}")

    catalogue = [
        ("DEMO-COF", "4006381333931", "Coffee beans 1kg", drinks, 1800, 1600, 1100, 20, 5),
        ("DEMO-TEA", "4006381333948", "Green tea 100g", drinks, 650, None, 300, 4, 5),
        ("DEMO-MUG", "4006381333955", "Ceramic mug", kitchen, 900, 800, 350, 0, 2),
    ]
    products = []
    for sku, barcode, name, category, price, loyalty_price, cost, opening, minimum in catalogue:
        product = products_service.create_product(
            patch={
                "sku": sku,
                "barcode": barcode,
                "name": name,
                "category_id": category.id,
                "price_cents": price,
                "loyalty_price_cents": loyalty_price,
                "cost_price_cents": cost,
                "minimum_stock": minimum,
                "supplier_id": supplier.id,
            },
            stock_quantity=opening,
        )
        products.append(product)
        click.echo(f"PASS Product: {product.name} (ID: {product.id}, stock {product.stock_quantity})")

    customer = customer_service.create_customer(name="Demo Customer", email="customer@demo.test", is_loyalty=True)
    click.echo(f"PASS Customer: {customer.name} (card {customer.loyalty_card_number})")

    purchase = purchase_service.create_purchase(
        [{"product_id": products[2].id, "quantity": 12, "unit_cost_cents": 350}],
        supplier.id,
        {"payment_method": "bank_transfer"},
    )
    purchase_service.receive_purchase(purchase.id)
    click.echo(f"PASS Purchase {purchase.purchase_number} received")

    sale = sales_service.create_sale(
        [
            {"product_id": products[0].id, "quantity": 2},
            {"product_id": products[2].id, "quantity": 1},
        ],
        customer_id=customer.id,
        payment_meta={"payment_method": "cash"},
    )
    click.echo(f"PASS Sale {sale.invoice_number}: {_money(sale.final_amount_cents)} ({sale.points_awarded} points)")


# =============================================================================
# inventory
# =============================================================================

@click.group('inventory')
def inventory_group():
    """Stock ledger and alert commands."""


@inventory_group.command('adjust')
@click.argument('product_id', type=int)
@click.option('--delta', type=int, required=True, help='Signed quantity change')
@click.option('--reason', required=True, help='Why the stock changed')
@click.option('--force', is_flag=True, help='Drain to zero instead of rejecting an overdraw')
@with_appcontext
@_service_errors
def adjust_cli(product_id, delta, reason, force):
    """
    Record a manual stock adjustment.

    Example:
        flask inventory adjust 3 --delta=5 --reason "Recount"
        flask inventory adjust 3 --delta=-50 --reason "Flood damage" --force
    """
    movement = ledger_service.adjust_stock(product_id, delta, reason, force=force)
    click.echo(
        f"PASS {movement.movement_type} {movement.quantity} on product {movement.product_id}: "
        f"{movement.previous_stock} -> {movement.new_stock}"
    )


@inventory_group.command('alerts')
@click.option('--status', type=click.Choice(alert_service.ALERT_STATUSES), help='Filter by status')
@click.option('--active', 'active_only', is_flag=True, help='Only the top active alerts')
@with_appcontext
@_service_errors
def alerts_cli(status, active_only):
    """Show stock alert counts and the products in alert."""
    summary = alert_service.evaluate_alerts()
    click.echo(
        f"critical={summary['critical']} low={summary['low']} "
        f"normal={summary['normal']} total={summary['total']}"
    )

    rows = alert_service.active_alerts() if active_only else alert_service.list_alerts(status=status)
    if not rows:
        click.echo("No products in alert.")
        return

    click.echo("=" * 70)
    click.echo(f"{'ID':<5} {'Name':<30} {'Stock':>7} {'Min':>7}  {'Status'}")
    click.echo("=" * 70)
    for row in rows:
        click.echo(
            f"{row['id']:<5} {row['name'][:30]:<30} {row['stock_quantity']:>7} "
            f"{row['minimum_stock']:>7}  {row['status']}"
        )


@inventory_group.command('movements')
@click.option('--product-id', type=int, help='Filter by product ID')
@click.option('--type', 'movement_type', help='Filter by movement type')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
@_service_errors
def movements_cli(product_id, movement_type, limit):
    """List the newest stock ledger entries."""
    movements = ledger_service.list_movements(
        product_id=product_id,
        movement_type=movement_type,
        limit=limit,
    )
    if not movements:
        click.echo("No movements found.")
        return

    for m in movements:
        click.echo(
            f"#{m.id} product={m.product_id} {m.movement_type:<14} qty={m.quantity:<5} "
            f"{m.previous_stock}->{m.new_stock}  {m.reference or ''}"
        )


# =============================================================================
# purchases
# =============================================================================

@click.group('purchases')
def purchases_group():
    """Purchase order commands."""


@purchases_group.command('receive')
@click.argument('purchase_id', type=int)
@with_appcontext
@_service_errors
def receive_cli(purchase_id):
    """Receive a pending purchase and credit its stock."""
    purchase = purchase_service.receive_purchase(purchase_id)
    click.echo(
        f"PASS Purchase {purchase.purchase_number} received "
        f"({purchase.total_quantity} unit(s) across {len(purchase.lines)} line(s))"
    )


# =============================================================================
# customers
# =============================================================================

@click.group('customers')
def customers_group():
    """Customer and loyalty commands."""


@customers_group.command('enroll')
@click.argument('customer_id', type=int)
@click.option('--json', 'as_json', is_flag=True, help='Print the loyalty account as JSON')
@with_appcontext
@_service_errors
def enroll_cli(customer_id, as_json):
    """Enroll a customer in the loyalty program."""
    customer = customer_service.enroll_loyalty(customer_id)
    if as_json:
        click.echo(json.dumps(customer.to_loyalty_dict()))
        return
    click.echo(
        f"PASS {customer.name} enrolled: card {customer.loyalty_card_number}, "
        f"{customer.loyalty_points} point(s)"
    )


@customers_group.command('add-points')
@click.argument('customer_id', type=int)
@click.argument('amount')
@click.option('--reason', help='Reason for the manual credit')
@with_appcontext
@_service_errors
def add_points_cli(customer_id, amount, reason):
    """Manually credit loyalty points."""
    customer = customer_service.add_loyalty_points(customer_id, amount, reason=reason)
    click.echo(f"PASS {customer.name} now has {customer.loyalty_points} point(s)")


# =============================================================================
# reports
# =============================================================================

@click.group('reports')
def reports_group():
    """Aggregate reports."""


@reports_group.command('sales')
@click.option('--start', help='ISO date/time (default: start of this month)')
@click.option('--end', help='ISO date/time (default: end of the start month)')
@with_appcontext
@_service_errors
def sales_report_cli(start, end):
    """Sales totals for a period."""
    report = reporting_service.sales_report(start, end)
    click.echo(f"Period: {report['start']} .. {report['end']}")
    click.echo(f"Sales: {report['total_sales']}  Revenue: {_money(report['total_revenue_cents'])}")
    click.echo(
        f"Discounts: {_money(report['total_discount_cents'])}  Taxes: {_money(report['total_tax_cents'])}"
    )
    for row in report["top_products"]:
        click.echo(f"  {row['name']}: {row['total_quantity']} unit(s), {_money(row['total_revenue_cents'])}")


@reports_group.command('inventory')
@with_appcontext
@_service_errors
def inventory_report_cli():
    """Stock totals, per-category breakdown and alert counts."""
    report = reporting_service.inventory_overview()
    click.echo(f"Products: {report['total_products']} ({report['active_products']} active)")
    click.echo(f"Units on hand: {report['total_units']}")
    click.echo(
        f"Value at cost: {_money(report['stock_value_cents'])}  "
        f"Retail value: {_money(report['retail_value_cents'])}"
    )
    for row in report["categories"]:
        click.echo(
            f"  {row['category']}: {row['total_items']} product(s), {row['total_units']} unit(s), "
            f"{_money(row['total_value_cents'])}, {row['low_stock']} low"
        )
    alerts = report["alerts"]
    click.echo(f"Alerts: critical={alerts['critical']} low={alerts['low']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(purchases_group)
    app.cli.add_command(customers_group)
    app.cli.add_command(reports_group)
