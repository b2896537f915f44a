# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/shopsphere/cli.py
# Commands Legend (run from the repository root):
# Prereqs:
# - Activate your virtualenv and `pip install -e .`
# - Set FLASK_APP to the factory (PowerShell: $env:FLASK_APP="shopsphere:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Idempotent demo data: two customers, three products, stock in three stores.
#
# Inventory inspection:
# - python -m flask inventory list [--product-id 1]
#   List store inventory records with the derived total per product.
#
# Loyalty maintenance:
# - python -m flask loyalty retry-accruals [--limit 100]
#   Retry loyalty accruals left PENDING after order creation.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, StoreInventoryRecord
from .services import inventory_service, loyalty_service
from .services.catalog_service import ensure_user, ensure_product


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


DEMO_USERS = [
    ("Asha Verma", "asha@shopsphere.local"),
    ("Rahul Nair", "rahul@shopsphere.local"),
]

DEMO_PRODUCTS = [
    # sku, name, price_paise, category
    ("SS-TSHIRT-01", "Cotton T-Shirt", 49_900, "Apparel"),
    ("SS-SHOE-01", "Running Shoes", 349_900, "Footwear"),
    ("SS-MUG-01", "Ceramic Mug", 29_900, "Home"),
]

DEMO_STOCK = {
    "SS-TSHIRT-01": {"Bengaluru": 40, "Mumbai": 25, "Pune": 10},
    "SS-SHOE-01": {"Bengaluru": 3, "Mumbai": 2},
    "SS-MUG-01": {"Pune": 60},
}


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create demo customers, products and per-store stock (idempotent)."""
    click.echo("START Seeding demo data...")

    for name, email in DEMO_USERS:
        user = ensure_user(name=name, email=email)
        click.echo(f"PASS Customer {user.name} (ID: {user.id})")

    products = {}
    for sku, name, price_paise, category in DEMO_PRODUCTS:
        products[sku] = ensure_product(sku=sku, name=name, price_paise=price_paise, category=category)
    db.session.commit()

    for sku, stores in DEMO_STOCK.items():
        product = products[sku]
        for store_location, quantity in stores.items():
            existing = db.session.query(StoreInventoryRecord).filter_by(
                product_id=product.id, store_location=store_location
            ).first()
            if existing:
                continue
            inventory_service.upsert_store_inventory(
                product_id=product.id,
                store_location=store_location,
                stock_quantity=quantity,
            )
        click.echo(f"PASS {product.sku}: total stock {inventory_service.get_total_stock(product.id)}")

    click.echo("PASS Demo data ready.")


@click.group('inventory')
def inventory_group():
    """Store inventory inspection commands."""


@inventory_group.command('list')
@click.option('--product-id', type=int, default=None, help='Only this product')
@with_appcontext
def list_inventory(product_id):
    """List per-store stock with the derived total per product."""
    query = db.session.query(Product).order_by(Product.id)
    if product_id is not None:
        query = query.filter(Product.id == product_id)
    products = query.all()

    if not products:
        click.echo("No products found.")
        return

    threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)
    for product in products:
        total = inventory_service.get_total_stock(product.id)
        click.echo(f"\n{product.sku}  {product.name}  (total: {total})")
        records = inventory_service.list_inventory_for_product(product.id)
        if not records:
            click.echo("  (no store records)")
        for record in records:
            flag = "" if record.is_available else "  [unavailable]"
            if record.is_low_stock(threshold):
                flag += "  [low]"
            click.echo(f"  {record.store_location:<20} {record.stock_quantity:>6}{flag}")


@click.group('loyalty')
def loyalty_group():
    """Loyalty maintenance commands."""


@loyalty_group.command('retry-accruals')
@click.option('--limit', type=int, default=100, show_default=True, help='Max outbox rows to process')
@with_appcontext
def retry_accruals(limit):
    """Credit points for orders whose accrual is still PENDING."""
    result = loyalty_service.process_pending_accruals(limit=limit)
    click.echo(f"PASS Processed {result['processed']} accrual(s), {result['failed']} still pending.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(loyalty_group)
