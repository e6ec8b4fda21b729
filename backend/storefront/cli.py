# Overview: Flask CLI command groups for bootstrap, scheduled jobs, and store settings.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (dev only; use `flask db upgrade` elsewhere).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog add --sku AJ1-RED --brand Nike --model "Air Jordan 1" --price 45000000 --size 40:3 --size 41:2
#   Create a product with per-size stock.
# - python -m flask catalog list
#   List products with stock per size.
#
# Orders (scheduled jobs):
# - python -m flask orders sweep-expired [--hours 2]
#   Expire abandoned awaiting_payment orders and release their stock. Run hourly from cron.
#
# Settings:
# - python -m flask settings list
# - python -m flask settings get payments.public_key
# - python -m flask settings set payments.public_key pub_test_xxx
# - python -m flask settings set payments.public_key --clear

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Variant
from .services import expiry_service, settings_service
from .services.errors import StorefrontError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('catalog')
def catalog_group():
    """Catalog inspection and bootstrap."""


def _parse_size_spec(spec: str) -> tuple[float, int]:
    size, _, stock = spec.partition(':')
    try:
        return float(size), int(stock or 0)
    except ValueError:
        raise click.BadParameter(f"expected SIZE:STOCK, got {spec!r}")


@catalog_group.command('add')
@click.option('--sku', required=True)
@click.option('--brand', required=True)
@click.option('--model', 'model_name', required=True)
@click.option('--colorway', default=None)
@click.option('--category', default=None)
@click.option('--price', 'price_cents', type=int, required=True, help='Price in cents')
@click.option('--size', 'sizes', multiple=True, help='SIZE:STOCK, repeatable')
@with_appcontext
def add_product(sku, brand, model_name, colorway, category, price_cents, sizes):
    """Create a product and its size variants."""
    if db.session.query(Product).filter_by(sku=sku).first():
        click.echo(f"FAIL Product with SKU {sku} already exists")
        raise SystemExit(1)

    product = Product(
        sku=sku,
        brand=brand,
        model=model_name,
        colorway=colorway,
        category=category,
        price_cents=price_cents,
    )
    db.session.add(product)
    db.session.flush()
    for spec in sizes:
        size, stock = _parse_size_spec(spec)
        db.session.add(Variant(product_id=product.id, size=size, stock=stock))
    db.session.commit()
    click.echo(f"PASS Created product {product.display_name} (ID: {product.id}, {len(sizes)} sizes)")


@catalog_group.command('list')
@with_appcontext
def list_products():
    """List products with stock per size."""
    products = db.session.query(Product).order_by(Product.id).all()
    if not products:
        click.echo("No products found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'SKU':<15} {'Name':<35} {'Price':<12} {'Stock'}")
    click.echo("=" * 80)
    for product in products:
        sizes = ", ".join(
            f"{v.size:g}:{v.stock}" for v in sorted(product.variants, key=lambda v: v.size)
        )
        click.echo(
            f"{product.id:<5} {product.sku:<15} {product.display_name[:35]:<35} "
            f"{product.price_cents:<12} {sizes or '-'}"
        )
    click.echo("=" * 80 + "\n")


@click.group('orders')
def orders_group():
    """Order maintenance jobs."""


@orders_group.command('sweep-expired')
@click.option('--hours', type=float, default=None, help='Age threshold (default ORDER_EXPIRY_HOURS)')
@with_appcontext
def sweep_expired(hours):
    """Expire abandoned orders and release their reserved stock."""
    summary = expiry_service.sweep_expired_orders(threshold_hours=hours)
    click.echo(
        f"Processed: {summary.processed}  Released units: {summary.stock_released}  "
        f"Skipped: {summary.skipped}"
    )
    for error in summary.errors:
        click.echo(f"FAIL {error}")
    if not summary.success:
        raise SystemExit(1)


@click.group('settings')
def settings_group():
    """Store settings (payment provider credentials)."""


@settings_group.command('list')
@click.option('--show-secrets', is_flag=True, help='Do not mask sensitive values')
@with_appcontext
def list_settings_cmd(show_secrets):
    """List all settings with their effective value and source."""
    for row in settings_service.list_settings(mask_sensitive=not show_secrets):
        click.echo(f"{row['key']:<30} {row['source']:<12} {row['value'] or '-'}")


@settings_group.command('get')
@click.argument('key')
@with_appcontext
def get_setting_cmd(key):
    """Print the effective value of one setting."""
    try:
        value = settings_service.get_setting(key)
    except StorefrontError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(value if value is not None else "")


@settings_group.command('set')
@click.argument('key')
@click.argument('value', required=False)
@click.option('--clear', is_flag=True, help='Remove the stored override')
@with_appcontext
def set_setting_cmd(key, value, clear):
    """Store a setting value (overrides the environment)."""
    if value is None and not clear:
        click.echo("FAIL Provide a VALUE or --clear")
        raise SystemExit(1)
    try:
        settings_service.set_setting(key, None if clear else value)
    except StorefrontError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS {key} {'cleared' if clear else 'updated'}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(settings_group)
