# Overview: Flask CLI command groups for bootstrap, stock intake and inspection.

# backend/stockflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to stockflow (PowerShell: $env:FLASK_APP="stockflow").
# - Use: python -m flask <group> <command> [options]
#
# Stock:
# - python -m flask stock init-db
#   Create all tables (idempotent).
# - python -m flask stock init-db --drop --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask stock receive --brand "Bosch" --rating "75Ah" --quantity 20 --cost 5000 --price 8000
#   Receive purchased stock into the central warehouse (amounts in cents).
# - python -m flask stock return-all --store-id 2
#   Drain a store's stock back into the central warehouse.
# - python -m flask stock report [--all]
#   Conservation report per brand/rating (central, stores, in transit, sold).
#
# Stores:
# - python -m flask stores list
#   List stores.
# - python -m flask stores create --name "Downtown" --kind BRANCH --city "La Paz"
#   Create a store.

import click
from flask.cli import with_appcontext

from .errors import StockError
from .extensions import db
from .services import inventory_service, stock_service, store_service


def _fail(exc: StockError):
    raise click.ClickException(f"{exc.message} {exc.details or ''}".strip())


@click.group('stock')
def stock_group():
    """Stock bootstrap, intake and inspection commands."""


@stock_group.command('init-db')
@click.option('--drop', is_flag=True, help='Drop existing tables first')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def init_db(drop, yes):
    """Create the schema (optionally dropping it first)."""
    if drop:
        if not yes:
            click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)
        click.echo("DELETE  Dropping all tables...")
        db.drop_all()

    db.create_all()
    click.echo("PASS Schema ready")


@stock_group.command('receive')
@click.option('--brand', required=True, help='Battery brand')
@click.option('--rating', required=True, help='Battery rating (e.g. 75Ah)')
@click.option('--quantity', type=int, required=True, help='Units received')
@click.option('--cost', 'cost_cents', type=int, default=None, help='Unit cost in cents')
@click.option('--price', 'price_cents', type=int, default=None, help='Unit price in cents')
@with_appcontext
def receive(brand, rating, quantity, cost_cents, price_cents):
    """Receive purchased stock into central."""
    try:
        line = inventory_service.receive_central_stock(
            brand, rating, quantity,
            unit_cost_cents=cost_cents,
            unit_price_cents=price_cents,
        )
    except StockError as exc:
        _fail(exc)
    click.echo(
        f"PASS {line.brand} {line.rating}: {line.quantity} units in central "
        f"(cost {line.unit_cost_cents}, price {line.unit_price_cents})"
    )


@stock_group.command('return-all')
@click.option('--store-id', type=int, required=True, help='Store to drain')
@with_appcontext
def return_all(store_id):
    """Return every line of a store to central."""
    try:
        report = inventory_service.return_all_to_central(store_id)
    except StockError as exc:
        _fail(exc)
    click.echo(f"PASS Returned {report['returned_lines']} lines ({report['returned_units']} units)")
    for error in report["errors"]:
        click.echo(f"FAIL line {error['line_id']} {error['brand']} {error['rating']}: {error['error']}")
    if report["errors"]:
        raise click.ClickException("Some lines were not returned; re-run to finish")


@stock_group.command('report')
@click.option('--all', 'show_all', is_flag=True, help='Include keys with no stock on hand')
@with_appcontext
def report(show_all):
    """Conservation report per (brand, rating)."""
    rows = stock_service.conservation_report()
    if not show_all:
        rows = [row for row in rows if row["on_hand_total"]]
    if not rows:
        click.echo("No stock found.")
        return

    click.echo("\n" + "="*84)
    click.echo(f"{'Brand':<20} {'Rating':<12} {'Central':>9} {'Stores':>9} {'Transit':>9} {'On hand':>9} {'Sold':>9}")
    click.echo("="*84)
    for row in rows:
        click.echo(
            f"{row['brand']:<20} {row['rating']:<12} {row['central']:>9} {row['stores']:>9} "
            f"{row['in_transit']:>9} {row['on_hand_total']:>9} {row['sold']:>9}"
        )
    click.echo("="*84 + "\n")


@click.group('stores')
def stores_group():
    """Store management commands."""


@stores_group.command('list')
@with_appcontext
def list_stores_cli():
    """List all stores."""
    stores = store_service.list_stores()
    if not stores:
        click.echo("No stores found.")
        return

    click.echo("\n" + "="*72)
    click.echo(f"{'ID':<5} {'Name':<30} {'Kind':<8} {'City':<20}")
    click.echo("="*72)
    for store in stores:
        click.echo(f"{store.id:<5} {store.name:<30} {store.kind:<8} {store.city or '-':<20}")
    click.echo("="*72 + "\n")


@stores_group.command('create')
@click.option('--name', required=True, help='Store name (unique)')
@click.option('--kind', type=click.Choice(['MAIN', 'BRANCH'], case_sensitive=False), default='BRANCH')
@click.option('--manager', 'manager_name', default=None, help='Manager name')
@click.option('--city', default=None, help='City')
@click.option('--address', default=None, help='Street address')
@with_appcontext
def create_store_cli(name, kind, manager_name, city, address):
    """Create a store."""
    try:
        store = store_service.create_store(
            name, kind=kind, manager_name=manager_name, city=city, address=address,
        )
    except StockError as exc:
        _fail(exc)
    click.echo(f"PASS Created store: {store.name} (ID: {store.id}, Kind: {store.kind})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(stock_group)
    app.cli.add_command(stores_group)
