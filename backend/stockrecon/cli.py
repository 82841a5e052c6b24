# Overview: Flask CLI command groups for bootstrap, catalog seeding, and reconciliation inspection.

# backend/stockrecon/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog seeding (reference data the engine reads):
# - python -m flask catalog add-branch --name "Centro" --code "CEN"
# - python -m flask catalog add-category --name "Beverages"
# - python -m flask catalog add-product --sku "COLA-500" --name "Cola 500ml" --category-id 1 --min-stock 5 --max-stock 50
# - python -m flask catalog list-products
#
# Reconciliation inspection:
# - python -m flask recon sessions --branch-id 1 --limit 20
#   Recent control sessions.
# - python -m flask recon pending [--branch-id 1]
#   Adjustment requests awaiting authorization.
# - python -m flask recon audit 12
#   Audit records written when request 12 was authorized.
# - python -m flask recon stock --branch-id 1
#   Stock ledger of a branch.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product
from .services import adjustment_request_service, audit_service, catalog_service, control_session_service, stock_ledger_service
from .services.errors import ReconciliationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables."""
    db.create_all()
    click.echo("PASS Tables created.")


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

    click.echo("PASS Database reset complete.")


@click.group('catalog')
def catalog_group():
    """Branch and product reference data."""


@catalog_group.command('add-branch')
@click.option('--name', required=True)
@click.option('--code', required=True)
@with_appcontext
def add_branch_cli(name, code):
    try:
        branch = catalog_service.create_branch(name=name, code=code)
        db.session.commit()
    except ReconciliationError as e:
        db.session.rollback()
        raise click.ClickException(str(e))
    click.echo(f"PASS Branch created: id={branch.id} code={branch.code}")


@catalog_group.command('add-category')
@click.option('--name', required=True)
@with_appcontext
def add_category_cli(name):
    try:
        category = catalog_service.create_category(name=name)
        db.session.commit()
    except ReconciliationError as e:
        db.session.rollback()
        raise click.ClickException(str(e))
    click.echo(f"PASS Category created: id={category.id} name={category.name}")


@catalog_group.command('add-product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--category-id', type=int, default=None)
@click.option('--min-stock', type=int, default=0, show_default=True)
@click.option('--max-stock', type=int, default=0, show_default=True)
@with_appcontext
def add_product_cli(sku, name, category_id, min_stock, max_stock):
    try:
        product = catalog_service.create_product(
            sku=sku,
            name=name,
            category_id=category_id,
            min_stock=min_stock,
            max_stock=max_stock,
        )
        db.session.commit()
    except ReconciliationError as e:
        db.session.rollback()
        raise click.ClickException(str(e))
    click.echo(f"PASS Product created: id={product.id} sku={product.sku}")


@catalog_group.command('list-products')
@with_appcontext
def list_products_cli():
    products = db.session.query(Product).order_by(Product.id.asc()).all()

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<6} {'SKU':<20} {'NAME':<30} {'CAT':<6} {'MIN':<6} {'MAX':<6}")
    click.echo("=" * 80)
    for p in products:
        click.echo(
            f"{p.id:<6} {p.sku:<20} {p.name[:30]:<30} {str(p.category_id or '-'):<6} {p.min_stock:<6} {p.max_stock:<6}"
        )
    click.echo("=" * 80 + "\n")


@click.group('recon')
def recon_group():
    """Stock reconciliation inspection."""


@recon_group.command('sessions')
@click.option('--branch-id', type=int, default=None)
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_sessions_cli(branch_id, limit):
    sessions = control_session_service.list_sessions(branch_id=branch_id, limit=limit)
    if not sessions:
        click.echo("No control sessions.")
        return
    for s in sessions:
        request_ref = s.adjustment_request_id if s.adjustment_request_id is not None else "-"
        click.echo(
            f"#{s.id:<5} branch={s.branch_id:<4} {s.scope:<8} {s.status:<12} "
            f"request={request_ref} applied={'yes' if s.adjustments_applied else 'no'}"
        )


@recon_group.command('pending')
@click.option('--branch-id', type=int, default=None)
@with_appcontext
def list_pending_cli(branch_id):
    requests = adjustment_request_service.list_pending(branch_id=branch_id)
    if not requests:
        click.echo("No adjustment requests pending authorization.")
        return
    for r in requests:
        total = sum(line.delta for line in r.lines)
        click.echo(
            f"#{r.id:<5} branch={r.branch_id:<4} session={r.control_session_id:<5} "
            f"lines={len(r.lines):<4} net_delta={total:+d} submitted={r.submitted_at}"
        )


@recon_group.command('audit')
@click.argument('request_id', type=int)
@with_appcontext
def audit_cli(request_id):
    records = audit_service.query_by_request(request_id)
    if not records:
        click.echo(f"No audit records for adjustment request {request_id}.")
        return
    for a in records:
        click.echo(
            f"product={a.product_id:<6} branch={a.branch_id:<4} "
            f"{a.quantity_before} -> {a.quantity_after} by user {a.deciding_user_id} at {a.applied_at}"
        )


@recon_group.command('stock')
@click.option('--branch-id', type=int, required=True)
@with_appcontext
def stock_cli(branch_id):
    records = stock_ledger_service.list_branch_stock(branch_id)
    if not records:
        click.echo(f"No stock records for branch {branch_id}.")
        return
    for rec in records:
        click.echo(
            f"product={rec.product_id:<6} qty={rec.quantity:<6} "
            f"min={rec.min_threshold:<5} max={rec.max_threshold:<5}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(recon_group)
