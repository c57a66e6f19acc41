# Overview: Flask CLI command groups for bootstrap, inspection, and reconciliation.

# backend/branchledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "branchledger:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
# - python -m flask system seed-demo
#   Create a demo tenant, two branches and two products (one serial-tracked).
#
# Stock inspection/repair:
# - python -m flask stock ledger --branch-id 1 --product-id 1 [--limit 50]
#   Print the ledger for a product in a branch, newest first.
# - python -m flask stock verify [--branch-id 1]
#   Compare every snapshot with its ledger; exits non-zero on mismatches.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Tenant, Branch, Product, StockTrackingMode
from .services import ledger_service
from .validation import NotFoundError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('seed-demo')
@click.option('--tenant', 'tenant_name', default='Demo Retail', help='Tenant name')
@click.option('--tenant-code', default='DEMO', help='Tenant code')
@with_appcontext
def seed_demo(tenant_name, tenant_code):
    """
    Seed a demo tenant for local testing (idempotent).

    Creates:
    - Tenant DEMO with branches MAIN and WEST
    - Product "USB Cable" (quantity-tracked, 18% GST)
    - Product "Smartphone X" (serial-tracked, inactive until serials are added)
    """
    tenant = db.session.query(Tenant).filter_by(code=tenant_code).first()
    if not tenant:
        tenant = Tenant(name=tenant_name, code=tenant_code, is_active=True)
        db.session.add(tenant)
        db.session.flush()
        click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id})")
    else:
        click.echo(f"PASS Using existing tenant: {tenant.name} (ID: {tenant.id})")

    for code, name in (("MAIN", "Main Branch"), ("WEST", "West Branch")):
        if not db.session.query(Branch).filter_by(tenant_id=tenant.id, code=code).first():
            db.session.add(Branch(tenant_id=tenant.id, code=code, name=name, timezone="Asia/Kolkata"))
            click.echo(f"PASS Created branch: {code}")

    demo_products = (
        dict(sku="CABLE-USB", name="USB Cable", selling_price_cents=19900,
             purchase_price_cents=9900, gst_rate_bps=1800, min_stock=5,
             stock_tracking_mode=StockTrackingMode.QUANTITY.value, is_active=True),
        dict(sku="PHONE-X", name="Smartphone X", selling_price_cents=2499900,
             purchase_price_cents=2100000, gst_rate_bps=1800, min_stock=1,
             stock_tracking_mode=StockTrackingMode.SERIAL.value, is_active=False),
    )
    for fields in demo_products:
        if not db.session.query(Product).filter_by(tenant_id=tenant.id, sku=fields["sku"]).first():
            db.session.add(Product(tenant_id=tenant.id, **fields))
            click.echo(f"PASS Created product: {fields['sku']}")

    db.session.commit()
    click.echo("DONE Demo data ready")


@click.group('stock')
def stock_group():
    """Stock ledger inspection and reconciliation."""


@stock_group.command('ledger')
@click.option('--branch-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def show_ledger(branch_id, product_id, limit):
    """Print ledger entries for (branch, product), newest first."""
    try:
        entries = ledger_service.get_ledger(branch_id=branch_id, product_id=product_id, limit=limit)
    except (NotFoundError, ValidationError) as e:
        raise click.ClickException(str(e))

    if not entries:
        click.echo("No ledger entries.")
        return

    click.echo(f"{'ID':>6}  {'TYPE':<13} {'QTY':>6} {'PREV':>6} {'NEW':>6}  {'REF':<16} REASON")
    click.echo("-" * 80)
    for e in entries:
        click.echo(
            f"{e.id:>6}  {e.movement_type:<13} {e.signed_quantity:>+6} {e.previous_stock:>6} "
            f"{e.resulting_stock:>6}  {(e.reference_id or '-'):<16} {e.reason or ''}"
        )


@stock_group.command('verify')
@click.option('--branch-id', type=int, default=None, help='Limit to one branch')
@with_appcontext
def verify_stock(branch_id):
    """
    Reconcile snapshots with the ledger.

    A mismatch means something wrote stock outside ledger_service.
    """
    mismatches = ledger_service.verify_snapshots(branch_id=branch_id)
    if not mismatches:
        click.echo("PASS All snapshots match the ledger")
        return

    for m in mismatches:
        click.echo(
            f"FAIL branch={m['branch_id']} product={m['product_id']} "
            f"snapshot={m['snapshot']} ledger_sum={m['ledger_sum']} newest={m['newest_resulting']}"
        )
    raise click.ClickException(f"{len(mismatches)} snapshot(s) out of sync")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
