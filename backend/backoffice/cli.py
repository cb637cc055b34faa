# Overview: Flask CLI command groups for bootstrap, seeding, and cashback float maintenance.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Database bootstrap/repair:
# - python -m flask db-admin init
#   Create all tables (idempotent).
# - python -m flask db-admin reset --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Demo data:
# - python -m flask seed demo [--capital 50000]
#   Branch, subdivision, admin + cashier, a category and stocked products/variants.
#
# Branch cashback float:
# - python -m flask branches list
#   List branches with their cashback capital.
# - python -m flask branches capital 1 250.00 --notes "Float top-up"
#   Adjust a branch's cashback capital (negative amount draws it down).
#
# Sessions:
# - python -m flask sessions list --branch-id 1 --status OPEN
#   List recent cashier sessions.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import (
    Branch,
    CashierSession,
    Category,
    InventoryChangeType,
    Product,
    ProductVariant,
    SessionStatus,
    Subdivision,
    User,
    UserRole,
)
from .services import cashback_service
from .services.inventory_service import apply_stock_change
from .validation import ServiceError, to_cents


@click.group('db-admin')
def db_admin_group():
    """Database bootstrap and repair commands."""


@db_admin_group.command('init')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@db_admin_group.command('reset')
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

    click.echo("PASS Database reset complete. Run 'python -m flask seed demo' to add demo data.")


@click.group('seed')
def seed_group():
    """Demo data commands."""


@seed_group.command('demo')
@click.option('--capital', default='50000', show_default=True, help='Opening cashback capital')
@with_appcontext
def seed_demo(capital):
    """
    Seed a demo branch.

    Opening stock is booked as RESTOCK ledger entries, so every holder's
    quantity equals the sum of its ledger from the start.
    """
    branch = db.session.query(Branch).filter_by(code="MAIN").first()
    if branch:
        click.echo(f"PASS Demo branch already exists (ID: {branch.id})")
        return

    branch = Branch(
        name="Main Branch",
        code="MAIN",
        business_name="Demo Stores Ltd",
        business_address="1 Market Road",
        business_phone="+234 800 000 0000",
        receipt_footer="Thank you for your purchase!",
        currency="NGN",
        cashback_capital_cents=0,
        cashback_service_charge_rate_bps=200,
    )
    db.session.add(branch)
    db.session.flush()

    counter = Subdivision(branch_id=branch.id, name="Front Counter")
    db.session.add(counter)
    db.session.flush()

    admin = User(username="admin", first_name="Ada", last_name="Admin", role=UserRole.ADMIN, branch_id=branch.id)
    cashier = User(
        username="cashier",
        first_name="Chidi",
        last_name="Cashier",
        role=UserRole.CASHIER,
        branch_id=branch.id,
        assigned_subdivision_id=counter.id,
    )
    db.session.add_all([admin, cashier])

    drinks = Category(branch_id=branch.id, name="Drinks")
    db.session.add(drinks)
    db.session.flush()

    water = Product(
        branch_id=branch.id, category_id=drinks.id, sku="WATER-75CL", name="Table Water 75cl",
        selling_price_cents=20000, cost_price_cents=12000, quantity_in_stock=0, low_stock_threshold=10,
    )
    soda = Product(
        branch_id=branch.id, category_id=drinks.id, sku="SODA", name="Soda", has_variants=True,
    )
    db.session.add_all([water, soda])
    db.session.flush()

    cola = ProductVariant(
        product_id=soda.id, name="Cola 50cl", sku="SODA-COLA", selling_price_cents=35000,
        cost_price_cents=25000, quantity_in_stock=0, low_stock_threshold=5,
    )
    lemon = ProductVariant(
        product_id=soda.id, name="Lemon 50cl", sku="SODA-LEMON", selling_price_cents=35000,
        cost_price_cents=25000, quantity_in_stock=0, low_stock_threshold=5,
    )
    db.session.add_all([cola, lemon])
    db.session.flush()

    for product, variant, qty in ((water, None, 50), (soda, cola, 24), (soda, lemon, 24)):
        apply_stock_change(
            product, variant, qty, InventoryChangeType.RESTOCK,
            user_id=admin.id, reason="Opening stock",
        )

    db.session.commit()
    click.echo(f"PASS Created branch {branch.name} (ID: {branch.id}), users: admin (ID: {admin.id}), cashier (ID: {cashier.id})")

    capital_cents = to_cents(capital, "capital")
    if capital_cents > 0:
        cashback_service.adjust_capital(branch.id, capital_cents, user_id=admin.id, notes="Opening float")
        click.echo(f"PASS Cashback capital set to {capital_cents / 100:,.2f}")


@click.group('branches')
def branches_group():
    """Branch cashback float commands."""


@branches_group.command('list')
@with_appcontext
def list_branches():
    branches = db.session.query(Branch).order_by(Branch.id).all()
    if not branches:
        click.echo("No branches found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Code':<10} {'Name':<30} {'Capital':>15} {'Active':<8}")
    click.echo("="*80)
    for branch in branches:
        active_str = "Yes" if branch.is_active else "No"
        click.echo(f"{branch.id:<5} {(branch.code or '-'):<10} {branch.name:<30} "
                   f"{branch.cashback_capital_cents / 100:>15,.2f} {active_str:<8}")
    click.echo("="*80 + "\n")


@branches_group.command('capital')
@click.argument('branch_id', type=int)
@click.argument('amount')
@click.option('--notes', default=None, help='Reason for the adjustment')
@with_appcontext
def adjust_capital_cli(branch_id, amount, notes):
    """
    Adjust a branch's cashback capital by AMOUNT (currency units, may be negative).

    Example:
        flask branches capital 1 250.00 --notes "Float top-up"
    """
    try:
        result = cashback_service.adjust_capital(branch_id, to_cents(amount, "amount"), notes=notes)
    except ServiceError as e:
        raise click.ClickException(str(e))

    click.echo(
        f"PASS Capital {result['previous_capital_cents'] / 100:,.2f} -> "
        f"{result['new_capital_cents'] / 100:,.2f}"
    )


@click.group('sessions')
def sessions_group():
    """Cashier session inspection commands."""


@sessions_group.command('list')
@click.option('--branch-id', type=int, help='Filter by branch ID')
@click.option('--status', type=click.Choice(['OPEN', 'CLOSED']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(branch_id, status, limit):
    """
    List cashier sessions.

    Example:
        flask sessions list
        flask sessions list --branch-id 1 --status OPEN
    """
    query = db.session.query(CashierSession)

    if branch_id:
        query = query.filter_by(branch_id=branch_id)

    if status:
        query = query.filter_by(status=SessionStatus(status))

    sessions = query.order_by(CashierSession.start_time.desc()).limit(limit).all()

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Branch':<8} {'User':<15} {'Status':<8} {'Opened':<20} {'Opening':>12} {'Closing':>12}")
    click.echo("="*100)

    for session in sessions:
        username = session.opened_by.username if session.opened_by else "Unknown"
        closing = "-" if session.closing_balance_cents is None else f"{session.closing_balance_cents / 100:,.2f}"
        click.echo(f"{session.id:<5} {session.branch_id:<8} {username:<15} {session.status.value:<8} "
                   f"{str(session.start_time)[:19]:<20} {session.opening_balance_cents / 100:>12,.2f} {closing:>12}")

    click.echo("="*100 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(db_admin_group)
    app.cli.add_command(seed_group)
    app.cli.add_command(branches_group)
    app.cli.add_command(sessions_group)
