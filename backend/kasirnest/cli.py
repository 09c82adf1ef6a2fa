# Overview: Flask CLI command groups for bootstrap, inspection, and development fixtures.

# backend/kasirnest/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create all tables that do not exist yet (use `flask db upgrade` for managed schemas).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--store-id 1]
#   List users with their store memberships.
# - python -m flask users create --username alice --email alice@example.com --password "pw123456" [--store-name "Alice's Shop"]
#   Create an account with its own store (prompts if options are omitted).
#
# Development fixtures:
# - python -m flask demo seed
#   Demo owner (demo / demo@kasirnest.local / demo1234), a store and a few products.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, StoreMembership, User
from .services.auth_service import register_user
from .services import products_service
from .validation import ConflictError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create all tables (idempotent)."""
    click.echo("START Initializing KasirNest schema...")
    db.create_all()
    click.echo("PASS Schema ready")


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

    click.echo("PASS Database reset")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--display-name', default=None)
@click.option('--store-name', default=None, help="Store created for the user (default: \"<name>'s Store\")")
@with_appcontext
def create_user_cli(username, email, password, display_name, store_name):
    """Create an account together with its own store (owner membership)."""
    try:
        user, store, _membership = register_user(
            username, email, password, display_name=display_name, store_name=store_name
        )
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Created user {user.username} (ID: {user.id}) owning store {store.name} (ID: {store.id})")


@users_group.command('list')
@click.option('--store-id', type=int, help='Only members of this store')
@with_appcontext
def list_users(store_id):
    """List users with their store memberships."""
    query = db.session.query(User)
    if store_id:
        query = query.join(StoreMembership, StoreMembership.user_id == User.id).filter(
            StoreMembership.store_id == store_id
        )

    users = query.order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Active':<8} {'Stores'}")
    click.echo("="*100)

    for user in users:
        stores = ", ".join(
            f"{m.store_id}:{m.role}" + ("" if m.is_active else "(inactive)")
            for m in user.memberships
        ) or "none"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {active_str:<8} {stores}")

    click.echo("="*100 + "\n")


DEMO_PRODUCTS = (
    {"name": "Kopi Susu", "price_cents": 1800, "cost_cents": 900, "sku": "BEV-001", "stock": 50, "min_stock": 10, "category": "Beverages"},
    {"name": "Teh Manis", "price_cents": 1200, "cost_cents": 500, "sku": "BEV-002", "stock": 40, "min_stock": 10, "category": "Beverages"},
    {"name": "Roti Bakar", "price_cents": 2500, "cost_cents": 1200, "sku": "FD-001", "stock": 20, "min_stock": 5, "category": "Food"},
    {"name": "Kaos Polos", "price_cents": 50000, "cost_cents": 30000, "sku": "APP-001", "stock": 10, "min_stock": 3, "category": "Apparel"},
)


@click.group('demo')
def demo_group():
    """Development fixtures."""


@demo_group.command('seed')
@click.option('--password', default='demo1234', help='Password for the demo owner')
@with_appcontext
def seed_demo(password):
    """Create a demo owner with a store and a few products (skips if present)."""
    existing = db.session.query(User).filter_by(username="demo").first()
    if existing:
        click.echo(f"SKIP Demo user already exists (ID: {existing.id})")
        return

    user, store, _membership = register_user(
        "demo",
        "demo@kasirnest.local",
        password,
        display_name="Demo Owner",
        store_name="KasirNest Demo Store",
    )
    click.echo(f"PASS Created demo owner {user.username} and store {store.name} (ID: {store.id})")

    for item in DEMO_PRODUCTS:
        fields = dict(item)
        category = fields.pop("category")
        products_service.create_product(store.id, fields, category_name=category, user_id=user.id)

    count = db.session.query(Product).filter_by(store_id=store.id).count()
    click.echo(f"PASS Seeded {count} products")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(demo_group)
