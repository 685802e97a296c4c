# Overview: Flask CLI command groups for schema bootstrap and cart maintenance.

# backend/commerce/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables and the default payment methods (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Maintenance:
# - python -m flask carts cleanup-expired
#   Delete active carts past their expiry, items first.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import PaymentMethod
from .services.cart_service import CartService
from .store import DocumentStore


DEFAULT_PAYMENT_METHODS = [
    ("bank_transfer", "Bank Transfer"),
    ("cash_on_delivery", "Cash on Delivery"),
    ("card", "Card"),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create tables and seed default payment methods. Safe to re-run."""
    db.create_all()

    store = DocumentStore()
    created = 0
    for code, name in DEFAULT_PAYMENT_METHODS:
        if store.find(PaymentMethod, code=code):
            continue
        store.create(PaymentMethod, {"code": code, "name": name, "is_active": True})
        created += 1

    click.echo(f"PASS Schema ready. {created} payment methods created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init-db' to seed defaults.")


@click.group('carts')
def carts_group():
    """Cart maintenance commands."""


@carts_group.command('cleanup-expired')
@with_appcontext
def cleanup_expired_cli():
    """Delete active carts whose expiry has passed."""
    deleted = CartService(DocumentStore()).cleanup_expired_carts()
    click.echo(f"Deleted {deleted} expired carts.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(carts_group)
