# Overview: Flask CLI command groups for bootstrap, users and customer maintenance.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates the schema and the default admin, gerente and vendedor users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
#   List all users with role and active status.
# - python -m flask users create --username ana --name "Ana" --password "segredo" --role vendedor
#   Create a user (prompts if options are omitted).
#
# Customers:
# - python -m flask customers generate-codes
#   Backfill customer codes across orders and customers (runs as the first admin user).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .services.auth_service import ROLE_ADMIN, ROLE_MANAGER, ROLE_SELLER, VALID_ROLES, UserError, create_user
from .services import customer_service


DEFAULT_PASSWORD = "senha123"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create all tables and the default users.

    Users: admin (admin), gerente (gerente), vendedor (vendedor), all with
    password "senha123".

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing back office...")
    db.create_all()

    default_users = [
        ("admin", "Administrador", ROLE_ADMIN),
        ("gerente", "Gerente", ROLE_MANAGER),
        ("vendedor", "Vendedor", ROLE_SELLER),
    ]
    for username, name, role in default_users:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(username=username, name=name, password=DEFAULT_PASSWORD, role=role)
            click.echo(f"PASS Created user: {username} with role '{role}'")
        except UserError as e:
            click.echo(f"FAIL Failed to create user '{username}': {str(e)}")

    click.echo("\nDONE Back office initialized.")
    click.echo(f"Default password for all users: {DEFAULT_PASSWORD} (CHANGE IN PRODUCTION!)")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo(f"{'ID':<5} {'Username':<20} {'Name':<30} {'Role':<10} {'Active'}")
    for user in users:
        click.echo(f"{user.id:<5} {user.username:<20} {user.name:<30} {user.role:<10} {'Yes' if user.is_active else 'No'}")


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--name', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), default=ROLE_SELLER, show_default=True)
@with_appcontext
def create_user_cli(username, name, password, role):
    try:
        user = create_user(username=username, name=name, password=password, role=role)
    except UserError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user {user.username} (ID: {user.id}) with role '{user.role}'")


# =============================================================================
# CUSTOMERS
# =============================================================================

@click.group('customers')
def customers_group():
    """Customer maintenance commands."""


@customers_group.command('generate-codes')
@with_appcontext
def generate_codes():
    """Give every distinct customer identity a code and propagate it."""
    admin = (
        db.session.query(User)
        .filter(User.role == ROLE_ADMIN, User.is_active.is_(True))
        .order_by(User.id.asc())
        .first()
    )
    if admin is None:
        raise click.ClickException("No active admin user. Run: python -m flask system init")

    result = customer_service.generate_customer_codes(admin)
    click.echo(
        f"PASS {result['new_customers']} new codes, "
        f"{result['updated_orders']} orders and {result['updated_customers']} customers updated"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(customers_group)
