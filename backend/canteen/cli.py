# Overview: Flask CLI command groups for bootstrap, demo data and user management.

# backend/canteen/cli.py
# Commands (run from the backend directory with FLASK_APP=wsgi.py):
#
# - python -m flask system init-db
#   Create all tables (development shortcut; use `flask db upgrade` elsewhere).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask seed demo
#   Outlet, products with stock, staff, superadmin, customer with wallet, coupon.
# - python -m flask users create --email a@b.c --name "A" --password "Password1" --role CUSTOMER
# - python -m flask users list

from datetime import timedelta
from decimal import Decimal

import click
from flask.cli import with_appcontext

from .errors import CanteenError
from .extensions import db
from .models import Coupon, Inventory, Outlet, Product, User, Wallet
from .models.auth import ROLES, ROLE_CUSTOMER, ROLE_STAFF, ROLE_SUPERADMIN
from .services.auth_service import create_user
from .time_utils import utcnow

DEMO_PASSWORD = "Password123"

DEMO_PRODUCTS = [
    # name, category, price_paise, company_paid, is_veg, stock
    ("Veg Thali", "Meals", 5000, True, True, 100),
    ("Chicken Biryani", "Meals", 12000, False, False, 40),
    ("Paneer Tikka", "Starters", 9000, False, True, 30),
    ("Gulab Jamun", "Desserts", 3000, False, True, 50),
    ("Masala Chai", "Beverages", 1500, True, True, 200),
]


@click.group('system')
def system_group():
    """Database bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete. Run 'python -m flask seed demo' for sample data.")


@click.group('seed')
def seed_group():
    """Sample data for local development."""


def _ensure_user(email, name, role, outlet_id=None):
    user = db.session.query(User).filter_by(email=email).first()
    if user:
        click.echo(f"WARN  User '{email}' already exists, skipping...")
        return user
    user = create_user(email=email, name=name, password=DEMO_PASSWORD, role=role, outlet_id=outlet_id)
    click.echo(f"PASS Created {role.lower()}: {email}")
    return user


@seed_group.command('demo')
@with_appcontext
def seed_demo():
    """Idempotent demo dataset."""
    outlet = db.session.query(Outlet).filter_by(name="Main Canteen").first()
    if not outlet:
        outlet = Outlet(name="Main Canteen", address="Block A, Ground Floor", is_active=True)
        db.session.add(outlet)
        db.session.commit()
        click.echo(f"PASS Created outlet: {outlet.name} (ID: {outlet.id})")

    for name, category, price, company_paid, is_veg, stock in DEMO_PRODUCTS:
        product = db.session.query(Product).filter_by(name=name).first()
        if product:
            continue
        product = Product(
            outlet_id=outlet.id,
            name=name,
            category=category,
            price_paise=price,
            company_paid=company_paid,
            is_veg=is_veg,
        )
        db.session.add(product)
        db.session.flush()
        db.session.add(Inventory(product_id=product.id, outlet_id=outlet.id, quantity=stock, threshold=10))
        click.echo(f"PASS Created product: {name} ({price} paise, stock {stock})")
    db.session.commit()

    try:
        _ensure_user("staff@canteen.local", "Counter Staff", ROLE_STAFF, outlet.id)
        _ensure_user("superadmin@canteen.local", "Super Admin", ROLE_SUPERADMIN)
        customer = _ensure_user("customer@canteen.local", "Demo Customer", ROLE_CUSTOMER)
    except CanteenError as e:
        raise click.ClickException(str(e))

    wallet = db.session.query(Wallet).filter_by(customer_id=customer.id).first()
    if wallet and wallet.balance_paise == 0:
        wallet.balance_paise = 100000
        wallet.total_recharged_paise = 100000
        wallet.last_recharged_at = utcnow()
        click.echo("PASS Credited demo wallet with 100000 paise")

    if not db.session.query(Coupon).filter_by(code="WELCOME10").first():
        now = utcnow()
        db.session.add(Coupon(
            code="WELCOME10",
            description="10% off your order",
            reward_value=Decimal("0.10"),
            min_order_value_paise=20000,
            valid_from=now,
            valid_until=now + timedelta(days=90),
            outlet_id=outlet.id,
        ))
        click.echo("PASS Created coupon WELCOME10")
    db.session.commit()

    click.echo("\nDemo credentials (password for all): " + DEMO_PASSWORD)


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(ROLES), default=ROLE_CUSTOMER, show_default=True, help='Role')
@click.option('--outlet-id', type=int, help='Outlet assignment (STAFF/ADMIN)')
@with_appcontext
def create_user_cli(email, name, password, role, outlet_id):
    """Create a user account."""
    try:
        user = create_user(email=email, name=name, password=password, role=role, outlet_id=outlet_id)
    except CanteenError as e:
        raise click.ClickException(f"{e.code}: {e}")
    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role {user.role})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Email':<32} {'Role':<12} {'Outlet':<8} {'Active'}")
    click.echo("="*90)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.email:<32} {user.role:<12} {str(user.outlet_id or '-'):<8} {active_str}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(seed_group)
    app.cli.add_command(users_group)
