# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/duka/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "duka:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system seed
#   Idempotent demo data: shops JA, JC (Nyeri) and E1-E4 (Nakuru), an admin,
#   a JA sales user and three JA products.
#
# Users:
# - python -m flask users create --email a@b.c --name "A B" --role manager --shop-code JA
# - python -m flask users list
#
# Shops:
# - python -m flask shops list
# - python -m flask shops backfill-regions
#   Copy location into region for shops missing one.
#
# Products:
# - python -m flask products assign-shops
#   Fill Product.shop_id from product_group for legacy rows.
#
# Diagnostics:
# - python -m flask diagnostics distribution
#   Product counts per owning shop code.

import click
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db
from .models import Product, Shop, User, ROLES, ROLE_ADMIN, ROLE_SALES
from .services import auth_service, products_service, shop_service

SEED_SHOPS = (
    ("JA", "JA Shop", "Nyeri", "Nyeri"),
    ("JC", "JC Shop", "Nyeri", "Nyeri"),
    ("E1", "E1 Shop", "Nakuru", "Nakuru"),
    ("E2", "E2 Shop", "Nakuru", "Nakuru"),
    ("E3", "E3 Shop", "Nakuru", "Nakuru"),
    ("E4", "E4 Shop", "Nakuru", "Nakuru"),
)

# sku, name, price_cents, cost_cents, stock, category
SEED_PRODUCTS = (
    ("BRK-001", "Brake Pads - Front", 250_000, 180_000, 10, "Brakes"),
    ("OIL-002", "Engine Oil 5W30", 450_000, 320_000, 3, "Lubricants"),
    ("FLT-003", "Air Filter", 120_000, 80_000, 20, "Filters"),
)


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('seed')
@with_appcontext
def seed():
    """
    Create demo shops, users and products.

    Safe to re-run: existing shops, users and products are left as they are.
    """
    click.echo("START Seeding demo data...")

    shops = {}
    for code, name, location, region in SEED_SHOPS:
        shop, created = shop_service.ensure_shop(code, name, location, region)
        shops[code] = shop
        click.echo(f"{'PASS Created' if created else 'PASS Using existing'} shop {code} ({region})")

    def ensure_user(email: str, name: str, role: str, shop: Shop | None) -> User:
        user = db.session.query(User).filter_by(email=email).first()
        if user is None:
            user = auth_service.create_user(email=email, name=name, role=role,
                                            shop_id=shop.id if shop else None)
            user.must_change_credentials = role == ROLE_ADMIN
            click.echo(f"PASS Created user {email} ({role})")
        else:
            click.echo(f"PASS Using existing user {email}")
        return user

    ensure_user("admin@autospare.com", "Main Admin", ROLE_ADMIN, None)
    ensure_user("ja@autospare.com", "JA Sales", ROLE_SALES, shops["JA"])

    ja = shops["JA"]
    for sku, name, price, cost, stock, category in SEED_PRODUCTS:
        if products_service.find_by_sku(sku, ja.id) is not None:
            click.echo(f"PASS Using existing product {sku}")
            continue
        db.session.add(Product(
            shop_id=ja.id,
            product_group=ja.code,
            sku=sku,
            name=name,
            price_cents=price,
            cost_cents=cost,
            stock=stock,
            opening_stock=stock,
            category=category,
            measurement_unit="pcs",
        ))
        click.echo(f"PASS Created product {sku} in {ja.code} (stock {stock})")

    db.session.commit()
    click.echo("DONE Seed complete.")


@click.group('users')
def users_group():
    """User registration and inspection."""


@users_group.command('create')
@click.option('--email', required=True, help='Email address (as known to the identity provider)')
@click.option('--name', required=True, help='Display name')
@click.option('--role', type=click.Choice(ROLES), required=True, help='Role')
@click.option('--shop-code', help='Home shop code (omit for admins)')
@with_appcontext
def create_user_cli(email, name, role, shop_code):
    """Register a user."""
    shop_id = None
    if shop_code:
        shop = db.session.query(Shop).filter_by(code=shop_code).first()
        if shop is None:
            click.echo(f"FAIL Shop '{shop_code}' not found")
            return
        shop_id = shop.id

    try:
        user = auth_service.create_user(email=email, name=name, role=role, shop_id=shop_id)
        db.session.commit()
    except DomainError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role: {user.role})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with roles and active status."""
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Email':<30} {'Name':<20} {'Role':<9} {'Shop':<6} {'Active'}")
    click.echo("="*80)
    for u in users:
        shop_code = u.shop.code if u.shop else "-"
        click.echo(f"{u.id:<5} {u.email:<30} {u.name:<20} {u.role:<9} {shop_code:<6} {'Yes' if u.is_active else 'No'}")
    click.echo("="*80 + "\n")


@click.group('shops')
def shops_group():
    """Shop inspection and maintenance."""


@shops_group.command('list')
@with_appcontext
def list_shops():
    """List all shops with their regions."""
    shops = shop_service.list_shops()
    if not shops:
        click.echo("No shops found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Code':<8} {'Name':<25} {'Location':<15} {'Region'}")
    click.echo("="*70)
    for s in shops:
        click.echo(f"{s.id:<5} {s.code:<8} {s.name:<25} {s.location or '-':<15} {s.region or '-'}")
    click.echo("="*70 + "\n")


@shops_group.command('backfill-regions')
@with_appcontext
def backfill_regions_cli():
    """Set region := location where region is missing."""
    changed = shop_service.backfill_regions()
    for shop in changed:
        click.echo(f"PASS {shop.code}: region set to {shop.region}")
    click.echo(f"DONE {len(changed)} shop(s) updated.")


@click.group('products')
def products_group():
    """Product maintenance."""


@products_group.command('assign-shops')
@with_appcontext
def assign_shops_cli():
    """Fill Product.shop_id from product_group for legacy rows."""
    updated = products_service.assign_shop_ids()
    click.echo(f"DONE {updated} product(s) linked to their shop.")


@click.group('diagnostics')
def diagnostics_group():
    """Read-only data checks."""


@diagnostics_group.command('distribution')
@with_appcontext
def distribution_cli():
    """Count products per owning shop code."""
    report = shop_service.data_distribution()
    click.echo(f"Total products: {report['total_products']}")
    for code, count in sorted(report["distribution"].items()):
        click.echo(f"  {code:<12} {count}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(shops_group)
    app.cli.add_command(products_group)
    app.cli.add_command(diagnostics_group)
