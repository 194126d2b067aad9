# backend/duka/services/products_service.py
"""
Products Service

Per-shop product catalogue: create, upsert, descriptive edits and the
stock-changing entry points that route through the ledger.

STOCK RULE:
update_product never touches stock. Stock moves only through
ledger_service.apply_movement (restock, adjustment, sale, transfer), or is
set once as opening_stock when a product is first created.
"""
from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..errors import NotFound, ValidationError
from ..models import Product, Shop, ROLE_ADMIN, ROLE_MANAGER
from ..models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_RESTOCK
from ..validation import MAX_PRICE_CENTS, MAX_STOCK, coerce_column_value, enforce_rules_product
from .auth_service import verify_role
from .concurrency import lock_for_update, run_atomic
from . import ledger_service

CATALOGUE_ROLES = (ROLE_ADMIN, ROLE_MANAGER)

UPSERT_TOPUP_NOTE = "Stock topped up via import"

# Descriptive fields an edit may change. sku, shop_id and stock are not here.
PRODUCT_MUTABLE_FIELDS = {
    "name",
    "description",
    "barcode",
    "category",
    "supplier",
    "measurement_unit",
    "price_cents",
    "cost_cents",
    "tax_percent",
    "reorder_point",
    "preferred_quantity",
    "warning_quantity",
    "is_tax_inclusive",
    "is_price_change_allowed",
    "is_service",
    "is_enabled",
}

# Fields an upsert overwrites on every match, even with None
UPSERT_OVERWRITE_FIELDS = ("name", "price_cents", "cost_cents", "category", "description")

# Optional fields an upsert only overwrites when a value was supplied
UPSERT_EXTRA_FIELDS = PRODUCT_MUTABLE_FIELDS - set(UPSERT_OVERWRITE_FIELDS)


@dataclass(frozen=True)
class UpsertResult:
    action: str  # "created" or "updated"
    product_id: int


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _require_shop(shop_id: int) -> Shop:
    shop = db.session.get(Shop, shop_id)
    if shop is None:
        raise NotFound("Shop", shop_id)
    return shop


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound("Product", product_id)
    return product


def find_by_sku(sku: str, shop_id: int | None) -> Product | None:
    """Exact (sku, shop_id) lookup; a SKU in another shop is a different product."""
    return (
        db.session.query(Product)
        .filter(Product.sku == sku, Product.shop_id == shop_id)
        .first()
    )


def _check_money(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer number of cents", field=name)
    if value < 0:
        raise ValidationError(f"{name} must be >= 0", field=name)
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_PRICE_CENTS}", field=name)
    return value


def _check_stock(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("stock must be an integer", field="stock")
    if value < 0:
        raise ValidationError("stock must be >= 0", field="stock")
    if value > MAX_STOCK:
        raise ValidationError(f"stock cannot exceed {MAX_STOCK}", field="stock")
    return value


def upsert_in_session(
    *,
    actor_user_id: int,
    shop: Shop,
    sku: str,
    name: str,
    price_cents: int,
    cost_cents: int,
    stock: int,
    category: str | None = None,
    description: str | None = None,
    **extra,
) -> UpsertResult:
    """
    Insert-or-update one product inside the caller's transaction.

    Found by (sku, shop): descriptive fields are overwritten and the incoming
    stock is ADDED through a restock movement. Not found: a new row whose
    opening_stock is the incoming stock, with no movement.

    No authorization and no commit here; upsert_product and the import
    engine own both.
    """
    sku = (sku or "").strip()
    if not sku:
        raise ValidationError("sku is required", field="sku")
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required", field="name")
    price_cents = _check_money("price_cents", price_cents)
    cost_cents = _check_money("cost_cents", cost_cents)
    stock = _check_stock(stock)

    unknown = set(extra) - UPSERT_EXTRA_FIELDS
    if unknown:
        field = sorted(unknown)[0]
        raise ValidationError(f"Field not allowed: {field}", field=field)
    columns = Product.__mapper__.columns
    extra = {k: coerce_column_value(columns[k], v) for k, v in extra.items()}
    enforce_rules_product(extra)

    existing = lock_for_update(
        db.session.query(Product).filter(Product.sku == sku, Product.shop_id == shop.id)
    ).first()

    if existing is not None:
        existing.name = name
        existing.price_cents = price_cents
        existing.cost_cents = cost_cents
        existing.category = category
        existing.description = description
        for k, v in extra.items():
            if v is not None:
                setattr(existing, k, v)
        db.session.flush()

        if stock > 0:
            ledger_service.apply_movement(
                product_id=existing.id,
                shop_id=shop.id,
                delta=stock,
                movement_type=MOVEMENT_RESTOCK,
                note=UPSERT_TOPUP_NOTE,
                actor_user_id=actor_user_id,
            )
        return UpsertResult(action="updated", product_id=existing.id)

    product = Product(
        shop_id=shop.id,
        product_group=shop.code,
        sku=sku,
        name=name,
        price_cents=price_cents,
        cost_cents=cost_cents,
        stock=stock,
        opening_stock=stock,
        category=category,
        description=description,
    )
    for k, v in extra.items():
        if v is not None:
            setattr(product, k, v)
    db.session.add(product)
    db.session.flush()
    return UpsertResult(action="created", product_id=product.id)


def upsert_product(
    *,
    caller_id: int,
    sku: str,
    shop_id: int,
    name: str,
    price_cents: int,
    cost_cents: int,
    stock: int,
    category: str | None = None,
    description: str | None = None,
    **extra,
) -> UpsertResult:
    def _op():
        caller = verify_role(caller_id, CATALOGUE_ROLES)
        shop = _require_shop(shop_id)
        return upsert_in_session(
            actor_user_id=caller.id,
            shop=shop,
            sku=sku,
            name=name,
            price_cents=price_cents,
            cost_cents=cost_cents,
            stock=stock,
            category=category,
            description=description,
            **extra,
        )

    return run_atomic(_op)


def create_product(*, caller_id: int, shop_id: int, patch: dict) -> Product:
    """
    Create a product from a validated patch dict.

    Raises:
        Unauthorized: caller is not admin/manager
        NotFound: shop does not exist
        ValidationError: SKU already exists in this shop
    """
    sku = (patch.get("sku") or "").strip()
    if not sku:
        raise ValidationError("sku is required", field="sku")

    def _op():
        verify_role(caller_id, CATALOGUE_ROLES)
        shop = _require_shop(shop_id)
        if find_by_sku(sku, shop.id) is not None:
            raise ValidationError(f"SKU {sku} already exists in shop {shop.code}", field="sku")

        stock = _check_stock(patch.get("stock") or 0)
        p = Product(
            shop_id=shop.id,
            product_group=shop.code,
            sku=sku,
            stock=stock,
            opening_stock=stock,
        )
        apply_product_patch(p, patch)
        db.session.add(p)
        db.session.flush()
        return p

    return run_atomic(_op)


def update_product(*, caller_id: int, product_id: int, patch: dict) -> Product:
    if "stock" in patch:
        raise ValidationError("stock cannot be edited directly; use restock or adjust", field="stock")

    def _op():
        verify_role(caller_id, CATALOGUE_ROLES)
        p = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if p is None:
            raise NotFound("Product", product_id)
        apply_product_patch(p, patch)
        db.session.flush()
        return p

    return run_atomic(_op)


def _get_stocked_product(product_id: int) -> Product:
    product = get_product(product_id)
    if product.shop_id is None:
        raise ValidationError(
            f"Product {product_id} is not linked to a shop; run products assign-shops first",
            field="shop_id",
        )
    return product


def restock_product(
    *,
    caller_id: int,
    product_id: int,
    quantity: int,
    cost_cents: int | None = None,
    note: str | None = None,
) -> ledger_service.MovementResult:
    """Receive new units from a supplier; optionally record the new unit cost."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer", field="quantity")
    if cost_cents is not None:
        _check_money("cost_cents", cost_cents)

    def _op():
        caller = verify_role(caller_id, CATALOGUE_ROLES)
        product = _get_stocked_product(product_id)
        result = ledger_service.apply_movement(
            product_id=product.id,
            shop_id=product.shop_id,
            delta=quantity,
            movement_type=MOVEMENT_RESTOCK,
            note=note or "Manual restock",
            actor_user_id=caller.id,
        )
        if cost_cents is not None:
            product.cost_cents = cost_cents
            db.session.flush()
        return result

    return run_atomic(_op)


def adjust_stock(
    *,
    caller_id: int,
    product_id: int,
    delta: int,
    note: str | None = None,
) -> ledger_service.MovementResult:
    """Signed correction (count mismatch, damage, loss)."""

    def _op():
        caller = verify_role(caller_id, CATALOGUE_ROLES)
        product = _get_stocked_product(product_id)
        return ledger_service.apply_movement(
            product_id=product.id,
            shop_id=product.shop_id,
            delta=delta,
            movement_type=MOVEMENT_ADJUSTMENT,
            note=note or "Stock adjustment",
            actor_user_id=caller.id,
        )

    return run_atomic(_op)


def get_products_for_shop(shop_id: int | None = None, shop_code: str | None = None) -> list[Product]:
    """
    Products stocked by a shop, by name.

    With only a shop code, rows whose shop_id was never filled in are still
    found through product_group. With neither, every product is returned.
    """
    query = db.session.query(Product)
    if shop_id is not None:
        query = query.filter(Product.shop_id == shop_id)
    elif shop_code:
        shop = db.session.query(Shop).filter_by(code=shop_code).first()
        if shop is not None:
            query = query.filter(or_(Product.shop_id == shop.id, Product.product_group == shop_code))
        else:
            query = query.filter(Product.product_group == shop_code)
    return query.order_by(Product.name.asc(), Product.id.asc()).all()


def get_low_stock(shop_id: int | None = None, threshold: int | None = None) -> list[Product]:
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 5)
    query = db.session.query(Product).filter(Product.stock <= threshold)
    if shop_id is not None:
        query = query.filter(Product.shop_id == shop_id)
    return query.order_by(Product.stock.asc(), Product.name.asc()).all()


def assign_shop_ids() -> int:
    """
    Backfill Product.shop_id from product_group for legacy rows.

    Returns the number of products updated. Rows whose group matches no shop
    code are left alone.
    """
    shops_by_code = {s.code: s.id for s in db.session.query(Shop).all()}
    updated = 0
    for p in db.session.query(Product).filter(Product.shop_id.is_(None)).all():
        shop_id = shops_by_code.get(p.product_group)
        if shop_id is None:
            continue
        p.shop_id = shop_id
        updated += 1
    db.session.commit()
    return updated
