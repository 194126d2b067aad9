# backend/duka/services/sales_service.py
"""
Sale processing.

A sale is created complete in one transaction: role check, duplicate M-Pesa
check, one `sale` ledger movement per line, then the Sale and its lines.
Any failure (stock, validation, duplicate payment) rolls the whole thing
back, so there are no partially decremented carts.
"""
from __future__ import annotations

from collections import OrderedDict

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import DuplicatePayment, InsufficientStock, NotFound, ValidationError
from ..models import Product, Sale, SaleLine, Shop, User, ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES
from ..models.inventory import MOVEMENT_SALE
from duka.time_utils import utcnow
from .auth_service import verify_role
from .concurrency import lock_for_update, run_atomic
from . import ledger_service

SALE_ROLES = (ROLE_SALES, ROLE_MANAGER, ROLE_ADMIN)

MPESA_CODE_MAX_LENGTH = Sale.__table__.c.mpesa_code.type.length


def normalize_mpesa_code(code: str | None) -> str | None:
    if code is None:
        return None
    code = str(code).strip().upper()
    if len(code) > MPESA_CODE_MAX_LENGTH:
        raise ValidationError(
            f"mpesa_code cannot exceed {MPESA_CODE_MAX_LENGTH} characters", field="mpesa_code",
        )
    return code or None


def _validate_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("A sale needs at least one item", field="items")

    cleaned = []
    for i, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ValidationError(f"Item {i} must be an object", field="items")
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        price = item.get("unit_price_cents")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError(f"Item {i}: product_id is required", field="product_id")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(f"Item {i}: quantity must be a positive integer", field="quantity")
        if isinstance(price, bool) or not isinstance(price, int) or price < 0:
            raise ValidationError(f"Item {i}: unit_price_cents must be a non-negative integer", field="unit_price_cents")
        cleaned.append({"product_id": product_id, "quantity": quantity, "unit_price_cents": price})
    return cleaned


def _mpesa_code_taken(code: str) -> bool:
    return db.session.query(Sale.id).filter(Sale.mpesa_code == code).first() is not None


def create_sale(
    *,
    caller_id: int,
    shop_id: int,
    user_id: int,
    items: list[dict],
    payment_method: str,
    mpesa_code: str | None = None,
    payment_proof_url: str | None = None,
) -> Sale:
    """
    Record a sale and take its units out of stock.

    Raises:
        Unauthorized: caller role not sales/manager/admin
        ValidationError: empty cart, bad quantity/price, missing payment method
        DuplicatePayment: mpesa_code already used by another sale
        NotFound: shop, seller or product missing (or product in another shop)
        InsufficientStock: first line whose quantity exceeds stock
    """
    lines_in = _validate_items(items)
    payment_method = (payment_method or "").strip()
    if not payment_method:
        raise ValidationError("payment_method is required", field="payment_method")
    code = normalize_mpesa_code(mpesa_code)

    def _op():
        verify_role(caller_id, SALE_ROLES)
        if db.session.get(Shop, shop_id) is None:
            raise NotFound("Shop", shop_id)
        if db.session.get(User, user_id) is None:
            raise NotFound("User", user_id)

        if code is not None and _mpesa_code_taken(code):
            raise DuplicatePayment(code)

        sale = Sale(
            shop_id=shop_id,
            user_id=user_id,
            payment_method=payment_method,
            mpesa_code=code,
            payment_proof_url=payment_proof_url,
            created_at=utcnow(),
        )

        total = 0
        sale_lines = []
        for line_number, item in enumerate(lines_in, start=1):
            product = lock_for_update(
                db.session.query(Product).filter_by(id=item["product_id"])
            ).first()
            if product is None or product.shop_id != shop_id:
                raise NotFound(
                    "Product",
                    item["product_id"],
                    message=f"Product {item['product_id']} not found in shop {shop_id}",
                )
            if product.stock < item["quantity"]:
                raise InsufficientStock(product.name, requested=item["quantity"], available=product.stock)

            movement = ledger_service.apply_movement(
                product_id=product.id,
                shop_id=shop_id,
                delta=-item["quantity"],
                movement_type=MOVEMENT_SALE,
                actor_user_id=user_id,
            )
            line_total = item["quantity"] * item["unit_price_cents"]
            total += line_total
            sale_lines.append(SaleLine(
                product_id=product.id,
                line_number=line_number,
                quantity=item["quantity"],
                unit_price_cents=item["unit_price_cents"],
                line_total_cents=line_total,
                movement_id=movement.movement_id,
            ))

        sale.total_cents = total
        sale.lines = sale_lines
        db.session.add(sale)
        try:
            db.session.flush()
        except IntegrityError as exc:
            # Another sale committed the same code between the check and now
            if code is not None and "mpesa_code" in str(exc.orig):
                raise DuplicatePayment(code) from exc
            raise
        return sale

    return run_atomic(_op)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFound("Sale", sale_id)
    return sale


def list_sales_for_shop(shop_id: int | None = None) -> list[Sale]:
    """Newest first. No shop_id means every shop (admin view)."""
    query = db.session.query(Sale)
    if shop_id is not None:
        query = query.filter(Sale.shop_id == shop_id)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).all()


def get_sales_report(shop_id: int | None = None) -> dict:
    sales = sorted(list_sales_for_shop(shop_id), key=lambda s: (s.created_at, s.id))

    daily: OrderedDict[str, int] = OrderedDict()
    for s in sales:
        day = s.created_at.date().isoformat()
        daily[day] = daily.get(day, 0) + s.total_cents

    return {
        "shop_id": shop_id,
        "daily_sales_cents": dict(daily),
        "total_sales": len(sales),
        "revenue_cents": sum(s.total_cents for s in sales),
    }
