# Overview: Stock ledger; the only code path that changes Product.stock.

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func

from ..extensions import db
from ..errors import InsufficientStock, NotFound, ValidationError
from ..models import Product, StockMovement, MOVEMENT_TYPES
from duka.time_utils import utcnow
from .concurrency import lock_for_update
"""
Duka Stock Ledger Invariants (authoritative)

- Every change to Product.stock is paired with exactly one StockMovement
  written in the same DB transaction. Neither is ever observable without the
  other.
- Product.stock never goes negative. A movement that would make it negative
  raises InsufficientStock and changes nothing.
- Movements are append-only (no updates/deletes).
- opening_stock + SUM(StockMovement.quantity) == Product.stock for every
  product.
- apply_movement flushes but never commits; the enclosing operation (sale,
  upsert, dispatch, receipt) owns the transaction and decides whether to roll
  back. No retries happen here.
"""


@dataclass(frozen=True)
class MovementResult:
    product_id: int
    movement_id: int
    previous_stock: int
    new_stock: int
    quantity: int


def _load_product(product_id: int, *, lock: bool) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFound("Product", product_id)
    return product


def apply_movement(
    *,
    product_id: int,
    shop_id: int,
    delta: int,
    movement_type: str,
    note: str | None = None,
    actor_user_id: int | None = None,
) -> MovementResult:
    """
    Change a product's stock by `delta` and record the movement.

    Raises:
        ValidationError: unknown movement type or zero/non-integer delta
        NotFound: product missing, or not stocked by `shop_id`
        InsufficientStock: resulting stock would be negative
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type: {movement_type}", field="type")
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise ValidationError("Movement quantity must be a non-zero integer", field="quantity")

    product = _load_product(product_id, lock=True)
    if product.shop_id != shop_id:
        raise NotFound(
            "Product",
            product_id,
            message=f"Product {product_id} does not belong to shop {shop_id}",
        )

    previous = product.stock
    new_stock = previous + delta
    if new_stock < 0:
        raise InsufficientStock(product.name, requested=-delta, available=previous)

    product.stock = new_stock
    movement = StockMovement(
        product_id=product.id,
        shop_id=shop_id,
        type=movement_type,
        quantity=delta,
        note=note,
        actor_user_id=actor_user_id,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()  # assigns movement.id and bumps product.version_id

    return MovementResult(
        product_id=product.id,
        movement_id=movement.id,
        previous_stock=previous,
        new_stock=new_stock,
        quantity=delta,
    )


def list_movements(product_id: int, limit: int = 200) -> list[StockMovement]:
    _load_product(product_id, lock=False)
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def movement_total(product_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(StockMovement.quantity), 0))
        .filter(StockMovement.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


def verify_product_ledger(product_id: int) -> dict:
    """Check opening_stock + SUM(movements) against the stored stock."""
    product = _load_product(product_id, lock=False)
    total = movement_total(product_id)
    expected = product.opening_stock + total
    return {
        "product_id": product.id,
        "stock": product.stock,
        "opening_stock": product.opening_stock,
        "movement_total": total,
        "consistent": expected == product.stock,
    }
