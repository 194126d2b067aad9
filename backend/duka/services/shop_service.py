from __future__ import annotations

from collections import Counter

from ..extensions import db
from ..errors import NotFound, ValidationError
from ..models import Product, Shop, ROLE_ADMIN
from .auth_service import verify_role
from .concurrency import run_atomic


def _clean(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


def ensure_shop(code: str, name: str, location: str | None = None, region: str | None = None) -> tuple[Shop, bool]:
    """Fetch the shop with `code`, creating it when missing. Does not commit."""
    shop = db.session.query(Shop).filter_by(code=code).first()
    if shop is not None:
        return shop, False
    shop = Shop(code=code, name=name, location=location, region=region)
    db.session.add(shop)
    db.session.flush()
    return shop, True


def create_shop(
    *,
    caller_id: int,
    code: str,
    name: str,
    location: str | None = None,
    region: str | None = None,
) -> Shop:
    code = (code or "").strip().upper()
    name = (name or "").strip()
    if not code:
        raise ValidationError("Shop code is required", field="code")
    if not name:
        raise ValidationError("Shop name is required", field="name")

    def _op():
        verify_role(caller_id, (ROLE_ADMIN,))
        if db.session.query(Shop).filter_by(code=code).first() is not None:
            raise ValidationError(f"Shop code {code} already exists", field="code")
        shop, _ = ensure_shop(code, name, _clean(location), _clean(region))
        return shop

    return run_atomic(_op)


def get_shop(shop_id: int) -> Shop:
    shop = db.session.get(Shop, shop_id)
    if shop is None:
        raise NotFound("Shop", shop_id)
    return shop


def list_shops(region: str | None = None) -> list[Shop]:
    query = db.session.query(Shop)
    if region:
        query = query.filter(Shop.region == region)
    return query.order_by(Shop.code.asc()).all()


def backfill_regions() -> list[Shop]:
    """
    Give every shop without a region its location as region.

    Returns the shops that changed. Shops with neither are left alone.
    """
    def _op():
        changed = []
        for shop in db.session.query(Shop).filter(Shop.region.is_(None)).all():
            if shop.location:
                shop.region = shop.location
                changed.append(shop)
        db.session.flush()
        return changed

    return run_atomic(_op)


def data_distribution() -> dict:
    """Product counts per owning shop code, for spotting orphaned rows."""
    codes = {s.id: s.code for s in db.session.query(Shop).all()}
    counts: Counter[str] = Counter()
    total = 0
    for (shop_id,) in db.session.query(Product.shop_id).all():
        total += 1
        if shop_id is None:
            counts["NoShopID"] += 1
        else:
            counts[codes.get(shop_id, "UnknownID")] += 1
    return {
        "total_products": total,
        "distribution": dict(counts),
        "shops": [{"id": sid, "code": code} for sid, code in sorted(codes.items())],
    }
