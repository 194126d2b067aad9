from __future__ import annotations

from ..extensions import db
from duka.time_utils import to_utc_z

MOVEMENT_SALE = "sale"
MOVEMENT_RESTOCK = "restock"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_TYPES = (MOVEMENT_SALE, MOVEMENT_RESTOCK, MOVEMENT_ADJUSTMENT)


class Product(db.Model):
    """
    Per-shop product and its current stock count.

    SKU DESIGN DECISION:
    (sku, shop_id) identifies a product. The same SKU in two shops is two
    physically distinct piles of stock, each with its own row and its own
    movement history.

    STOCK:
    - stock is never negative (CHECK constraint plus a ledger-level guard).
    - stock only changes through ledger_service.apply_movement, which writes
      the matching StockMovement in the same transaction.
    - opening_stock is the value the row was created with; a product created
      with stock has no movement for it, so
          opening_stock + SUM(movements.quantity) == stock

    LEGACY LOOKUP:
    product_group carries the owning shop's code. Rows imported before shops
    were linked by id may have shop_id NULL and are found by product_group.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("shop_id", "sku", name="uq_products_shop_sku"),
        db.CheckConstraint("stock >= 0", name="stock_non_negative"),
        db.Index("ix_products_sku_shop", "sku", "shop_id"),
        db.Index("ix_products_product_group", "product_group"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=True, index=True)
    product_group = db.Column(db.String(32), nullable=False)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    barcode = db.Column(db.String(64), nullable=True)
    category = db.Column(db.String(120), nullable=True)
    supplier = db.Column(db.String(120), nullable=True)
    measurement_unit = db.Column(db.String(32), nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    opening_stock = db.Column(db.Integer, nullable=False, default=0)

    tax_percent = db.Column(db.Float, nullable=True)
    reorder_point = db.Column(db.Integer, nullable=True)
    preferred_quantity = db.Column(db.Integer, nullable=True)
    warning_quantity = db.Column(db.Integer, nullable=True)

    is_tax_inclusive = db.Column(db.Boolean, nullable=True)
    is_price_change_allowed = db.Column(db.Boolean, nullable=True)
    is_service = db.Column(db.Boolean, nullable=True)
    is_enabled = db.Column(db.Boolean, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    shop = db.relationship("Shop", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} shop_id={self.shop_id} stock={self.stock}>"

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= (self.reorder_point or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "product_group": self.product_group,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "barcode": self.barcode,
            "category": self.category,
            "supplier": self.supplier,
            "measurement_unit": self.measurement_unit,
            "price_cents": self.price_cents,
            "cost_cents": self.cost_cents,
            "stock": self.stock,
            "opening_stock": self.opening_stock,
            "tax_percent": self.tax_percent,
            "reorder_point": self.reorder_point,
            "preferred_quantity": self.preferred_quantity,
            "warning_quantity": self.warning_quantity,
            "is_tax_inclusive": self.is_tax_inclusive,
            "is_price_change_allowed": self.is_price_change_allowed,
            "is_service": self.is_service,
            "is_enabled": self.is_enabled,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record pairing one stock change with its cause.

    Rows are inserted by the ledger service only; never updated or deleted.
    quantity is signed: negative for outflow (sales, dispatches).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_stock_movements_shop_type", "shop_id", "type"),
        db.CheckConstraint("type IN ('sale', 'restock', 'adjustment')", name="valid_type"),
        db.CheckConstraint("quantity <> 0", name="non_zero_quantity"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    occurred_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "shop_id": self.shop_id,
            "type": self.type,
            "quantity": self.quantity,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
