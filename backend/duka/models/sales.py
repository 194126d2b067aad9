from __future__ import annotations

from ..extensions import db
from duka.time_utils import to_utc_z


class Sale(db.Model):
    """
    A completed multi-line sale.

    Sales are written atomically together with one `sale` stock movement per
    line; there is no draft state. mpesa_code is globally unique when present
    so the same mobile-money receipt cannot pay for two sales.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("mpesa_code", name="uq_sales_mpesa_code"),
        db.Index("ix_sales_shop_created", "shop_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=False)  # Cash, M-Pesa, ...
    mpesa_code = db.Column(db.String(32), nullable=True)
    payment_proof_url = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    shop = db.relationship("Shop", backref=db.backref("sales", lazy=True))
    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "user_id": self.user_id,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "mpesa_code": self.mpesa_code,
            "payment_proof_url": self.payment_proof_url,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in sorted(self.lines, key=lambda l: l.line_number)],
        }


class SaleLine(db.Model):
    """Individual line items on a sale, in cart order."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_sale_lines_sale_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    line_number = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    # The ledger movement that took this line's units out of stock
    movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    sale = db.relationship("Sale", backref=db.backref("lines", lazy=True))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "line_number": self.line_number,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "movement_id": self.movement_id,
        }
