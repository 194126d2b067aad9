from __future__ import annotations

from ..extensions import db
from duka.time_utils import to_utc_z

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_SALES = "sales"
ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES)


class User(db.Model):
    """
    Users for attribution and role checks.

    Credentials live with the external identity provider; this table only
    holds what the inventory core needs: who acted, their role, and the shop
    they belong to (admins may have no shop).
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("role IN ('admin', 'manager', 'sales')", name="valid_role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    name = db.Column(db.String(120), nullable=False)
    role = db.Column(db.String(16), nullable=False, default=ROLE_SALES)

    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    must_change_credentials = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    shop = db.relationship("Shop", backref=db.backref("users", lazy=True))

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "shop_id": self.shop_id,
            "shop_code": self.shop.code if self.shop else None,
            "is_active": self.is_active,
            "must_change_credentials": self.must_change_credentials,
            "created_at": to_utc_z(self.created_at),
        }
