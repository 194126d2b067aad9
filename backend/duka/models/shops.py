from __future__ import annotations

from ..extensions import db
from duka.time_utils import to_utc_z


class Shop(db.Model):
    """
    A physical sales location with its own inventory.

    Shops are grouped by region; a regional broadcast transfer is visible to
    every shop sharing the requester's region. Shops are immutable after
    creation apart from the administrative region backfill.
    """
    __tablename__ = "shops"
    __table_args__ = (
        db.Index("ix_shops_region", "region"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)  # JA, JC, E1 ...
    name = db.Column(db.String(120), nullable=False)
    location = db.Column(db.String(120), nullable=True)
    region = db.Column(db.String(120), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Shop id={self.id} code={self.code!r} region={self.region!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "location": self.location,
            "region": self.region,
            "created_at": to_utc_z(self.created_at),
        }
