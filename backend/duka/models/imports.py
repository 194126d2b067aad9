from __future__ import annotations

import json

from ..extensions import db
from duka.time_utils import to_utc_z


class ImportBatch(db.Model):
    """
    Record of one bulk product import run.

    Imports are best-effort: failing rows are skipped and listed in `errors`
    while the remaining rows are upserted.

    STATUS:
    - completed: every row imported
    - partial: some rows imported, some failed
    - failed: nothing imported
    """
    __tablename__ = "import_batches"
    __table_args__ = (
        db.Index("ix_import_batches_shop_created", "shop_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)

    file_name = db.Column(db.String(255), nullable=True)
    source_format = db.Column(db.String(16), nullable=False, default="csv")  # csv, json

    status = db.Column(db.String(16), nullable=False, index=True)

    total_rows = db.Column(db.Integer, nullable=False, default=0)
    imported_rows = db.Column(db.Integer, nullable=False, default=0)
    created_rows = db.Column(db.Integer, nullable=False, default=0)
    updated_rows = db.Column(db.Integer, nullable=False, default=0)
    error_rows = db.Column(db.Integer, nullable=False, default=0)

    # JSON-encoded list of "Row N: message" strings
    errors_json = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    shop = db.relationship("Shop", backref=db.backref("import_batches", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])

    @property
    def errors(self) -> list[str]:
        return json.loads(self.errors_json) if self.errors_json else []

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "shop_id": self.shop_id,
            "file_name": self.file_name,
            "source_format": self.source_format,
            "status": self.status,
            "total_rows": self.total_rows,
            "imported_rows": self.imported_rows,
            "created_rows": self.created_rows,
            "updated_rows": self.updated_rows,
            "error_rows": self.error_rows,
            "errors": self.errors,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
