from __future__ import annotations

from ..extensions import db
from duka.time_utils import to_utc_z

TRANSFER_TYPE_INTRA_REGION = "intra_region"
TRANSFER_TYPE_INTER_REGION = "inter_region"
TRANSFER_TYPES = (TRANSFER_TYPE_INTRA_REGION, TRANSFER_TYPE_INTER_REGION)


class Transfer(db.Model):
    """
    Request to move stock of one product between shops.

    LIFECYCLE:
    1. AWAITING_PAYMENT: inter-region request waiting for payment proof
    2. PENDING: dispatchable; for an open broadcast (from_shop_id NULL) any
       shop in `region` may claim it
    3. IN_TRANSIT: dispatched, stock already deducted at the source
    4. COMPLETED: received, stock credited at the destination
    5. CANCELLED: withdrawn before dispatch

    Transfers are never deleted; they are the audit trail of a physical
    movement between locations. version_id makes concurrent transitions on the
    same row fail with StaleDataError instead of silently overwriting.
    """
    __tablename__ = "transfers"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="positive_quantity"),
        db.CheckConstraint("type IN ('intra_region', 'inter_region')", name="valid_type"),
        db.Index("ix_transfers_region_status", "region", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # The product as it was requested (identifies the SKU; source/destination
    # rows are resolved by (sku, shop_id) at dispatch and receipt)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # NULL until a source shop claims an open broadcast
    from_shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=True, index=True)
    to_shop_id = db.Column(db.Integer, db.ForeignKey("shops.id"), nullable=False, index=True)
    region = db.Column(db.String(120), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False)

    # awaiting_payment, pending, in_transit, completed, cancelled
    status = db.Column(db.String(24), nullable=False, default="pending", index=True)

    # Who did what
    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Opaque object-storage references
    payment_proof_url = db.Column(db.String(512), nullable=True)
    delivery_photo_url = db.Column(db.String(512), nullable=True)

    expected_arrival = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    # Lifecycle timestamps (UTC)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    payment_uploaded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    from_shop = db.relationship("Shop", foreign_keys=[from_shop_id])
    to_shop = db.relationship("Shop", foreign_keys=[to_shop_id])
    requested_by = db.relationship("User", foreign_keys=[requested_by_user_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_user_id])
    received_by = db.relationship("User", foreign_keys=[received_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_broadcast(self) -> bool:
        return self.from_shop_id is None

    def __repr__(self) -> str:
        return f"<Transfer id={self.id} status={self.status} type={self.type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "from_shop_id": self.from_shop_id,
            "to_shop_id": self.to_shop_id,
            "region": self.region,
            "quantity": self.quantity,
            "type": self.type,
            "status": self.status,
            "requested_by_user_id": self.requested_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "received_by_user_id": self.received_by_user_id,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "payment_proof_url": self.payment_proof_url,
            "delivery_photo_url": self.delivery_photo_url,
            "expected_arrival": to_utc_z(self.expected_arrival) if self.expected_arrival else None,
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "payment_uploaded_at": to_utc_z(self.payment_uploaded_at) if self.payment_uploaded_at else None,
            "dispatched_at": to_utc_z(self.dispatched_at) if self.dispatched_at else None,
            "received_at": to_utc_z(self.received_at) if self.received_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "version_id": self.version_id,
        }
