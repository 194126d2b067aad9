# backend/duka/services/transfer_service.py
"""
Inter-shop stock transfer workflow.

WHY: Shops in a region lend each other stock, and shops in different regions
sell to each other against a payment proof. Every step is attributed to a
user, and stock leaves the source at dispatch and arrives at the
destination at receipt, each through a ledger movement.

LIFECYCLE:
1. AWAITING_PAYMENT: inter-region request created by a non-admin
2. PENDING: ready to dispatch. With no source shop it is an open regional
   broadcast that any shop in the region may claim by dispatching it.
3. IN_TRANSIT: dispatched (negative adjustment at the source)
4. COMPLETED: received (positive restock at the destination)
5. CANCELLED: withdrawn while still pending or awaiting payment

Every transition loads the transfer with lock_for_update inside run_atomic,
so two shops racing to claim one broadcast serialize: the loser re-reads the
row, finds it in_transit and gets InvalidTransition. Nothing is touched on
the losing side.
"""
from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import (
    InsufficientStock,
    InvalidTransition,
    NotFound,
    PaymentRequired,
    ProductNotFound,
    Unauthorized,
    ValidationError,
)
from ..models import Product, Shop, Transfer, User, ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES
from ..models.inventory import MOVEMENT_ADJUSTMENT, MOVEMENT_RESTOCK
from ..models.transfers import TRANSFER_TYPE_INTER_REGION, TRANSFER_TYPES
from duka.time_utils import parse_iso_datetime, utcnow
from .auth_service import get_user, verify_role
from .concurrency import lock_for_update, run_atomic
from . import ledger_service


# Transfer status constants
TRANSFER_STATUS_AWAITING_PAYMENT = "awaiting_payment"
TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_IN_TRANSIT = "in_transit"
TRANSFER_STATUS_COMPLETED = "completed"
TRANSFER_STATUS_CANCELLED = "cancelled"

TRANSFER_ROLES = (ROLE_SALES, ROLE_MANAGER, ROLE_ADMIN)
CANCEL_ROLES = (ROLE_ADMIN, ROLE_MANAGER)

CANCELLABLE_STATUSES = (TRANSFER_STATUS_PENDING, TRANSFER_STATUS_AWAITING_PAYMENT)


def _get_shop(shop_id: int) -> Shop:
    shop = db.session.get(Shop, shop_id)
    if shop is None:
        raise NotFound("Shop", shop_id)
    return shop


def _locked_transfer(transfer_id: int) -> Transfer:
    transfer = lock_for_update(db.session.query(Transfer).filter_by(id=transfer_id)).first()
    if transfer is None:
        raise NotFound("Transfer", transfer_id)
    return transfer


def _require_status(transfer: Transfer, *required: str) -> None:
    if transfer.status not in required:
        raise InvalidTransition(
            transfer.id,
            transfer.status,
            required[0] if len(required) == 1 else required,
        )


def _locked_product_in_shop(sku: str, shop_id: int) -> Product | None:
    return lock_for_update(
        db.session.query(Product).filter(Product.sku == sku, Product.shop_id == shop_id)
    ).first()


def _positive_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer", field=field)
    return value


def _parse_arrival(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError("expected_arrival must be an ISO-8601 datetime", field="expected_arrival")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError("expected_arrival must be an ISO-8601 datetime", field="expected_arrival")


def _payment_waived(caller: User, transfer: Transfer) -> bool:
    """Admins skip the payment gate, and so does anyone dispatching an admin's request."""
    if caller.is_admin:
        return True
    requester = db.session.get(User, transfer.requested_by_user_id)
    return requester is not None and requester.is_admin


def create_transfer_request(
    *,
    caller_id: int,
    product_id: int,
    to_shop_id: int,
    quantity: int,
    transfer_type: str,
    from_shop_id: int | None = None,
    region: str | None = None,
    expected_arrival=None,
) -> Transfer:
    """
    Open a transfer request.

    intra_region requests start PENDING. Without a source shop they are
    broadcast to `region` (default: the destination shop's region).
    inter_region requests need an explicit source shop and start
    AWAITING_PAYMENT, or PENDING when an admin creates them.

    Raises:
        Unauthorized, ValidationError, NotFound
    """
    quantity = _positive_int(quantity, "quantity")
    if transfer_type not in TRANSFER_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(TRANSFER_TYPES)}", field="type")
    if from_shop_id is not None and from_shop_id == to_shop_id:
        raise ValidationError("Source and destination shops must differ", field="from_shop_id")
    if transfer_type == TRANSFER_TYPE_INTER_REGION and from_shop_id is None:
        raise ValidationError("Inter-region transfers need a source shop", field="from_shop_id")
    arrival = _parse_arrival(expected_arrival)
    region = (region or "").strip() or None

    def _op():
        caller = verify_role(caller_id, TRANSFER_ROLES)
        if db.session.get(Product, product_id) is None:
            raise NotFound("Product", product_id)
        to_shop = _get_shop(to_shop_id)
        if from_shop_id is not None:
            _get_shop(from_shop_id)

        tagged_region = region
        if from_shop_id is None:
            tagged_region = region or to_shop.region
            if not tagged_region:
                raise ValidationError(
                    f"Shop {to_shop.code} has no region; a broadcast needs one",
                    field="region",
                )

        if transfer_type == TRANSFER_TYPE_INTER_REGION and not caller.is_admin:
            status = TRANSFER_STATUS_AWAITING_PAYMENT
        else:
            status = TRANSFER_STATUS_PENDING

        transfer = Transfer(
            product_id=product_id,
            from_shop_id=from_shop_id,
            to_shop_id=to_shop.id,
            region=tagged_region,
            quantity=quantity,
            type=transfer_type,
            status=status,
            requested_by_user_id=caller.id,
            expected_arrival=arrival,
            created_at=utcnow(),
        )
        db.session.add(transfer)
        db.session.flush()
        return transfer

    transfer = run_atomic(_op)
    current_app.logger.info(
        "Transfer %s requested: %s x%s to shop %s (%s, %s)",
        transfer.id, transfer.product_id, transfer.quantity, transfer.to_shop_id,
        transfer.type, transfer.status,
    )
    return transfer


def upload_transfer_payment(*, caller_id: int, transfer_id: int, proof_ref: str) -> Transfer:
    proof_ref = (proof_ref or "").strip()
    if not proof_ref:
        raise ValidationError("Payment proof is required", field="payment_proof_url")

    def _op():
        verify_role(caller_id, TRANSFER_ROLES)
        transfer = _locked_transfer(transfer_id)
        _require_status(transfer, TRANSFER_STATUS_AWAITING_PAYMENT)

        transfer.payment_proof_url = proof_ref
        transfer.payment_uploaded_at = utcnow()
        transfer.status = TRANSFER_STATUS_PENDING
        db.session.flush()
        return transfer

    transfer = run_atomic(_op)
    current_app.logger.info("Transfer %s payment uploaded; now pending", transfer.id)
    return transfer


def dispatch_transfer(
    *,
    caller_id: int,
    transfer_id: int,
    approver_id: int,
    from_shop_id: int | None = None,
) -> Transfer:
    """
    Send the goods: deduct stock at the source and mark IN_TRANSIT.

    For an open broadcast `from_shop_id` is the claiming shop. For a request
    that already names its source, a different `from_shop_id` is rejected.

    Raises:
        InvalidTransition: not PENDING (including a broadcast already claimed)
        PaymentRequired: inter_region without payment proof
        ValidationError: no source shop, or the destination claiming itself
        ProductNotFound: the source shop does not carry the SKU
        InsufficientStock: source stock below the transfer quantity
    """

    def _op():
        caller = verify_role(caller_id, TRANSFER_ROLES)
        approver = get_user(approver_id)
        transfer = _locked_transfer(transfer_id)
        _require_status(transfer, TRANSFER_STATUS_PENDING)

        if (
            transfer.type == TRANSFER_TYPE_INTER_REGION
            and not transfer.payment_proof_url
            and not _payment_waived(caller, transfer)
        ):
            raise PaymentRequired(transfer.id)

        if transfer.from_shop_id is not None and from_shop_id is not None and from_shop_id != transfer.from_shop_id:
            raise ValidationError(
                f"Transfer {transfer.id} is sourced from shop {transfer.from_shop_id}",
                field="from_shop_id",
            )
        source_id = transfer.from_shop_id or from_shop_id
        if source_id is None:
            raise ValidationError("Source shop must be specified for dispatch", field="from_shop_id")
        if source_id == transfer.to_shop_id:
            raise ValidationError("A shop cannot fulfil its own request", field="from_shop_id")

        source = _get_shop(source_id)
        destination = _get_shop(transfer.to_shop_id)

        sku = transfer.product.sku
        source_product = _locked_product_in_shop(sku, source.id)
        if source_product is None:
            raise ProductNotFound(sku, source.id)
        if source_product.stock < transfer.quantity:
            raise InsufficientStock(
                source_product.name,
                requested=transfer.quantity,
                available=source_product.stock,
            )

        ledger_service.apply_movement(
            product_id=source_product.id,
            shop_id=source.id,
            delta=-transfer.quantity,
            movement_type=MOVEMENT_ADJUSTMENT,
            note=f"Regional dispatch to {destination.code}",
            actor_user_id=approver.id,
        )

        transfer.from_shop_id = source.id
        transfer.approved_by_user_id = approver.id
        transfer.dispatched_at = utcnow()
        transfer.status = TRANSFER_STATUS_IN_TRANSIT
        db.session.flush()
        return transfer

    transfer = run_atomic(_op)
    current_app.logger.info(
        "Transfer %s dispatched from shop %s to shop %s (%s units)",
        transfer.id, transfer.from_shop_id, transfer.to_shop_id, transfer.quantity,
    )
    return transfer


def _clone_for_shop(template: Product, shop: Shop) -> Product:
    """
    First delivery of a SKU to a shop: copy the descriptive metadata.

    Stock starts at zero; the receipt itself is the restock movement.
    """
    product = Product(
        shop_id=shop.id,
        product_group=shop.code,
        sku=template.sku,
        name=template.name,
        description=template.description,
        barcode=template.barcode,
        category=template.category,
        supplier=template.supplier,
        measurement_unit=template.measurement_unit,
        price_cents=template.price_cents,
        cost_cents=template.cost_cents,
        stock=0,
        opening_stock=0,
        tax_percent=template.tax_percent,
        reorder_point=template.reorder_point,
        preferred_quantity=template.preferred_quantity,
        warning_quantity=template.warning_quantity,
        is_tax_inclusive=template.is_tax_inclusive,
        is_price_change_allowed=template.is_price_change_allowed,
        is_service=template.is_service,
        is_enabled=template.is_enabled,
    )
    db.session.add(product)
    db.session.flush()
    return product


def receive_transfer(
    *,
    caller_id: int,
    transfer_id: int,
    receiver_id: int,
    photo_ref: str,
) -> Transfer:
    photo_ref = (photo_ref or "").strip()
    if not photo_ref:
        raise ValidationError("A delivery photo is required to receive a transfer", field="delivery_photo_url")

    def _op():
        verify_role(caller_id, TRANSFER_ROLES)
        receiver = get_user(receiver_id)
        transfer = _locked_transfer(transfer_id)
        _require_status(transfer, TRANSFER_STATUS_IN_TRANSIT)

        source = _get_shop(transfer.from_shop_id)
        destination = _get_shop(transfer.to_shop_id)
        sku = transfer.product.sku

        dest_product = _locked_product_in_shop(sku, destination.id)
        if dest_product is None:
            template = (
                db.session.query(Product)
                .filter(Product.sku == sku, Product.shop_id == source.id)
                .first()
            ) or transfer.product
            dest_product = _clone_for_shop(template, destination)

        ledger_service.apply_movement(
            product_id=dest_product.id,
            shop_id=destination.id,
            delta=transfer.quantity,
            movement_type=MOVEMENT_RESTOCK,
            note=f"Received from {source.code}",
            actor_user_id=receiver.id,
        )

        transfer.received_by_user_id = receiver.id
        transfer.delivery_photo_url = photo_ref
        transfer.received_at = utcnow()
        transfer.status = TRANSFER_STATUS_COMPLETED
        db.session.flush()
        return transfer

    transfer = run_atomic(_op)
    current_app.logger.info(
        "Transfer %s received at shop %s (%s units)",
        transfer.id, transfer.to_shop_id, transfer.quantity,
    )
    return transfer


def cancel_transfer(*, caller_id: int, transfer_id: int, reason: str) -> Transfer:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A cancellation reason is required", field="reason")

    def _op():
        caller = verify_role(caller_id, TRANSFER_ROLES)
        transfer = _locked_transfer(transfer_id)
        if caller.role not in CANCEL_ROLES and caller.id != transfer.requested_by_user_id:
            raise Unauthorized(
                "Only a manager, an admin or the requester can cancel this transfer.",
                allowed_roles=CANCEL_ROLES,
            )
        _require_status(transfer, *CANCELLABLE_STATUSES)

        transfer.status = TRANSFER_STATUS_CANCELLED
        transfer.cancelled_by_user_id = caller.id
        transfer.cancellation_reason = reason
        transfer.cancelled_at = utcnow()
        db.session.flush()
        return transfer

    transfer = run_atomic(_op)
    current_app.logger.info("Transfer %s cancelled: %s", transfer.id, transfer.cancellation_reason)
    return transfer


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def _name(entity) -> str | None:
    return entity.name if entity is not None else None


def _describe(transfer: Transfer) -> dict:
    """transfer.to_dict() plus display names for the UI."""
    data = transfer.to_dict()
    data.update({
        "product_name": _name(transfer.product),
        "sku": transfer.product.sku if transfer.product else None,
        "requester_name": _name(transfer.requested_by),
        "sender_name": _name(transfer.approved_by),
        "receiver_name": _name(transfer.received_by),
        "from_shop_name": _name(transfer.from_shop),
        "to_shop_name": _name(transfer.to_shop),
    })
    return data


def get_transfer(transfer_id: int) -> dict:
    transfer = db.session.get(Transfer, transfer_id)
    if transfer is None:
        raise NotFound("Transfer", transfer_id)
    return _describe(transfer)


def get_regional_broadcasts(region: str, target_shop_id: int | None = None) -> list[dict]:
    """
    Pending requests tagged with `region`, as seen by `target_shop_id`.

    The shop's own requests are left out. my_stock is the shop's stock of
    the requested SKU; is_low_stock is True when that is at or below its
    reorder point, or when there is no such product (or no shop given).
    """
    query = db.session.query(Transfer).filter(
        Transfer.region == region,
        Transfer.status == TRANSFER_STATUS_PENDING,
    )
    if target_shop_id is not None:
        query = query.filter(Transfer.to_shop_id != target_shop_id)

    results = []
    for transfer in query.order_by(Transfer.created_at.asc(), Transfer.id.asc()).all():
        data = _describe(transfer)
        mine = None
        if target_shop_id is not None:
            mine = (
                db.session.query(Product)
                .filter(Product.sku == transfer.product.sku, Product.shop_id == target_shop_id)
                .first()
            )
        data["my_stock"] = mine.stock if mine is not None else 0
        data["is_low_stock"] = mine.is_low_stock if mine is not None else True
        results.append(data)
    return results


def get_pending_requests(target_shop_id: int | None = None) -> list[dict]:
    query = db.session.query(Transfer).filter(Transfer.status.in_(CANCELLABLE_STATUSES))
    if target_shop_id is not None:
        query = query.filter(
            db.or_(Transfer.from_shop_id == target_shop_id, Transfer.to_shop_id == target_shop_id)
        )
    return [_describe(t) for t in query.order_by(Transfer.created_at.desc(), Transfer.id.desc()).all()]


def get_outgoing_in_transit(target_shop_id: int | None = None) -> list[dict]:
    query = db.session.query(Transfer).filter(Transfer.status == TRANSFER_STATUS_IN_TRANSIT)
    if target_shop_id is not None:
        query = query.filter(Transfer.from_shop_id == target_shop_id)
    return [_describe(t) for t in query.order_by(Transfer.dispatched_at.desc(), Transfer.id.desc()).all()]


def get_incoming_transfers(target_shop_id: int | None = None) -> list[dict]:
    query = db.session.query(Transfer).filter(Transfer.status == TRANSFER_STATUS_IN_TRANSIT)
    if target_shop_id is not None:
        query = query.filter(Transfer.to_shop_id == target_shop_id)
    return [_describe(t) for t in query.order_by(Transfer.dispatched_at.desc(), Transfer.id.desc()).all()]
