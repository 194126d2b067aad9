"""
Transfer workflow tests.

Verifies:
- pending -> in_transit -> completed moves stock out at dispatch and in at receipt
- Inter-region requests wait for payment proof unless an admin is involved
- Regional broadcasts: visibility, my_stock, claiming
- Transitions from the wrong state raise InvalidTransition and change nothing
"""

import pytest

from duka.errors import (
    InsufficientStock,
    InvalidTransition,
    PaymentRequired,
    ProductNotFound,
    Unauthorized,
    ValidationError,
)
from duka.models import Product, StockMovement, Transfer
from duka.services import ledger_service, transfer_service
from duka.services.products_service import find_by_sku


def _request(caller, product, to_shop, quantity=4, transfer_type="intra_region", from_shop=None, **kwargs):
    return transfer_service.create_transfer_request(
        caller_id=caller.id,
        product_id=product.id,
        to_shop_id=to_shop.id,
        quantity=quantity,
        transfer_type=transfer_type,
        from_shop_id=from_shop.id if from_shop else None,
        **kwargs,
    )


class TestTransferLifecycle:

    def test_direct_request_end_to_end(self, db_session, shop_ja, shop_jc, sales_ja, sales_jc, make_product):
        source_product = make_product(shop_ja, sku="BRK-001", stock=10, reorder_point=3, category="Brakes")

        transfer = _request(sales_jc, source_product, shop_jc, quantity=4, from_shop=shop_ja)
        assert transfer.status == "pending"
        assert transfer.requested_by_user_id == sales_jc.id

        transfer = transfer_service.dispatch_transfer(
            caller_id=sales_ja.id, transfer_id=transfer.id, approver_id=sales_ja.id,
        )
        assert transfer.status == "in_transit"
        assert transfer.approved_by_user_id == sales_ja.id
        assert transfer.dispatched_at is not None
        assert db_session.get(Product, source_product.id).stock == 6

        transfer = transfer_service.receive_transfer(
            caller_id=sales_jc.id, transfer_id=transfer.id, receiver_id=sales_jc.id,
            photo_ref="https://cdn.example.test/delivery/1.jpg",
        )
        assert transfer.status == "completed"
        assert transfer.delivery_photo_url == "https://cdn.example.test/delivery/1.jpg"

        dest_product = find_by_sku("BRK-001", shop_jc.id)
        assert dest_product is not None
        assert dest_product.stock == 4
        assert dest_product.opening_stock == 0
        assert dest_product.product_group == "JC"
        assert dest_product.reorder_point == 3
        assert dest_product.category == "Brakes"

        dispatch_move = db_session.query(StockMovement).filter_by(product_id=source_product.id).one()
        assert (dispatch_move.type, dispatch_move.quantity) == ("adjustment", -4)
        assert dispatch_move.note == "Regional dispatch to JC"

        receive_move = db_session.query(StockMovement).filter_by(product_id=dest_product.id).one()
        assert (receive_move.type, receive_move.quantity) == ("restock", 4)
        assert receive_move.note == "Received from JA"

        for product_id in (source_product.id, dest_product.id):
            assert ledger_service.verify_product_ledger(product_id)["consistent"]

    def test_receive_tops_up_existing_destination_product(
        self, db_session, shop_ja, shop_jc, sales_ja, sales_jc, make_product,
    ):
        source_product = make_product(shop_ja, sku="BRK-001", stock=10)
        dest_product = make_product(shop_jc, sku="BRK-001", stock=1)

        transfer = _request(sales_jc, source_product, shop_jc, quantity=3, from_shop=shop_ja)
        transfer_service.dispatch_transfer(caller_id=sales_ja.id, transfer_id=transfer.id, approver_id=sales_ja.id)
        transfer_service.receive_transfer(
            caller_id=sales_jc.id, transfer_id=transfer.id, receiver_id=sales_jc.id, photo_ref="photo.jpg",
        )

        assert db_session.get(Product, dest_product.id).stock == 4
        assert db_session.query(Product).filter_by(sku="BRK-001").count() == 2

    def test_dispatch_insufficient_stock_changes_nothing(
        self, db_session, shop_ja, shop_jc, sales_ja, sales_jc, make_product,
    ):
        source_product = make_product(shop_ja, stock=2)
        transfer = _request(sales_jc, source_product, shop_jc, quantity=5, from_shop=shop_ja)

        with pytest.raises(InsufficientStock):
            transfer_service.dispatch_transfer(caller_id=sales_ja.id, transfer_id=transfer.id, approver_id=sales_ja.id)

        assert db_session.get(Product, source_product.id).stock == 2
        assert db_session.get(Transfer, transfer.id).status == "pending"
        assert db_session.query(StockMovement).count() == 0

    def test_source_without_sku(self, db_session, shop_ja, shop_jc, shop_e1, sales_jc, sales_e1, make_product):
        product = make_product(shop_ja)
        transfer = _request(sales_jc, product, shop_jc)

        with pytest.raises(ProductNotFound):
            transfer_service.dispatch_transfer(
                caller_id=sales_e1.id, transfer_id=transfer.id, approver_id=sales_e1.id, from_shop_id=shop_e1.id,
            )

    def test_wrong_state_transitions(self, db_session, shop_ja, shop_jc, sales_ja, sales_jc, make_product):
        product = make_product(shop_ja, stock=10)
        transfer = _request(sales_jc, product, shop_jc, from_shop=shop_ja)

        with pytest.raises(InvalidTransition) as exc_info:
            transfer_service.receive_transfer(
                caller_id=sales_jc.id, transfer_id=transfer.id, receiver_id=sales_jc.id, photo_ref="p.jpg",
            )
        assert exc_info.value.details["current_status"] == "pending"
        assert exc_info.value.details["required_status"] == "in_transit"

        transfer_service.dispatch_transfer(caller_id=sales_ja.id, transfer_id=transfer.id, approver_id=sales_ja.id)

        with pytest.raises(InvalidTransition):
            transfer_service.dispatch_transfer(caller_id=sales_ja.id, transfer_id=transfer.id, approver_id=sales_ja.id)
        with pytest.raises(InvalidTransition):
            transfer_service.upload_transfer_payment(caller_id=sales_jc.id, transfer_id=transfer.id, proof_ref="x")

        assert db_session.get(Product, product.id).stock == 6

    def test_receive_requires_photo(self, db_session, shop_ja, shop_jc, sales_ja, sales_jc, make_product):
        product = make_product(shop_ja)
        transfer = _request(sales_jc, product, shop_jc, from_shop=shop_ja)
        transfer_service.dispatch_transfer(caller_id=sales_ja.id, transfer_id=transfer.id, approver_id=sales_ja.id)

        with pytest.raises(ValidationError):
            transfer_service.receive_transfer(
                caller_id=sales_jc.id, transfer_id=transfer.id, receiver_id=sales_jc.id, photo_ref="  ",
            )
        assert db_session.get(Transfer, transfer.id).status == "in_transit"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"quantity": 0},
            {"transfer_type": "teleport"},
            {"expected_arrival": "next tuesday"},
        ],
    )
    def test_invalid_requests(self, db_session, shop_ja, shop_jc, sales_jc, make_product, kwargs):
        product = make_product(shop_ja)
        with pytest.raises(ValidationError):
            _request(sales_jc, product, shop_jc, **kwargs)

    def test_same_source_and_destination_rejected(self, db_session, shop_ja, sales_ja, make_product):
        product = make_product(shop_ja)
        with pytest.raises(ValidationError):
            _request(sales_ja, product, shop_ja, from_shop=shop_ja)

    def test_expected_arrival_is_stored(self, db_session, shop_ja, shop_jc, sales_jc, make_product):
        product = make_product(shop_ja)
        transfer = _request(sales_jc, product, shop_jc, from_shop=shop_ja, expected_arrival="2026-03-01T10:00:00Z")
        assert transfer_service.get_transfer(transfer.id)["expected_arrival"].startswith("2026-03-01T10:00:00")


class TestPaymentGate:

    def test_inter_region_waits_for_payment(self, db_session, shop_ja, shop_e1, sales_ja, sales_e1, make_product):
        product = make_product(shop_ja, stock=10)

        transfer = _request(sales_e1, product, shop_e1, quantity=2, transfer_type="inter_region", from_shop=shop_ja)
        assert transfer.status == "awaiting_payment"

        with pytest.raises(InvalidTransition):
            transfer_service.dispatch_transfer(caller_id=sales_ja.id, transfer_id=transfer.id, approver_id=sales_ja.id)

        transfer = transfer_service.upload_transfer_payment(
            caller_id=sales_e1.id, transfer_id=transfer.id, proof_ref="mpesa-receipt.png",
        )
        assert transfer.status == "pending"
        assert transfer.payment_uploaded_at is not None

        transfer = transfer_service.dispatch_transfer(
            caller_id=sales_ja.id, transfer_id=transfer.id, approver_id=sales_ja.id,
        )
        assert transfer.status == "in_transit"
        assert db_session.get(Product, product.id).stock == 8

    def test_inter_region_needs_source(self, db_session, shop_ja, shop_e1, sales_e1, make_product):
        product = make_product(shop_ja)
        with pytest.raises(ValidationError):
            _request(sales_e1, product, shop_e1, transfer_type="inter_region")

    def test_admin_request_skips_payment(self, db_session, shop_ja, shop_e1, admin, sales_ja, make_product):
        product = make_product(shop_ja, stock=10)

        transfer = _request(admin, product, shop_e1, quantity=3, transfer_type="inter_region", from_shop=shop_ja)
        assert transfer.status == "pending"

        transfer = transfer_service.dispatch_transfer(
            caller_id=sales_ja.id, transfer_id=transfer.id, approver_id=sales_ja.id,
        )
        assert transfer.status == "in_transit"

    def test_pending_without_proof_requires_payment(
        self, db_session, shop_ja, shop_e1, admin, sales_ja, sales_e1, make_product,
    ):
        product = make_product(shop_ja, stock=10)
        transfer = _request(sales_e1, product, shop_e1, transfer_type="inter_region", from_shop=shop_ja)
        # row moved to pending without a proof (e.g. edited by hand)
        db_session.get(Transfer, transfer.id).status = "pending"
        db_session.commit()

        with pytest.raises(PaymentRequired):
            transfer_service.dispatch_transfer(caller_id=sales_ja.id, transfer_id=transfer.id, approver_id=sales_ja.id)
        assert db_session.get(Product, product.id).stock == 10

        transfer = transfer_service.dispatch_transfer(caller_id=admin.id, transfer_id=transfer.id, approver_id=admin.id)
        assert transfer.status == "in_transit"


class TestRegionalBroadcast:

    def test_broadcast_visibility_and_claim(
        self, db_session, shop_ja, shop_jc, shop_e1, sales_ja, sales_jc, make_product,
    ):
        ja_product = make_product(shop_ja, sku="BRK-001", stock=10, reorder_point=12)

        transfer = _request(sales_jc, ja_product, shop_jc, quantity=2)
        assert transfer.from_shop_id is None
        assert transfer.is_broadcast
        assert transfer.region == "Nyeri"

        seen_by_ja = transfer_service.get_regional_broadcasts("Nyeri", target_shop_id=shop_ja.id)
        assert [t["id"] for t in seen_by_ja] == [transfer.id]
        assert seen_by_ja[0]["my_stock"] == 10
        assert seen_by_ja[0]["is_low_stock"] is True
        assert seen_by_ja[0]["to_shop_name"] == shop_jc.name
        assert seen_by_ja[0]["requester_name"] == sales_jc.name

        assert transfer_service.get_regional_broadcasts("Nyeri", target_shop_id=shop_jc.id) == []
        assert transfer_service.get_regional_broadcasts("Nakuru", target_shop_id=shop_e1.id) == []

        claimed = transfer_service.dispatch_transfer(
            caller_id=sales_ja.id, transfer_id=transfer.id, approver_id=sales_ja.id, from_shop_id=shop_ja.id,
        )
        assert claimed.from_shop_id == shop_ja.id
        assert claimed.status == "in_transit"
        assert transfer_service.get_regional_broadcasts("Nyeri", target_shop_id=shop_ja.id) == []

    def test_broadcast_without_stock_reports_zero(self, db_session, shop_ja, shop_jc, sales_ja, make_product):
        ja_product = make_product(shop_ja, stock=10)
        _request(sales_ja, ja_product, shop_ja, quantity=1)

        [item] = transfer_service.get_regional_broadcasts("Nyeri", target_shop_id=shop_jc.id)
        assert item["my_stock"] == 0
        assert item["is_low_stock"] is True

    def test_claiming_needs_a_source(self, db_session, shop_ja, shop_jc, sales_ja, sales_jc, make_product):
        product = make_product(shop_ja)
        transfer = _request(sales_jc, product, shop_jc)

        with pytest.raises(ValidationError):
            transfer_service.dispatch_transfer(caller_id=sales_ja.id, transfer_id=transfer.id, approver_id=sales_ja.id)

    def test_destination_cannot_claim_own_request(self, db_session, shop_ja, shop_jc, sales_jc, make_product):
        make_product(shop_jc, sku="BRK-001", stock=10)
        product = make_product(shop_ja, sku="BRK-001", stock=10)
        transfer = _request(sales_jc, product, shop_jc)

        with pytest.raises(ValidationError):
            transfer_service.dispatch_transfer(
                caller_id=sales_jc.id, transfer_id=transfer.id, approver_id=sales_jc.id, from_shop_id=shop_jc.id,
            )

    def test_fixed_source_cannot_be_replaced(self, db_session, shop_ja, shop_jc, shop_e1, sales_ja, sales_jc, make_product):
        product = make_product(shop_ja)
        transfer = _request(sales_jc, product, shop_jc, from_shop=shop_ja)

        with pytest.raises(ValidationError):
            transfer_service.dispatch_transfer(
                caller_id=sales_ja.id, transfer_id=transfer.id, approver_id=sales_ja.id, from_shop_id=shop_e1.id,
            )

    def test_explicit_region_overrides_destination(self, db_session, shop_ja, shop_jc, sales_jc, make_product):
        product = make_product(shop_ja)
        transfer = _request(sales_jc, product, shop_jc, region="Nakuru")
        assert transfer.region == "Nakuru"


class TestCancel:

    def test_requester_can_cancel_pending(self, db_session, shop_ja, shop_jc, sales_jc, make_product):
        product = make_product(shop_ja)
        transfer = _request(sales_jc, product, shop_jc)

        cancelled = transfer_service.cancel_transfer(caller_id=sales_jc.id, transfer_id=transfer.id, reason="Found stock")
        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_by_user_id == sales_jc.id
        assert cancelled.cancellation_reason == "Found stock"

    def test_other_sales_user_cannot_cancel(self, db_session, shop_ja, shop_jc, sales_jc, sales_e1, manager, make_product):
        product = make_product(shop_ja)
        transfer = _request(sales_jc, product, shop_jc)

        with pytest.raises(Unauthorized):
            transfer_service.cancel_transfer(caller_id=sales_e1.id, transfer_id=transfer.id, reason="No")

        cancelled = transfer_service.cancel_transfer(caller_id=manager.id, transfer_id=transfer.id, reason="Duplicate")
        assert cancelled.status == "cancelled"

    def test_cannot_cancel_in_transit(self, db_session, shop_ja, shop_jc, sales_ja, sales_jc, manager, make_product):
        product = make_product(shop_ja, stock=10)
        transfer = _request(sales_jc, product, shop_jc, from_shop=shop_ja)
        transfer_service.dispatch_transfer(caller_id=sales_ja.id, transfer_id=transfer.id, approver_id=sales_ja.id)

        with pytest.raises(InvalidTransition):
            transfer_service.cancel_transfer(caller_id=manager.id, transfer_id=transfer.id, reason="Too late")
        assert db_session.get(Product, product.id).stock == 6

    def test_reason_required(self, db_session, shop_ja, shop_jc, sales_jc, make_product):
        product = make_product(shop_ja)
        transfer = _request(sales_jc, product, shop_jc)
        with pytest.raises(ValidationError):
            transfer_service.cancel_transfer(caller_id=sales_jc.id, transfer_id=transfer.id, reason="")


class TestTransferQueries:

    def test_pending_outgoing_incoming(self, db_session, shop_ja, shop_jc, shop_e1, sales_ja, sales_jc, sales_e1, make_product):
        product = make_product(shop_ja, stock=20)
        moving = _request(sales_jc, product, shop_jc, quantity=2, from_shop=shop_ja)
        waiting = _request(sales_e1, product, shop_e1, quantity=1, transfer_type="inter_region", from_shop=shop_ja)
        transfer_service.dispatch_transfer(caller_id=sales_ja.id, transfer_id=moving.id, approver_id=sales_ja.id)

        assert [t["id"] for t in transfer_service.get_pending_requests(shop_ja.id)] == [waiting.id]
        assert [t["id"] for t in transfer_service.get_pending_requests(shop_jc.id)] == []
        assert [t["id"] for t in transfer_service.get_outgoing_in_transit(shop_ja.id)] == [moving.id]
        assert [t["id"] for t in transfer_service.get_incoming_transfers(shop_jc.id)] == [moving.id]
        assert transfer_service.get_incoming_transfers(shop_ja.id) == []

        detail = transfer_service.get_transfer(moving.id)
        assert detail["sku"] == "BRK-001"
        assert detail["sender_name"] == sales_ja.name
        assert detail["from_shop_name"] == shop_ja.name
        assert detail["receiver_name"] is None
