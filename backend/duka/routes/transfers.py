# backend/duka/routes/transfers.py
"""
Inter-shop transfer API routes.
"""
from flask import Blueprint, g, jsonify, request

from ..decorators import require_caller
from ..errors import DomainError
from ..services import transfer_service
from . import domain_error_response, missing_field_response, unexpected_error_response


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


@transfers_bp.route("", methods=["POST"])
@require_caller
def create_transfer():
    """
    Open a transfer request.

    Request body:
    {
        "product_id": int,
        "to_shop_id": int,
        "quantity": int,
        "type": "intra_region" | "inter_region",
        "from_shop_id": int (optional; omit to broadcast to the region),
        "region": str (optional),
        "expected_arrival": ISO-8601 str (optional)
    }

    Returns:
        201: Transfer created
        400: Invalid request
        403: Forbidden
        404: Product or shop not found
    """
    data = request.get_json(silent=True) or {}

    try:
        transfer = transfer_service.create_transfer_request(
            caller_id=g.caller_id,
            product_id=data["product_id"],
            to_shop_id=data["to_shop_id"],
            quantity=data["quantity"],
            transfer_type=data["type"],
            from_shop_id=data.get("from_shop_id"),
            region=data.get("region"),
            expected_arrival=data.get("expected_arrival"),
        )
        return jsonify(transfer.to_dict()), 201
    except KeyError as e:
        return missing_field_response(e)
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        return unexpected_error_response("create transfer")


@transfers_bp.route("/<int:transfer_id>/payment", methods=["POST"])
@require_caller
def upload_payment(transfer_id: int):
    """
    Attach payment proof to an inter-region transfer.

    Request body: {"payment_proof_url": str}

    Returns:
        200: Transfer now pending
        409: Transfer not awaiting payment
    """
    data = request.get_json(silent=True) or {}

    try:
        transfer = transfer_service.upload_transfer_payment(
            caller_id=g.caller_id,
            transfer_id=transfer_id,
            proof_ref=data["payment_proof_url"],
        )
        return jsonify(transfer.to_dict()), 200
    except KeyError as e:
        return missing_field_response(e)
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        return unexpected_error_response("upload transfer payment")


@transfers_bp.route("/<int:transfer_id>/dispatch", methods=["POST"])
@require_caller
def dispatch_transfer(transfer_id: int):
    """
    Dispatch (or claim and dispatch) a pending transfer.

    Request body:
    {
        "approved_by_user_id": int (optional, defaults to the caller),
        "from_shop_id": int (required when claiming a broadcast)
    }

    Returns:
        200: Transfer in transit
        402: Payment proof missing
        404: Product not stocked at the source
        409: Wrong status or insufficient stock
    """
    data = request.get_json(silent=True) or {}

    try:
        transfer = transfer_service.dispatch_transfer(
            caller_id=g.caller_id,
            transfer_id=transfer_id,
            approver_id=data.get("approved_by_user_id", g.caller_id),
            from_shop_id=data.get("from_shop_id"),
        )
        return jsonify(transfer.to_dict()), 200
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        return unexpected_error_response("dispatch transfer")


@transfers_bp.route("/<int:transfer_id>/receive", methods=["POST"])
@require_caller
def receive_transfer(transfer_id: int):
    """
    Receive an in-transit transfer at its destination.

    Request body:
    {
        "delivery_photo_url": str,
        "received_by_user_id": int (optional, defaults to the caller)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        transfer = transfer_service.receive_transfer(
            caller_id=g.caller_id,
            transfer_id=transfer_id,
            receiver_id=data.get("received_by_user_id", g.caller_id),
            photo_ref=data.get("delivery_photo_url"),
        )
        return jsonify(transfer.to_dict()), 200
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        return unexpected_error_response("receive transfer")


@transfers_bp.route("/<int:transfer_id>/cancel", methods=["POST"])
@require_caller
def cancel_transfer(transfer_id: int):
    data = request.get_json(silent=True) or {}

    try:
        transfer = transfer_service.cancel_transfer(
            caller_id=g.caller_id,
            transfer_id=transfer_id,
            reason=data.get("reason"),
        )
        return jsonify(transfer.to_dict()), 200
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        return unexpected_error_response("cancel transfer")


@transfers_bp.route("/<int:transfer_id>", methods=["GET"])
@require_caller
def get_transfer(transfer_id: int):
    try:
        return jsonify(transfer_service.get_transfer(transfer_id)), 200
    except DomainError as e:
        return domain_error_response(e)


@transfers_bp.route("/pending", methods=["GET"])
@require_caller
def pending_transfers():
    shop_id = request.args.get("shop_id", type=int)
    items = transfer_service.get_pending_requests(target_shop_id=shop_id)
    return jsonify({"items": items, "count": len(items)}), 200


@transfers_bp.route("/broadcasts", methods=["GET"])
@require_caller
def regional_broadcasts():
    """
    Query params:
    - region: str (required)
    - shop_id: int (optional) - the shop looking to fulfil requests
    """
    region = request.args.get("region")
    if not region:
        return jsonify({"error": "Missing required field: region", "code": "ValidationError",
                        "details": {"field": "region"}}), 400
    shop_id = request.args.get("shop_id", type=int)
    items = transfer_service.get_regional_broadcasts(region, target_shop_id=shop_id)
    return jsonify({"items": items, "count": len(items)}), 200


@transfers_bp.route("/outgoing", methods=["GET"])
@require_caller
def outgoing_transfers():
    shop_id = request.args.get("shop_id", type=int)
    items = transfer_service.get_outgoing_in_transit(target_shop_id=shop_id)
    return jsonify({"items": items, "count": len(items)}), 200


@transfers_bp.route("/incoming", methods=["GET"])
@require_caller
def incoming_transfers():
    shop_id = request.args.get("shop_id", type=int)
    items = transfer_service.get_incoming_transfers(target_shop_id=shop_id)
    return jsonify({"items": items, "count": len(items)}), 200
