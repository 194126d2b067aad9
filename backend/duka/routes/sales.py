# Overview: Flask API routes for sales; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_caller
from ..errors import DomainError
from ..services import sales_service
from . import domain_error_response, missing_field_response, unexpected_error_response

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_caller
def create_sale_route():
    """
    Record a completed sale.

    Request body:
    {
        "shop_id": int,
        "user_id": int (optional, defaults to the caller),
        "items": [{"product_id": int, "quantity": int, "unit_price_cents": int}],
        "payment_method": str,
        "mpesa_code": str (optional),
        "payment_proof_url": str (optional)
    }

    Returns:
        201: Sale created
        400: Invalid request
        403: Caller may not sell
        404: Shop, user or product not found
        409: Insufficient stock or M-Pesa code already used
    """
    data = request.get_json(silent=True) or {}

    try:
        sale = sales_service.create_sale(
            caller_id=g.caller_id,
            shop_id=data["shop_id"],
            user_id=data.get("user_id", g.caller_id),
            items=data["items"],
            payment_method=data["payment_method"],
            mpesa_code=data.get("mpesa_code"),
            payment_proof_url=data.get("payment_proof_url"),
        )
        current_app.logger.info(
            "Sale %s recorded at shop %s: %s cents (%s)",
            sale.id, sale.shop_id, sale.total_cents, sale.payment_method,
        )
        return jsonify(sale.to_dict()), 201
    except KeyError as e:
        return missing_field_response(e)
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        return unexpected_error_response("create sale")


@sales_bp.get("")
@require_caller
def list_sales_route():
    shop_id = request.args.get("shop_id", type=int)
    sales = sales_service.list_sales_for_shop(shop_id)
    return jsonify({"items": [s.to_dict() for s in sales], "count": len(sales)})


@sales_bp.get("/report")
@require_caller
def sales_report_route():
    shop_id = request.args.get("shop_id", type=int)
    return jsonify(sales_service.get_sales_report(shop_id))


@sales_bp.get("/<int:sale_id>")
@require_caller
def get_sale_route(sale_id: int):
    try:
        return jsonify(sales_service.get_sale(sale_id).to_dict())
    except DomainError as e:
        return domain_error_response(e)
