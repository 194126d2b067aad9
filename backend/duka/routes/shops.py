# Overview: Flask API routes for shop administration.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_caller
from ..errors import DomainError
from ..models import ROLE_ADMIN
from ..services import shop_service
from ..services.auth_service import verify_role
from . import domain_error_response, missing_field_response, unexpected_error_response

shops_bp = Blueprint("shops", __name__, url_prefix="/api/shops")


@shops_bp.get("")
@require_caller
def list_shops():
    shops = shop_service.list_shops(region=request.args.get("region"))
    return jsonify({"items": [s.to_dict() for s in shops], "count": len(shops)})


@shops_bp.get("/<int:shop_id>")
@require_caller
def get_shop(shop_id: int):
    try:
        return jsonify(shop_service.get_shop(shop_id).to_dict())
    except DomainError as e:
        return domain_error_response(e)


@shops_bp.post("")
@require_caller
def create_shop():
    """
    Request body:
    {
        "code": str, "name": str,
        "location": str (optional), "region": str (optional)
    }
    """
    data = request.get_json(silent=True) or {}

    try:
        shop = shop_service.create_shop(
            caller_id=g.caller_id,
            code=data["code"],
            name=data["name"],
            location=data.get("location"),
            region=data.get("region"),
        )
        return jsonify(shop.to_dict()), 201
    except KeyError as e:
        return missing_field_response(e)
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        return unexpected_error_response("create shop")


@shops_bp.post("/backfill-regions")
@require_caller
def backfill_regions():
    try:
        verify_role(g.caller_id, (ROLE_ADMIN,))
        changed = shop_service.backfill_regions()
        return jsonify({"updated": [s.to_dict() for s in changed], "count": len(changed)})
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        return unexpected_error_response("backfill shop regions")


@shops_bp.get("/distribution")
@require_caller
def distribution():
    return jsonify(shop_service.data_distribution())
