# Overview: Flask API routes for products and their stock ledger.

# backend/duka/routes/products.py
"""
Product catalogue and ledger routes.

Reads are open to any identified caller; writes require admin or manager,
which the service layer enforces through verify_role.
"""
from dataclasses import asdict

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_caller
from ..errors import DomainError
from ..models import Product
from ..services import ledger_service, products_service
from ..services.products_service import PRODUCT_MUTABLE_FIELDS
from ..validation import ModelValidationPolicy, enforce_rules_product, validate_payload
from . import domain_error_response, missing_field_response, unexpected_error_response

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_MUTABLE_FIELDS | {"sku", "stock"},
    required_on_create={"sku", "name"},
)

PRODUCT_PATCH_POLICY = ModelValidationPolicy(writable_fields=set(PRODUCT_MUTABLE_FIELDS))

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_caller
def list_products():
    """
    Query params:
    - shop_id: int (optional)
    - shop_code: str (optional) - also matches legacy rows by product_group
    """
    shop_id = request.args.get("shop_id", type=int)
    shop_code = request.args.get("shop_code")
    products = products_service.get_products_for_shop(shop_id=shop_id, shop_code=shop_code)
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)})


@products_bp.get("/low-stock")
@require_caller
def low_stock():
    shop_id = request.args.get("shop_id", type=int)
    threshold = request.args.get("threshold", type=int)
    products = products_service.get_low_stock(shop_id=shop_id, threshold=threshold)
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)})


@products_bp.get("/<int:product_id>")
@require_caller
def get_product(product_id: int):
    try:
        return jsonify(products_service.get_product(product_id).to_dict())
    except DomainError as e:
        return domain_error_response(e)


@products_bp.post("")
@require_caller
def create_product_route():
    payload = dict(request.get_json(silent=True) or {})
    shop_id = payload.pop("shop_id", None)

    try:
        if not isinstance(shop_id, int) or isinstance(shop_id, bool):
            raise KeyError("shop_id")
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
        enforce_rules_product(patch)
        product = products_service.create_product(caller_id=g.caller_id, shop_id=shop_id, patch=patch)
        return jsonify(product.to_dict()), 201
    except KeyError as e:
        return missing_field_response(e)
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        return unexpected_error_response("create product")


@products_bp.post("/upsert")
@require_caller
def upsert_product_route():
    """
    Insert-or-update by (sku, shop_id). On a match the stock in the body is
    added to the current stock.

    Request body:
    {
        "sku": str, "shop_id": int, "name": str,
        "price_cents": int, "cost_cents": int, "stock": int,
        "category": str (optional), "description": str (optional),
        ... other descriptive fields (optional)
    }
    """
    data = dict(request.get_json(silent=True) or {})

    try:
        result = products_service.upsert_product(
            caller_id=g.caller_id,
            sku=data.pop("sku"),
            shop_id=data.pop("shop_id"),
            name=data.pop("name"),
            price_cents=data.pop("price_cents"),
            cost_cents=data.pop("cost_cents"),
            stock=data.pop("stock"),
            category=data.pop("category", None),
            description=data.pop("description", None),
            **data,
        )
        return jsonify({"action": result.action, "product_id": result.product_id}), 200
    except KeyError as e:
        return missing_field_response(e)
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        return unexpected_error_response("upsert product")


@products_bp.patch("/<int:product_id>")
@require_caller
def update_product_route(product_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_PATCH_POLICY, partial=True)
        enforce_rules_product(patch)
        product = products_service.update_product(caller_id=g.caller_id, product_id=product_id, patch=patch)
        return jsonify(product.to_dict())
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        return unexpected_error_response("update product")


@products_bp.post("/<int:product_id>/restock")
@require_caller
def restock_route(product_id: int):
    data = request.get_json(silent=True) or {}

    try:
        result = products_service.restock_product(
            caller_id=g.caller_id,
            product_id=product_id,
            quantity=data["quantity"],
            cost_cents=data.get("cost_cents"),
            note=data.get("note"),
        )
        current_app.logger.info("Product %s restocked: %s -> %s", product_id, result.previous_stock, result.new_stock)
        return jsonify(asdict(result)), 200
    except KeyError as e:
        return missing_field_response(e)
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        return unexpected_error_response("restock product")


@products_bp.post("/<int:product_id>/adjust")
@require_caller
def adjust_route(product_id: int):
    data = request.get_json(silent=True) or {}

    try:
        result = products_service.adjust_stock(
            caller_id=g.caller_id,
            product_id=product_id,
            delta=data["quantity_delta"],
            note=data.get("note"),
        )
        current_app.logger.info("Product %s adjusted: %s -> %s", product_id, result.previous_stock, result.new_stock)
        return jsonify(asdict(result)), 200
    except KeyError as e:
        return missing_field_response(e)
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        return unexpected_error_response("adjust stock")


@products_bp.get("/<int:product_id>/movements")
@require_caller
def movements_route(product_id: int):
    limit = min(request.args.get("limit", default=200, type=int), 1000)
    try:
        movements = ledger_service.list_movements(product_id, limit=limit)
        ledger = ledger_service.verify_product_ledger(product_id)
    except DomainError as e:
        return domain_error_response(e)
    return jsonify({
        "items": [m.to_dict() for m in movements],
        "count": len(movements),
        "ledger": ledger,
    })
