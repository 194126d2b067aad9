"""
Domain error taxonomy.

Every error raised by the service layer is a DomainError. Each carries a
human-readable message, a structured `details` dict (enough for the client to
render an actionable message without a second round-trip) and the HTTP status
the routes translate it to.

None of these are retried by the services; they propagate to the caller, who
decides whether to adjust quantities, upload proof, or resubmit.
"""
from __future__ import annotations


class DomainError(ValueError):
    """Base class for business-rule failures."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": type(self).__name__,
            "details": self.details,
        }


class ValidationError(DomainError):
    """Malformed or missing required input. Rejected before any state change."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, {"field": field} if field else None)
        self.field = field


class Unauthorized(DomainError):
    """Caller role not in the operation's allowed set."""

    status_code = 403

    def __init__(self, message: str = "Unauthorized: You do not have permission to perform this action.",
                 allowed_roles: list[str] | tuple[str, ...] | None = None):
        super().__init__(message, {"allowed_roles": list(allowed_roles or [])})


class NotFound(DomainError):
    status_code = 404

    def __init__(self, entity: str, entity_id=None, message: str | None = None):
        super().__init__(
            message or f"{entity} not found",
            {"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class ProductNotFound(NotFound):
    """No product row for a SKU in a given shop."""

    def __init__(self, sku: str, shop_id: int | None, message: str | None = None):
        super().__init__(
            "Product",
            message=message or f"Product {sku!r} not found in shop {shop_id}",
        )
        self.details.update({"sku": sku, "shop_id": shop_id})


class InsufficientStock(DomainError):
    status_code = 409

    def __init__(self, product_name: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for {product_name}. Requested: {requested}, Available: {available}",
            {"product_name": product_name, "requested": requested, "available": available},
        )
        self.product_name = product_name
        self.requested = requested
        self.available = available


class InvalidTransition(DomainError):
    """Operation attempted against a transfer not in the required state."""

    status_code = 409

    def __init__(self, transfer_id: int, current_status: str, required_status: str | tuple[str, ...]):
        required = required_status if isinstance(required_status, str) else " or ".join(required_status)
        super().__init__(
            f"Transfer {transfer_id} is '{current_status}' (must be '{required}')",
            {
                "transfer_id": transfer_id,
                "current_status": current_status,
                "required_status": required,
            },
        )
        self.current_status = current_status


class PaymentRequired(DomainError):
    status_code = 402

    def __init__(self, transfer_id: int):
        super().__init__(
            "Payment proof must be uploaded before an inter-region transfer can be dispatched",
            {"transfer_id": transfer_id},
        )


class DuplicatePayment(DomainError):
    status_code = 409

    def __init__(self, mpesa_code: str):
        super().__init__(
            "This M-Pesa transaction code has already been used for another sale.",
            {"mpesa_code": mpesa_code},
        )
