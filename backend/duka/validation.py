"""
Request payload validation against the SQLAlchemy column metadata.

Routes describe what a client may write with a ModelValidationPolicy; the
column types, nullability and String lengths do the rest. Money limits and
other catalogue rules live in enforce_rules_product.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text

from .errors import ValidationError
from duka.time_utils import parse_iso_datetime

# KES 9,999,999.99
MAX_PRICE_CENTS = 999_999_999
MAX_STOCK = 999_999_999

TRUE_STRINGS = ("1", "true", "yes")


@dataclass(frozen=True)
class ModelValidationPolicy:
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{key} must be a whole number", field=key)
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be an integer", field=key)

    text = value.strip()
    # "1e3" and "12.5" parse as floats; cents and counts must be plain digits
    if not text or "e" in text.lower() or "." in text:
        raise ValidationError(f"{key} must be a plain integer", field=key)
    try:
        return int(text)
    except ValueError:
        raise ValidationError(f"{key} must be an integer", field=key)


def _coerce_float(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number", field=key)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be a number", field=key)


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


def _coerce_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            parsed = parse_iso_datetime(value)
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed
    raise ValidationError(f"{key} must be an ISO-8601 datetime", field=key)


def coerce_column_value(column, value: Any):
    """Convert a JSON value to the Python type of `column`. None passes through."""
    if value is None:
        return None

    column_type = column.type
    if isinstance(column_type, Integer):
        return _coerce_int(column.key, value)
    if isinstance(column_type, Float):
        return _coerce_float(column.key, value)
    if isinstance(column_type, Boolean):
        return _coerce_bool(value)
    if isinstance(column_type, DateTime):
        return _coerce_datetime(column.key, value)
    if isinstance(column_type, (String, Text)):
        return str(value).strip()
    return value


def _check_text(column, value) -> None:
    if not isinstance(value, str):
        return
    if not column.nullable and value == "":
        raise ValidationError(f"{column.key} cannot be blank", field=column.key)
    length = getattr(column.type, "length", None)
    if length and len(value) > length:
        raise ValidationError(f"{column.key} exceeds max length {length}", field=column.key)


def validate_payload(*, model, payload: dict, policy: ModelValidationPolicy, partial: bool) -> dict:
    """
    Return a cleaned patch holding only the payload's writable fields.

    partial=False applies create semantics: every required_on_create field
    must be present. partial=True validates only the keys that were sent.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(policy.required_on_create - set(payload))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", field=missing[0])

    columns = {c.key: c for c in model.__mapper__.columns}
    for key in payload:
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}", field=key)
        if key not in columns:
            raise ValidationError(f"Unknown field: {key}", field=key)

    patch: dict = {}
    for key, raw in payload.items():
        column = columns[key]
        if raw is None and not column.nullable:
            raise ValidationError(f"{key} cannot be null", field=key)
        value = coerce_column_value(column, raw)
        _check_text(column, value)
        patch[key] = value
    return patch


def enforce_rules_product(patch: dict) -> None:
    """Catalogue rules the column metadata cannot express."""
    for key in ("price_cents", "cost_cents"):
        value = patch.get(key)
        if value is None:
            continue
        if value < 0:
            raise ValidationError(f"{key} must be >= 0", field=key)
        if value > MAX_PRICE_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}", field=key)

    for key in ("stock", "reorder_point", "preferred_quantity", "warning_quantity"):
        value = patch.get(key)
        if value is None:
            continue
        if value < 0:
            raise ValidationError(f"{key} must be >= 0", field=key)
        if value > MAX_STOCK:
            raise ValidationError(f"{key} cannot exceed {MAX_STOCK}", field=key)

    tax = patch.get("tax_percent")
    if tax is not None and not 0 <= tax <= 100:
        raise ValidationError("tax_percent must be between 0 and 100", field="tax_percent")
