from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any

from duka.time_utils import epoch_millis

SOURCE_CSV = "csv"
SOURCE_JSON = "json"
SOURCE_FORMATS = (SOURCE_CSV, SOURCE_JSON)

DEFAULT_UNIT = "pcs"

# Point-of-sale exports name their columns after the product attribute
# (TaxPercent, ReorderPoint, ...). Matched exactly, before the containment
# table, since "preferredquantity" would otherwise land on stock.
EXACT_HEADERS = {
    "taxpercent": "tax_percent",
    "reorderpoint": "reorder_point",
    "preferredquantity": "preferred_quantity",
    "warningquantity": "warning_quantity",
    "istaxinclusive": "is_tax_inclusive",
    "ispricechangeallowed": "is_price_change_allowed",
    "isservice": "is_service",
    "isenabled": "is_enabled",
}

# (field, exact aliases, contained aliases), in priority order
HEADER_ALIASES = (
    ("sku", (), ("sku", "itemcode")),
    ("name", (), ("name", "description", "itemname")),
    ("barcode", (), ("barcode",)),
    ("price", ("price",), ("sellingprice", "retailprice")),
    ("cost", ("cost",), ("costprice", "purchaseprice")),
    ("stock", (), ("stock", "quantity", "onhand")),
    ("category", (), ("category", "group", "productgroup")),
    ("supplier", (), ("supplier", "vendor")),
    ("unit", (), ("unit", "measurement")),
)

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_NON_NUMERIC = re.compile(r"[^0-9.\-]")


def normalize_header(header: Any) -> str:
    return _NON_ALNUM.sub("", str(header or "").lower())


def field_for_header(header: Any) -> str | None:
    key = normalize_header(header)
    if not key:
        return None
    if key in EXACT_HEADERS:
        return EXACT_HEADERS[key]
    for name, exact, contained in HEADER_ALIASES:
        if key in exact or any(alias in key for alias in contained):
            return name
    return None


def map_headers(headers) -> dict[str, str]:
    """
    Map each recognised field to the raw column that feeds it.

    When several columns match the same field the last one wins.
    """
    mapping: dict[str, str] = {}
    for header in headers:
        name = field_for_header(header)
        if name is not None:
            mapping[name] = header
    return mapping


def to_number(value: Any) -> float | int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        # NaN and Infinity survive json.loads
        return value if math.isfinite(value) else 0
    if value is None:
        return 0
    cleaned = _NON_NUMERIC.sub("", str(value))
    if not cleaned:
        return 0
    try:
        number = float(cleaned)
    except ValueError:
        return 0
    return int(number) if number.is_integer() else number


def to_bool(value: Any) -> bool:
    return value is True or value == 1 or value in ("1", "true")


def to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def to_cents(value: Any) -> int:
    cents = to_number(value) * 100
    return int(round(cents)) if math.isfinite(cents) else 0


def to_int(value: Any) -> int:
    return int(to_number(value))


def _optional_int(value: Any) -> int | None:
    return None if to_text(value) is None else to_int(value)


def _optional_float(value: Any) -> float | None:
    return None if to_text(value) is None else float(to_number(value))


def _optional_bool(value: Any) -> bool | None:
    return None if value is None or value == "" else to_bool(value)


@dataclass
class ImportRow:
    """One source row, typed and defaulted, ready for the upsert engine."""

    row_index: int
    sku: str
    name: str
    price_cents: int = 0
    cost_cents: int = 0
    stock: int = 0
    barcode: str | None = None
    category: str | None = None
    supplier: str | None = None
    measurement_unit: str = DEFAULT_UNIT
    tax_percent: float | None = None
    reorder_point: int | None = None
    preferred_quantity: int | None = None
    warning_quantity: int | None = None
    is_tax_inclusive: bool | None = None
    is_price_change_allowed: bool | None = None
    is_service: bool | None = None
    is_enabled: bool | None = None
    synthetic_sku: bool = field(default=False, compare=False)

    def upsert_kwargs(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("row_index")
        data.pop("synthetic_sku")
        return data


def build_row(raw: dict[str, Any], mapping: dict[str, str], row_index: int, source_format: str) -> ImportRow:
    def get(name: str) -> Any:
        column = mapping.get(name)
        return raw.get(column) if column is not None else None

    sku = to_text(get("sku"))
    synthetic = sku is None
    if synthetic:
        prefix = "JSON" if source_format == SOURCE_JSON else "CSV"
        sku = f"{prefix}-{epoch_millis()}-{row_index}"

    return ImportRow(
        row_index=row_index,
        sku=sku,
        name=to_text(get("name")) or f"Product Row {row_index}",
        price_cents=to_cents(get("price")),
        cost_cents=to_cents(get("cost")),
        stock=to_int(get("stock")),
        barcode=to_text(get("barcode")),
        category=to_text(get("category")),
        supplier=to_text(get("supplier")),
        measurement_unit=to_text(get("unit")) or DEFAULT_UNIT,
        tax_percent=_optional_float(get("tax_percent")),
        reorder_point=_optional_int(get("reorder_point")),
        preferred_quantity=_optional_int(get("preferred_quantity")),
        warning_quantity=_optional_int(get("warning_quantity")),
        is_tax_inclusive=_optional_bool(get("is_tax_inclusive")),
        is_price_change_allowed=_optional_bool(get("is_price_change_allowed")),
        is_service=_optional_bool(get("is_service")),
        is_enabled=_optional_bool(get("is_enabled")),
        synthetic_sku=synthetic,
    )


def header_mapping(raw_rows: list[dict[str, Any]]) -> dict[str, str]:
    """Map headers once from the union of all row keys, in first-seen order."""
    headers: list[str] = []
    seen: set[str] = set()
    for raw in raw_rows:
        for key in raw.keys():
            if key not in seen:
                seen.add(key)
                headers.append(key)
    return map_headers(headers)


def build_rows(raw_rows: list[dict[str, Any]], source_format: str = SOURCE_CSV) -> list[ImportRow]:
    """Turn raw row dicts into ImportRows, numbered from 1."""
    mapping = header_mapping(raw_rows)
    return [
        build_row(raw, mapping, index, source_format)
        for index, raw in enumerate(raw_rows, start=1)
    ]
