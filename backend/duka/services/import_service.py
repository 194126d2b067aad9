# Overview: Bulk product import; best-effort row upserts recorded as an ImportBatch.

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from flask import current_app
from sqlalchemy.exc import DBAPIError, IntegrityError

from ..extensions import db
from ..errors import DomainError, NotFound, ValidationError
from ..models import ImportBatch, Shop
from .auth_service import verify_role
from .concurrency import run_atomic
from .import_schemas import SOURCE_FORMATS, build_row, header_mapping
from .products_service import CATALOGUE_ROLES, upsert_in_session

EMPTY_IMPORT_MESSAGE = "File is empty or has no data rows."

BATCH_STATUS_COMPLETED = "completed"
BATCH_STATUS_PARTIAL = "partial"
BATCH_STATUS_FAILED = "failed"


@dataclass
class ImportSummary:
    imported: int
    errors: list[str] = field(default_factory=list)
    batch_id: int | None = None
    created: int = 0
    updated: int = 0

    def to_dict(self) -> dict:
        return {
            "imported": self.imported,
            "errors": self.errors,
            "batch_id": self.batch_id,
            "created": self.created,
            "updated": self.updated,
        }


def _json_dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _row_error_message(exc: Exception) -> str:
    if isinstance(exc, DomainError):
        return exc.message
    if isinstance(exc, IntegrityError):
        return f"Conflicting row ({exc.orig})"
    if isinstance(exc, DBAPIError):
        return f"Rejected by the database ({exc.orig})"
    return str(exc)


def _batch_status(imported: int, failed: int) -> str:
    if imported == 0:
        return BATCH_STATUS_FAILED
    if failed:
        return BATCH_STATUS_PARTIAL
    return BATCH_STATUS_COMPLETED


def import_batch(
    *,
    caller_id: int,
    shop_id: int,
    rows: list[dict[str, Any]],
    file_name: str | None = None,
    source_format: str = "csv",
) -> ImportSummary:
    """
    Upsert every row into `shop_id`, collecting per-row failures.

    Each row runs inside its own SAVEPOINT: a failing row is rolled back and
    reported as "Row N: message" while the others still commit. The whole
    batch (rows plus its ImportBatch record) commits once at the end.

    Raises:
        Unauthorized: caller is not admin/manager
        NotFound: shop does not exist
        ValidationError: unknown source format or rows is not a list
    """
    if source_format not in SOURCE_FORMATS:
        raise ValidationError(f"Unsupported source format: {source_format}", field="source_format")
    if rows is None:
        rows = []
    if not isinstance(rows, list) or any(not isinstance(r, dict) for r in rows):
        raise ValidationError("rows must be a list of objects", field="rows")

    logger = current_app.logger

    def _op():
        caller = verify_role(caller_id, CATALOGUE_ROLES)
        shop = db.session.get(Shop, shop_id)
        if shop is None:
            raise NotFound("Shop", shop_id)

        if not rows:
            return ImportSummary(imported=0, errors=[EMPTY_IMPORT_MESSAGE])

        summary = ImportSummary(imported=0)
        mapping = header_mapping(rows)
        for row_index, raw in enumerate(rows, start=1):
            nested = db.session.begin_nested()
            try:
                row = build_row(raw, mapping, row_index, source_format)
                result = upsert_in_session(
                    actor_user_id=caller.id,
                    shop=shop,
                    **row.upsert_kwargs(),
                )
                nested.commit()
            except (DomainError, DBAPIError) as exc:
                nested.rollback()
                message = f"Row {row_index}: {_row_error_message(exc)}"
                summary.errors.append(message)
                logger.warning("Import into shop %s skipped %s", shop.code, message)
                continue

            summary.imported += 1
            if result.action == "created":
                summary.created += 1
            else:
                summary.updated += 1

        batch = ImportBatch(
            shop_id=shop.id,
            file_name=file_name,
            source_format=source_format,
            status=_batch_status(summary.imported, len(summary.errors)),
            total_rows=len(rows),
            imported_rows=summary.imported,
            created_rows=summary.created,
            updated_rows=summary.updated,
            error_rows=len(summary.errors),
            errors_json=_json_dumps(summary.errors) if summary.errors else None,
            created_by_user_id=caller.id,
        )
        db.session.add(batch)
        db.session.flush()
        summary.batch_id = batch.id

        logger.info(
            "Import batch %s into shop %s: %s imported (%s created, %s updated), %s failed",
            batch.id, shop.code, summary.imported, summary.created, summary.updated, len(summary.errors),
        )
        return summary

    return run_atomic(_op)


def list_import_batches(shop_id: int | None = None, limit: int = 50) -> list[ImportBatch]:
    query = db.session.query(ImportBatch)
    if shop_id is not None:
        query = query.filter(ImportBatch.shop_id == shop_id)
    return query.order_by(ImportBatch.created_at.desc(), ImportBatch.id.desc()).limit(limit).all()
