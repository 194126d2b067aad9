# Overview: Flask API routes for bulk product imports; parses input and returns JSON responses.

"""
Import Routes

Accepts either a JSON body ({"shop_id", "rows", ...}) or a multipart upload
of a .csv or .json file with a shop_id form field.
"""

import csv
import io
import json

from flask import Blueprint, g, jsonify, request

from ..decorators import require_caller
from ..errors import DomainError, ValidationError
from ..services import import_service
from . import domain_error_response, missing_field_response, unexpected_error_response

imports_bp = Blueprint("imports", __name__, url_prefix="/api/imports")


def _rows_from_upload(file) -> tuple[list, str]:
    filename = file.filename or ""
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if ext == "csv":
        stream = io.StringIO(file.stream.read().decode("utf-8-sig"))
        return [row for row in csv.DictReader(stream)], "csv"
    if ext == "json":
        try:
            rows = json.load(file.stream)
        except ValueError:
            raise ValidationError("File is not valid JSON", field="file")
        if isinstance(rows, dict):
            rows = rows.get("rows", [])
        return rows, "json"
    raise ValidationError("Unsupported file format", field="file")


@imports_bp.post("")
@require_caller
def import_route():
    try:
        if "file" in request.files:
            file = request.files["file"]
            shop_id = request.form.get("shop_id", type=int)
            if shop_id is None:
                raise KeyError("shop_id")
            rows, source_format = _rows_from_upload(file)
            file_name = file.filename
        else:
            data = request.get_json(silent=True) or {}
            shop_id = data["shop_id"]
            rows = data.get("rows") or []
            source_format = data.get("source_format", "json")
            file_name = data.get("file_name")

        summary = import_service.import_batch(
            caller_id=g.caller_id,
            shop_id=shop_id,
            rows=rows,
            file_name=file_name,
            source_format=source_format,
        )
        return jsonify(summary.to_dict()), 200
    except KeyError as e:
        return missing_field_response(e)
    except DomainError as e:
        return domain_error_response(e)
    except UnicodeDecodeError:
        return jsonify({"error": "File must be UTF-8 encoded"}), 400
    except Exception:
        return unexpected_error_response("import products")


@imports_bp.get("")
@require_caller
def list_batches_route():
    shop_id = request.args.get("shop_id", type=int)
    batches = import_service.list_import_batches(shop_id=shop_id)
    return jsonify({"items": [b.to_dict() for b in batches], "count": len(batches)})
