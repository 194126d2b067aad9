# Overview: Shared error responses for the API blueprints.

from flask import current_app, jsonify

from ..errors import DomainError
from ..extensions import db


def domain_error_response(e: DomainError):
    db.session.rollback()
    return jsonify(e.to_dict()), e.status_code


def missing_field_response(e: KeyError):
    db.session.rollback()
    return jsonify({"error": f"Missing required field: {e.args[0]}", "code": "ValidationError",
                    "details": {"field": e.args[0]}}), 400


def unexpected_error_response(action: str):
    db.session.rollback()
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500
