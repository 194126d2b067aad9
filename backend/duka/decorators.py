# Overview: Request decorators for API routes.

from functools import wraps
from flask import current_app, g, jsonify, request


def caller_id_from_request() -> int | None:
    """The gateway-authenticated user id, or None when absent or malformed."""
    raw = request.headers.get(current_app.config["CALLER_ID_HEADER"], "").strip()
    if not raw.isdigit():
        return None
    return int(raw)


def require_caller(f):
    """
    Require the identity gateway's caller header.

    Sets g.caller_id for the route, which passes it to the service layer
    explicitly. The role check itself happens in the service
    (auth_service.verify_role), so an unknown id still fails there with 403.

    Returns 401 when the header is missing or not a user id.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        caller_id = caller_id_from_request()
        if caller_id is None:
            return jsonify({"error": "Authentication required"}), 401
        g.caller_id = caller_id
        return f(*args, **kwargs)

    return decorated_function
