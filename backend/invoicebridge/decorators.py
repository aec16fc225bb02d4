# Overview: Request decorators for the control surface.

import hmac
from functools import wraps

from flask import current_app, jsonify, request


def require_admin_token(f):
    """
    Require the admin bearer token for operator endpoints.

    When ADMIN_API_TOKEN is unset the check is disabled (local development).
    Returns 401 if the header is missing or the token does not match.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        expected = current_app.config.get("ADMIN_API_TOKEN")
        if not expected:
            return f(*args, **kwargs)

        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
            current_app.logger.warning("Rejected admin token for %s %s", request.method, request.path)
            return jsonify({"error": "Invalid token"}), 401

        return f(*args, **kwargs)

    return decorated_function
