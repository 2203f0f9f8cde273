# controllers/auth.py
import hmac
from functools import wraps

from flask import current_app, jsonify, request

from services.settings import cfg


def _bearer_token() -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def admin_required(f):
    """Admin endpoints take `Authorization: Bearer <ADMIN_API_TOKEN>`."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        expected = (cfg("ADMIN_API_TOKEN") or "").strip()
        given = _bearer_token()
        # no token configured means the admin surface is closed
        if not expected or not hmac.compare_digest(expected.encode("utf-8"), given.encode("utf-8")):
            current_app.logger.warning("Forbidden admin call %s %s", request.method, request.path)
            return jsonify({"error": "Forbidden"}), 403
        return f(*args, **kwargs)
    return wrapper
