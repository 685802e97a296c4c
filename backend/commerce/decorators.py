# Overview: Request decorators for API routes; shopper and staff identity, JSON body parsing.

from functools import wraps
from flask import request, jsonify, g


def _header_user_id():
    raw = request.headers.get("X-User-Id")
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def with_shopper(f):
    """
    Establish the shopper behind the request.

    Sets the following Flask g attributes:
    - g.session_id: browser session (X-Session-Id), may be None
    - g.user_id: authenticated user id (X-User-Id), may be None
    - g.is_guest: True when no user is attached

    Identity is resolved upstream; these headers are what the
    authentication gateway forwards. Returns 400 if neither is present or
    the user id is not an integer.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        session_id = request.headers.get("X-Session-Id") or None
        user_id = _header_user_id()

        if request.headers.get("X-User-Id") and user_id is None:
            return jsonify({"error": "X-User-Id must be an integer"}), 400
        if not session_id and user_id is None:
            return jsonify({"error": "X-Session-Id or X-User-Id header required"}), 400

        g.session_id = session_id
        g.user_id = user_id
        g.is_guest = user_id is None

        return f(*args, **kwargs)

    return decorated_function


def json_body(f):
    """Reject requests whose body is not a JSON object; stores it on g.body."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        data = request.get_json(silent=True)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        g.body = data
        return f(*args, **kwargs)

    return decorated_function


def with_staff(f):
    """
    Require a staff member behind the request.

    Sets g.staff_id from the X-Staff-Id header the authentication gateway
    forwards for signed-in staff. Returns 401 if it is missing.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        staff_id = (request.headers.get("X-Staff-Id") or "").strip()
        if not staff_id:
            return jsonify({"error": "Staff authentication required"}), 401

        g.staff_id = staff_id

        return f(*args, **kwargs)

    return decorated_function
