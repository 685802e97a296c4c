# Overview: Flask API routes for guest shoppers and guest conversion; parses input and returns JSON responses.

"""
Guest API Routes

WHY: Anonymous shoppers are tracked by browser session; registering turns
the guest into a user and carries the cart across.

DESIGN:
- A guest is only reachable from its own session (X-Session-Id); any
  other session gets 404
- Analytics are staff-only
"""

from flask import Blueprint, jsonify, g, current_app

from ..decorators import with_shopper, with_staff, json_body
from ..errors import LifecycleError, NotFoundError, ValidationError, http_status_for
from ..services.guest_service import GuestService
from ..store import DocumentStore


guests_bp = Blueprint("guests", __name__, url_prefix="/api/guests")


def _service() -> GuestService:
    return GuestService(DocumentStore())


def _own_session(session_id: str) -> str:
    if session_id != g.session_id:
        raise NotFoundError("Guest not found", session_id=session_id)
    return session_id


@guests_bp.post("")
@with_shopper
@json_body
def create_guest_route():
    """
    Register a guest for the calling browser session.

    Request body:
    {
        "session_id": "sess-1",  (optional, defaults to X-Session-Id; must match it)
        "email": "shopper@example.com",  (optional)
        "cart_id": "<document id>",  (optional, must be this session's cart)
        "metadata": {...}  (optional)
    }

    Returns:
        201: Guest
        400: Invalid email or metadata, or session_id differs from the header
        404: Cart not found
        409: Email registered, or guest already exists for the session
        422: Cart belongs to another session or user
    """
    try:
        data = dict(g.body)
        if not g.session_id:
            raise ValidationError("X-Session-Id is required to register a guest")
        data.setdefault("session_id", g.session_id)
        if data["session_id"] != g.session_id:
            raise ValidationError("session_id must match the X-Session-Id header")

        guest = _service().create_guest(data)
        return jsonify({"guest": guest.to_dict()}), 201
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to create guest")
        return jsonify({"error": "Internal server error"}), 500


@guests_bp.get("/analytics")
@with_staff
def guest_analytics_route():
    try:
        return jsonify(_service().get_analytics()), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to compute guest analytics")
        return jsonify({"error": "Internal server error"}), 500


@guests_bp.get("/<session_id>")
@with_shopper
def get_guest_route(session_id):
    try:
        guest = _service().get_guest(_own_session(session_id))
        return jsonify({"guest": guest.to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to load guest")
        return jsonify({"error": "Internal server error"}), 500


@guests_bp.patch("/<session_id>")
@with_shopper
@json_body
def update_guest_route(session_id):
    """Body: {"email": "...", "metadata": {...}}"""
    try:
        guest = _service().update_guest(_own_session(session_id), g.body)
        return jsonify({"guest": guest.to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to update guest")
        return jsonify({"error": "Internal server error"}), 500


@guests_bp.delete("/<session_id>")
@with_shopper
def delete_guest_route(session_id):
    try:
        _service().delete_guest(_own_session(session_id))
        return jsonify({"deleted": True}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to delete guest")
        return jsonify({"error": "Internal server error"}), 500


@guests_bp.post("/<session_id>/convert")
@with_shopper
@json_body
def convert_guest_route(session_id):
    """
    Convert a guest into a registered user.

    Request body:
    {
        "username": "jane",
        "email": "jane@example.com",
        "password": "secret1",
        "first_name": "Jane",
        "last_name": "Doe"
    }

    Returns:
        201: {"user": {...}, "cart": {...} | null, "guest": {...}}
        400: Missing fields, bad email, short password
        404: Guest not found (or not this session's guest)
        409: Username or email taken
        422: Guest already converted
    """
    try:
        result = _service().convert_to_user(_own_session(session_id), g.body)
        return jsonify(result.to_dict()), 201
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to convert guest")
        return jsonify({"error": "Internal server error"}), 500
