# Overview: Flask API routes for the shopper's cart; parses input and returns JSON responses.

"""
Cart API Routes

WHY: The storefront keeps one cart per shopper. The cart is resolved from
the request identity (user when X-User-Id is sent, else the guest
session), so none of these routes take a cart id.

DESIGN:
- GET creates the cart on first visit
- Item changes recalculate totals and renew the expiry
- POST /migrate moves the guest session cart into the user's cart
"""

from flask import Blueprint, jsonify, g, current_app

from ..decorators import with_shopper, json_body
from ..errors import LifecycleError, ValidationError, http_status_for
from ..services.cart_service import CartService
from ..store import DocumentStore


carts_bp = Blueprint("carts", __name__, url_prefix="/api/cart")


def _service() -> CartService:
    return CartService(DocumentStore())


def _current_cart(service: CartService):
    return service.get_or_create_cart(session_id=g.session_id, user_id=g.user_id)


# =============================================================================
# CART
# =============================================================================

@carts_bp.get("")
@with_shopper
def get_cart_route():
    """
    Get (or create) the shopper's active cart with its items.

    Returns:
        200: Cart with items and totals
    """
    try:
        cart = _current_cart(_service())
        return jsonify({"cart": cart.to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to load cart")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.delete("")
@with_shopper
def clear_cart_route():
    """Soft-delete every item in the shopper's cart."""
    try:
        service = _service()
        cart = service.clear_cart(_current_cart(service).id)
        return jsonify({"cart": cart.to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to clear cart")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ITEMS
# =============================================================================

@carts_bp.post("/items")
@with_shopper
@json_body
def add_item_route():
    """
    Add a product (or variant) to the cart.

    Request body:
    {
        "product_id": "<document id>",
        "variant_id": "<document id>",  (optional)
        "quantity": 2,
        "notes": "...",  (optional)
        "selected_options": {...}  (optional)
    }

    Returns:
        201: Cart after the change
        400: Invalid input
        404: Product or variant not found
        422: Cart not active
    """
    try:
        data = g.body
        if not data.get("product_id"):
            raise ValidationError("product_id is required")

        service = _service()
        cart = _current_cart(service)
        service.add_item(
            cart.id,
            product_id=data["product_id"],
            quantity=data.get("quantity", 1),
            variant_id=data.get("variant_id"),
            notes=data.get("notes"),
            selected_options=data.get("selected_options"),
        )
        return jsonify({"cart": service.get_cart(cart.id).to_dict()}), 201
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.patch("/items/<item_id>")
@with_shopper
@json_body
def update_item_route(item_id):
    """Change an item's quantity. Body: {"quantity": 3}"""
    try:
        if "quantity" not in g.body:
            raise ValidationError("quantity is required")
        service = _service()
        cart = _current_cart(service)
        service.update_item_quantity(cart.id, item_id, g.body["quantity"])
        return jsonify({"cart": service.get_cart(cart.id).to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return jsonify({"error": "Internal server error"}), 500


@carts_bp.delete("/items/<item_id>")
@with_shopper
def remove_item_route(item_id):
    try:
        service = _service()
        cart = _current_cart(service)
        service.remove_item(cart.id, item_id)
        return jsonify({"cart": service.get_cart(cart.id).to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to remove cart item")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# MIGRATION
# =============================================================================

@carts_bp.post("/migrate")
@with_shopper
def migrate_cart_route():
    """
    Merge the guest session's cart into the signed-in user's cart.

    Requires both X-Session-Id and X-User-Id.

    Returns:
        200: {"migrated": true, "cart": {...}} or {"migrated": false} when
             the session has no active guest cart
    """
    try:
        if not g.session_id or g.user_id is None:
            raise ValidationError("X-Session-Id and X-User-Id are both required")
        cart = _service().migrate_guest_to_user_cart(g.session_id, g.user_id)
        if cart is None:
            return jsonify({"migrated": False, "cart": None}), 200
        return jsonify({"migrated": True, "cart": cart.to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to migrate guest cart")
        return jsonify({"error": "Internal server error"}), 500
