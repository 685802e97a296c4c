# Overview: Flask API routes for checkout sessions and orders; parses input and returns JSON responses.

"""
Checkout & Order API Routes

WHY: Turn the shopper's cart into an order. A checkout session captures
addresses and the chosen payment / shipping method; placing the order
validates the cart, writes the order and closes the session.

DESIGN:
- Checkout always starts from the shopper's own active cart
- Price drift never blocks the order; warnings are returned next to it
- Orders are only visible to the user (or guest session) that placed them
- Shoppers may cancel a pending order; later status changes are staff-only
"""

from flask import Blueprint, jsonify, g, current_app

from ..decorators import with_shopper, with_staff, json_body
from ..errors import InvalidStateError, LifecycleError, NotFoundError, ValidationError, http_status_for
from ..services.cart_service import CartService
from ..services.checkout_service import CheckoutService
from ..services.order_service import OrderCreationRequest, OrderCreationService
from ..services.order_status import ORDER_STATUS_PENDING
from ..store import DocumentStore


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api")


def shopper_can_see_order(order) -> bool:
    """User orders belong to the user; guest orders to the session that owned the cart."""
    if order.user_id is not None:
        return order.user_id == g.user_id
    return order.cart is not None and order.cart.session_id == g.session_id


def _visible_session(service: CheckoutService, session_id):
    session = service.get_checkout_session(session_id)
    cart = session.cart
    owned = cart.user_id == g.user_id if cart.user_id is not None else cart.session_id == g.session_id
    if not owned:
        raise NotFoundError("Checkout session not found", checkout_session_id=str(session_id))
    return session


# =============================================================================
# CHECKOUT SESSIONS
# =============================================================================

@checkout_bp.post("/checkout/sessions")
@with_shopper
@json_body
def start_checkout_route():
    """
    Start checkout for the shopper's active cart.

    Request body:
    {
        "shipping_address": {...},
        "billing_address": {...},  (optional, defaults to shipping)
        "payment_method": "manual",  (optional)
        "shipping_method": "standard"  (optional)
    }

    Returns:
        201: Checkout session
        400: Missing address or empty cart
        409: Cart already has an active session
    """
    try:
        data = g.body
        store = DocumentStore()
        cart = CartService(store).get_or_create_cart(session_id=g.session_id, user_id=g.user_id)
        session = CheckoutService(store).start_checkout(
            cart.id,
            shipping_address=data.get("shipping_address"),
            billing_address=data.get("billing_address"),
            payment_method=data.get("payment_method") or "manual",
            shipping_method=data.get("shipping_method"),
        )
        return jsonify({"checkout_session": session.to_dict()}), 201
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to start checkout")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/checkout/sessions/<session_id>")
@with_shopper
def get_checkout_session_route(session_id):
    try:
        session = _visible_session(CheckoutService(DocumentStore()), session_id)
        return jsonify({"checkout_session": session.to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to load checkout session")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.patch("/checkout/sessions/<session_id>")
@with_shopper
@json_body
def update_checkout_session_route(session_id):
    """Update addresses / methods while the session is active."""
    try:
        service = CheckoutService(DocumentStore())
        session = _visible_session(service, session_id)
        session = service.update_checkout_session(session.id, g.body)
        return jsonify({"checkout_session": session.to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to update checkout session")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.delete("/checkout/sessions/<session_id>")
@with_shopper
def abandon_checkout_route(session_id):
    try:
        service = CheckoutService(DocumentStore())
        session = _visible_session(service, session_id)
        session = service.abandon_checkout(session.id)
        return jsonify({"checkout_session": session.to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to abandon checkout session")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ORDERS
# =============================================================================

@checkout_bp.post("/orders")
@with_shopper
@json_body
def create_order_route():
    """
    Place an order from a cart and its checkout session.

    Request body:
    {
        "cart_id": "<document id>",
        "checkout_session_id": "<document id>",
        "source": "web",
        "payment_intent_id": "...",  (optional)
        "customer_notes": "...",  (optional)
        "gift_options": {"is_gift": true, "gift_message": "...", "gift_wrapping": false},  (optional)
        "promo_code": "...",  (optional)
        "metadata": {...}  (optional)
    }

    Returns:
        201: {"order": {...}, "warnings": [...]}
        400: Validation failed (all reasons listed in "errors")
        404: Cart or checkout session not found
        422: Cart/session not active, wrong owner, or insufficient stock
    """
    try:
        order_request = OrderCreationRequest.from_dict(g.body)
        result = OrderCreationService(DocumentStore()).create_order_from_cart(
            order_request, user_id=g.user_id, session_id=g.session_id,
        )
        return jsonify(result.to_dict()), 201
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/orders")
@with_shopper
def list_orders_route():
    """List the signed-in user's orders, newest first."""
    try:
        if g.user_id is None:
            raise ValidationError("X-User-Id is required to list orders")
        orders = OrderCreationService(DocumentStore()).list_user_orders(g.user_id)
        return jsonify({"orders": [o.to_dict() for o in orders]}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/orders/<order_id>")
@with_shopper
def get_order_route(order_id):
    try:
        order = OrderCreationService(DocumentStore()).get_order(order_id)
        if not shopper_can_see_order(order):
            raise NotFoundError("Order not found", order_id=order_id)
        return jsonify({"order": order.to_dict(include_items=True)}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/orders/number/<order_number>")
@with_shopper
def get_order_by_number_route(order_number):
    try:
        order = OrderCreationService(DocumentStore()).get_order_by_number(order_number)
        if not shopper_can_see_order(order):
            raise NotFoundError("Order not found", order_number=order_number)
        return jsonify({"order": order.to_dict(include_items=True)}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.post("/orders/<order_id>/cancel")
@with_shopper
@json_body
def cancel_order_route(order_id):
    """
    Cancel the shopper's own order while it is still pending.

    Request body:
    {
        "reason": "..."  (optional)
    }

    Returns:
        200: Cancelled order
        404: Order not found
        422: Order is past pending
    """
    try:
        service = OrderCreationService(DocumentStore())
        order = service.get_order(order_id)
        if not shopper_can_see_order(order):
            raise NotFoundError("Order not found", order_id=order_id)
        if order.status != ORDER_STATUS_PENDING:
            raise InvalidStateError(
                f"Order is {order.status}; only pending orders can be cancelled", order_id=order.document_id,
            )

        shopper = f"user:{g.user_id}" if g.user_id is not None else f"session:{g.session_id}"
        order = service.cancel_order(order.id, shopper, g.body.get("reason") or "Cancelled by customer")
        return jsonify({"order": order.to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.patch("/orders/<order_id>/status")
@with_staff
@json_body
def update_order_status_route(order_id):
    """
    Move an order along its lifecycle (staff).

    Request body:
    {
        "status": "processing",
        "notes": "..."  (optional)
    }

    Returns:
        200: Updated order
        400: status missing
        401: No staff identity
        404: Order not found
        422: Transition not allowed
    """
    try:
        data = g.body
        order = OrderCreationService(DocumentStore()).update_order_status(
            order_id, data.get("status"), changed_by=g.staff_id, notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500
