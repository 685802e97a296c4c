# Overview: Flask API routes for payments and their confirmations; parses input and returns JSON responses.

"""
Payment API Routes

WHY: Let a shopper pay for an order and let staff settle manual payments.

DESIGN:
- A payment starts pending with a pending confirmation
- Confirm / reject / cancel only work from pending
- Guest payments are recorded without a user
- Settling payments and the confirmation queue are staff-only (X-Staff-Id)
"""

from flask import Blueprint, jsonify, g, request, current_app

from ..decorators import with_shopper, with_staff, json_body
from ..errors import LifecycleError, NotFoundError, ValidationError, http_status_for
from ..services.order_service import OrderCreationService
from ..services.payment_service import CONFIRMATION_STATUS_PENDING, ConfirmationData, PaymentData, PaymentService
from ..store import DocumentStore
from .checkout import shopper_can_see_order


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("")
@with_shopper
@json_body
def create_payment_route():
    """
    Start a payment for an order.

    Request body:
    {
        "order_id": "<document id>",
        "payment_type": "manual",  (manual | gateway)
        "payment_method": "bank_transfer",  (optional, method code)
        "amount": "150.00",  (optional, defaults to the order total)
        "currency": "USD",  (optional)
        "payment_notes": "..."  (optional)
    }

    Returns:
        201: Payment with its pending confirmation
        400: Invalid input
        404: Order or payment method not found
        409: Order already has a pending payment
        422: Order already paid or owned by another user
    """
    try:
        data = g.body
        if not data.get("order_id"):
            raise ValidationError("order_id is required")

        store = DocumentStore()
        order = OrderCreationService(store).get_order(data["order_id"])
        if not shopper_can_see_order(order):
            raise NotFoundError("Order not found", order_id=str(data["order_id"]))

        payment = PaymentService(store).create_payment(
            order.id,
            user_id=g.user_id,
            data=PaymentData.from_dict(data),
            is_guest=g.is_guest,
        )
        return jsonify({"payment": payment.to_dict()}), 201
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to create payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("/<payment_id>")
@with_shopper
def get_payment_route(payment_id):
    try:
        payment = PaymentService(DocumentStore()).get_payment(payment_id)
        if not shopper_can_see_order(payment.order):
            raise NotFoundError("Payment not found", payment_id=payment_id)
        return jsonify({"payment": payment.to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to load payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/orders/<order_id>")
@with_shopper
def get_order_payments_route(order_id):
    """All payment attempts for an order, oldest first."""
    try:
        store = DocumentStore()
        order = OrderCreationService(store).get_order(order_id)
        if not shopper_can_see_order(order):
            raise NotFoundError("Order not found", order_id=order_id)
        payments = PaymentService(store).list_order_payments(order.id)
        return jsonify({"order_id": order_id, "payments": [p.to_dict() for p in payments]}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to load order payments")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CONFIRMATION (staff)
# =============================================================================

@payments_bp.post("/<payment_id>/confirm")
@with_staff
@json_body
def confirm_payment_route(payment_id):
    """
    Confirm a pending manual payment.

    Request body:
    {
        "confirmed_by": "admin@example.com",  (optional, defaults to the staff id)
        "confirmation_notes": "...",  (optional)
        "confirmation_evidence": {...},  (optional)
        "attachments": [...]  (optional)
    }

    Returns:
        200: Updated confirmation
        401: No staff identity
        404: Payment or confirmation not found
        422: Payment or confirmation no longer pending
    """
    try:
        data = ConfirmationData.from_dict(g.body)
        data.confirmed_by = data.confirmed_by or g.staff_id
        confirmation = PaymentService(DocumentStore()).confirm_manual_payment(payment_id, data)
        return jsonify({"confirmation": confirmation.to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<payment_id>/reject")
@with_staff
@json_body
def reject_payment_route(payment_id):
    """Body: {"reason": "...", "rejected_by": "...", "evidence": {...}}"""
    try:
        data = g.body
        confirmation = PaymentService(DocumentStore()).reject_payment(
            payment_id,
            rejected_by=data.get("rejected_by") or g.staff_id,
            reason=data.get("reason"),
            evidence=data.get("evidence"),
        )
        return jsonify({"confirmation": confirmation.to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to reject payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<payment_id>/cancel")
@with_staff
@json_body
def cancel_payment_route(payment_id):
    """Body: {"reason": "...", "cancelled_by": "..."}"""
    try:
        data = g.body
        confirmation = PaymentService(DocumentStore()).cancel_payment(
            payment_id,
            cancelled_by=data.get("cancelled_by") or g.staff_id,
            reason=data.get("reason"),
        )
        return jsonify({"confirmation": confirmation.to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to cancel payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/confirmations")
@with_staff
def list_confirmations_route():
    """Query: ?status=pending|confirmed|rejected (default pending)."""
    try:
        status = request.args.get("status", CONFIRMATION_STATUS_PENDING)
        confirmations = PaymentService(DocumentStore()).list_confirmations_by_status(status)
        return jsonify({"status": status, "confirmations": [c.to_dict() for c in confirmations]}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to list confirmations")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/confirmations/stats")
@with_staff
def confirmation_stats_route():
    try:
        stats = PaymentService(DocumentStore()).get_confirmation_stats()
        stats["confirmed_amount"] = str(stats["confirmed_amount"])
        return jsonify(stats), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to compute confirmation stats")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/confirmations/bulk-confirm")
@with_staff
@json_body
def bulk_confirm_route():
    """
    Confirm several pending payments.

    Request body:
    {
        "payment_ids": ["<document id>", ...],
        "notes": "..."  (optional)
    }

    Returns:
        200: {"confirmed": [...], "errors": [{"payment_id", "error", "kind"}]}
        400: payment_ids missing or empty
    """
    try:
        data = g.body
        results = PaymentService(DocumentStore()).bulk_confirm_payments(
            data.get("payment_ids"),
            confirmed_by=data.get("confirmed_by") or g.staff_id,
            notes=data.get("notes"),
        )
        return jsonify({
            "confirmed": [c.to_dict() for c in results["confirmed"]],
            "errors": results["errors"],
        }), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to bulk confirm payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<payment_id>/history")
@with_staff
def confirmation_history_route(payment_id):
    try:
        history = PaymentService(DocumentStore()).get_confirmation_history(payment_id)
        return jsonify({"payment_id": payment_id, "history": history}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to load confirmation history")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.patch("/<payment_id>/evidence")
@with_staff
@json_body
def update_evidence_route(payment_id):
    """Body: {"evidence": {...}}; only while the confirmation is pending."""
    try:
        confirmation = PaymentService(DocumentStore()).update_confirmation_evidence(
            payment_id, g.body.get("evidence"), updated_by=g.staff_id,
        )
        return jsonify({"confirmation": confirmation.to_dict()}), 200
    except LifecycleError as e:
        return jsonify(e.to_dict()), http_status_for(e)
    except Exception:
        current_app.logger.exception("Failed to update confirmation evidence")
        return jsonify({"error": "Internal server error"}), 500
