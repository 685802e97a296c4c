# Overview: Service-layer operations for payments; encapsulates the payment/confirmation state machine.

"""
Payment / Confirmation State Machine

WHY: A manual payment (bank transfer, cash on delivery) is only real once an
admin confirms it. Each Payment is paired with exactly one
PaymentConfirmation and the two move together:

    pending -> confirmed | rejected | cancelled

DESIGN PRINCIPLES:
- Payment and confirmation are created under one commit boundary; a failed
  confirmation leaves no orphan payment
- Guest payments are written without a user
- Transitions are only allowed from pending, checked on both records
  independently so drift between them is caught, never papered over
- The confirmation, the payment status and the order's payment_status are
  written in one transaction, so pending/terminal always agree; confirming
  also moves the order from pending to confirmed in that transaction
- At most one pending payment per order
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..errors import (
    CartOwnershipError,
    ConflictError,
    InvalidStateError,
    LifecycleError,
    NotFoundError,
    ValidationError,
)
from ..models import Order, Payment, PaymentConfirmation, PaymentMethod
from ..models.common import to_money
from ..store import DocumentStore
from ..time_utils import utcnow
from .order_status import ORDER_STATUS_CONFIRMED, ORDER_STATUS_PENDING, check_status_transition


# =============================================================================
# STATUS CONSTANTS
# =============================================================================

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_CONFIRMED = "confirmed"
PAYMENT_STATUS_REJECTED = "rejected"
PAYMENT_STATUS_CANCELLED = "cancelled"

CONFIRMATION_STATUS_PENDING = "pending"
CONFIRMATION_STATUS_CONFIRMED = "confirmed"
CONFIRMATION_STATUS_REJECTED = "rejected"
CONFIRMATION_STATUSES = (CONFIRMATION_STATUS_PENDING, CONFIRMATION_STATUS_CONFIRMED, CONFIRMATION_STATUS_REJECTED)

PAYMENT_TYPE_MANUAL = "manual"
PAYMENT_TYPE_GATEWAY = "gateway"
VALID_PAYMENT_TYPES = [PAYMENT_TYPE_MANUAL, PAYMENT_TYPE_GATEWAY]

ORDER_PAYMENT_PAID = "paid"
ORDER_PAYMENT_FAILED = "failed"


def confirmation_method_for(payment_type: str) -> str:
    return "admin_dashboard" if payment_type == PAYMENT_TYPE_MANUAL else "api_call"


# =============================================================================
# REQUEST TYPES
# =============================================================================

@dataclass
class PaymentData:
    payment_type: str = PAYMENT_TYPE_MANUAL
    payment_method: str | None = None  # PaymentMethod code or document id
    amount: object = None  # defaults to the order total
    currency: str | None = None  # defaults to the order currency
    payment_notes: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentData":
        return cls(
            payment_type=data.get("payment_type") or PAYMENT_TYPE_MANUAL,
            payment_method=data.get("payment_method"),
            amount=data.get("amount"),
            currency=data.get("currency"),
            payment_notes=data.get("payment_notes"),
        )


@dataclass
class ConfirmationData:
    confirmed_by: str
    confirmation_notes: str | None = None
    confirmation_evidence: dict | None = None
    attachments: list = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "ConfirmationData":
        return cls(
            confirmed_by=data.get("confirmed_by"),
            confirmation_notes=data.get("confirmation_notes"),
            confirmation_evidence=data.get("confirmation_evidence"),
            attachments=list(data.get("attachments") or []),
        )


class PaymentService:
    def __init__(self, store: DocumentStore):
        self.store = store

    # =========================================================================
    # PAYMENT CREATION
    # =========================================================================

    def create_payment(self, order_id, user_id: int | None, data: PaymentData, is_guest: bool) -> Payment:
        """
        Start a payment attempt for an order.

        Args:
            order_id: Order being paid
            user_id: Paying user (ignored when is_guest)
            data: payment type / method / amount / notes
            is_guest: guest checkout; the payment gets no user

        Returns:
            Payment with its confirmation, order and payment method loaded

        Raises:
            NotFoundError: order or payment method missing
            ValidationError: unknown payment type or non-positive amount
            CartOwnershipError: order belongs to another user
            InvalidStateError: order already paid or no longer pending
            ConflictError: order already has a pending payment
        """
        if data.payment_type not in VALID_PAYMENT_TYPES:
            raise ValidationError(f"Invalid payment type: {data.payment_type}. Must be one of {VALID_PAYMENT_TYPES}")

        order = self.store.get(Order, order_id)
        if not order:
            raise NotFoundError("Order not found", order_id=str(order_id))
        if not is_guest and order.user_id is not None and order.user_id != user_id:
            raise CartOwnershipError("Order belongs to another user", order_id=order.document_id)
        if order.payment_status == ORDER_PAYMENT_PAID:
            raise InvalidStateError("Order is already paid", order_id=order.document_id)
        if order.status != ORDER_STATUS_PENDING:
            raise InvalidStateError(
                f"Order is {order.status}; only pending orders take payments", order_id=order.document_id,
            )
        if self.store.count(Payment, order_id=order.id, status=PAYMENT_STATUS_PENDING):
            raise ConflictError("Order already has a pending payment", order_id=order.document_id)

        amount = to_money(order.total if data.amount is None else data.amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be positive")

        payment_method = None
        if data.payment_method:
            payment_method = (
                self.store.find(PaymentMethod, code=data.payment_method, is_active=True)
                or self.store.get(PaymentMethod, data.payment_method)
            )
            if not payment_method or not payment_method.is_active:
                raise NotFoundError("Payment method not found", payment_method=data.payment_method)

        payment_data = {
            "order_id": order.id,
            "payment_method_id": payment_method.id if payment_method else None,
            "amount": amount,
            "currency": data.currency or order.currency,
            "payment_type": data.payment_type,
            "status": PAYMENT_STATUS_PENDING,
            "payment_notes": data.payment_notes,
        }
        # Only authenticated payments carry a user
        if not is_guest:
            payment_data["user_id"] = user_id

        def _create():
            payment = self.store.create(Payment, payment_data)
            self.create_payment_confirmation(payment)
            return payment.id

        payment_pk = self.store.transaction(_create)
        payment = self.get_payment(payment_pk)
        current_app.logger.info(
            "Created %s payment %s for order %s", data.payment_type, payment.document_id, order.order_number
        )
        return payment

    def create_payment_confirmation(self, payment: Payment) -> PaymentConfirmation:
        """Pending confirmation record paired with a pending payment."""
        if payment.status != PAYMENT_STATUS_PENDING:
            raise InvalidStateError("Payment is not in pending status", payment_id=payment.document_id)
        if self.store.count(PaymentConfirmation, payment_id=payment.id):
            raise ConflictError("Payment confirmation already exists", payment_id=payment.document_id)

        return self.store.create(PaymentConfirmation, {
            "payment_id": payment.id,
            "confirmation_type": payment.payment_type,
            "confirmation_method": confirmation_method_for(payment.payment_type),
            "confirmation_status": CONFIRMATION_STATUS_PENDING,
            "confirmation_notes": "",
            "confirmation_evidence": {},
            "confirmation_history": [_history_entry(
                CONFIRMATION_STATUS_PENDING, "created", "Payment confirmation created",
            )],
            "attachments": [],
        })

    # =========================================================================
    # STATE TRANSITIONS
    # =========================================================================

    def confirm_manual_payment(self, payment_id, data: ConfirmationData) -> PaymentConfirmation:
        """
        Confirm a pending manual payment.

        Raises:
            ValidationError: confirmed_by missing
            NotFoundError: payment or its confirmation missing
            InvalidStateError: payment or confirmation no longer pending
        """
        if not data.confirmed_by:
            raise ValidationError("confirmed_by is required")

        return self._transition(
            payment_id,
            payment_status=PAYMENT_STATUS_CONFIRMED,
            confirmation_status=CONFIRMATION_STATUS_CONFIRMED,
            order_payment_status=ORDER_PAYMENT_PAID,
            order_status=ORDER_STATUS_CONFIRMED,
            action="manual_confirmation",
            actor=data.confirmed_by,
            notes=data.confirmation_notes or "",
            history_notes=data.confirmation_notes or "Payment confirmed manually",
            evidence=data.confirmation_evidence or {},
            attachments=data.attachments or [],
        )

    def reject_payment(self, payment_id, rejected_by: str, reason: str, evidence: dict | None = None) -> PaymentConfirmation:
        if not rejected_by or not reason:
            raise ValidationError("rejected_by and reason are required")

        return self._transition(
            payment_id,
            payment_status=PAYMENT_STATUS_REJECTED,
            confirmation_status=CONFIRMATION_STATUS_REJECTED,
            order_payment_status=ORDER_PAYMENT_FAILED,
            action="rejection",
            actor=rejected_by,
            notes=f"Rejected: {reason}",
            history_notes=f"Rejected: {reason}",
            evidence=evidence or {},
            admin_notes=f"Payment rejected: {reason}",
        )

    def cancel_payment(self, payment_id, cancelled_by: str, reason: str) -> PaymentConfirmation:
        if not cancelled_by or not reason:
            raise ValidationError("cancelled_by and reason are required")

        return self._transition(
            payment_id,
            payment_status=PAYMENT_STATUS_CANCELLED,
            confirmation_status=CONFIRMATION_STATUS_REJECTED,
            order_payment_status=ORDER_PAYMENT_FAILED,
            action="cancellation",
            actor=cancelled_by,
            notes=f"Cancelled: {reason}",
            history_notes=f"Cancelled: {reason}",
            admin_notes=f"Payment cancelled: {reason}",
        )

    def _transition(
        self,
        payment_id,
        *,
        payment_status: str,
        confirmation_status: str,
        order_payment_status: str,
        action: str,
        actor: str,
        notes: str,
        history_notes: str,
        evidence: dict | None = None,
        attachments: list | None = None,
        admin_notes: str | None = None,
        order_status: str | None = None,
    ) -> PaymentConfirmation:
        payment = self.store.get(Payment, payment_id)
        if not payment:
            raise NotFoundError("Payment not found", payment_id=str(payment_id))
        confirmation = self.store.find(PaymentConfirmation, payment_id=payment.id)
        if not confirmation:
            raise NotFoundError("Payment confirmation not found", payment_id=payment.document_id)

        if payment.status != PAYMENT_STATUS_PENDING:
            raise InvalidStateError(
                f"Payment is not pending (status: {payment.status})", payment_id=payment.document_id,
            )
        if confirmation.confirmation_status != CONFIRMATION_STATUS_PENDING:
            raise InvalidStateError(
                f"Payment confirmation is not pending (status: {confirmation.confirmation_status})",
                payment_id=payment.document_id,
            )

        payment_pk = payment.id
        confirmation_pk = confirmation.id
        order_pk = payment.order_id
        history = list(confirmation.confirmation_history or [])
        history.append(_history_entry(confirmation_status, action, history_notes, actor=actor))

        confirmation_update = {
            "confirmation_status": confirmation_status,
            "confirmation_notes": notes,
            "confirmation_history": history,
        }
        if evidence is not None:
            confirmation_update["confirmation_evidence"] = evidence
        if attachments is not None:
            confirmation_update["attachments"] = attachments
        if confirmation_status == CONFIRMATION_STATUS_CONFIRMED:
            confirmation_update["confirmed_by"] = actor
            confirmation_update["confirmed_at"] = utcnow()

        payment_update = {"status": payment_status}
        if admin_notes:
            payment_update["admin_notes"] = admin_notes

        order_update = {"payment_status": order_payment_status}
        order_expect = None
        if order_status is not None:
            order = payment.order
            check_status_transition(order.status, order_status)
            order_update["status"] = order_status
            order_update["status_changed_at"] = utcnow()
            order_expect = {"status": order.status}

        def _apply():
            self.store.update(
                PaymentConfirmation, confirmation_pk, confirmation_update,
                expect={"confirmation_status": CONFIRMATION_STATUS_PENDING},
            )
            self.store.update(Payment, payment_pk, payment_update, expect={"status": PAYMENT_STATUS_PENDING})
            self.store.update(Order, order_pk, order_update, expect=order_expect)

        self.store.transaction(_apply)
        current_app.logger.info("Payment %s moved to %s by %s", payment.document_id, payment_status, actor)
        return self.store.get(PaymentConfirmation, confirmation_pk)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_payment(self, payment_id) -> Payment:
        payment = self.store.get(Payment, payment_id)
        if not payment:
            raise NotFoundError("Payment not found", payment_id=str(payment_id))
        return payment

    def list_order_payments(self, order_id) -> list[Payment]:
        order = self.store.get(Order, order_id)
        if not order:
            raise NotFoundError("Order not found", order_id=str(order_id))
        return self.store.find_many(Payment, order_id=order.id)

    # =========================================================================
    # ADMIN CONFIRMATION QUEUE
    # =========================================================================

    def list_confirmations_by_status(self, status: str) -> list[PaymentConfirmation]:
        """Confirmations in one status, oldest first."""
        if status not in CONFIRMATION_STATUSES:
            raise ValidationError(f"Invalid confirmation status: {status}. Must be one of {list(CONFIRMATION_STATUSES)}")
        return self.store.find_many(PaymentConfirmation, confirmation_status=status)

    def get_pending_confirmations(self) -> list[PaymentConfirmation]:
        return self.list_confirmations_by_status(CONFIRMATION_STATUS_PENDING)

    def get_confirmation_stats(self) -> dict:
        """
        Payment counts per status plus the confirmed amount.

        Counted from Payment.status, since a cancelled payment leaves its
        confirmation rejected.
        """
        stats = {"total": self.store.count(Payment)}
        for status in (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_CONFIRMED, PAYMENT_STATUS_REJECTED, PAYMENT_STATUS_CANCELLED):
            stats[status] = self.store.count(Payment, status=status)

        confirmed = self.store.find_many(Payment, status=PAYMENT_STATUS_CONFIRMED)
        stats["confirmed_amount"] = to_money(sum((to_money(p.amount) for p in confirmed), to_money(0)))
        return stats

    def get_confirmation_history(self, payment_id) -> list[dict]:
        confirmation = self._get_confirmation(payment_id)
        return list(confirmation.confirmation_history or [])

    def update_confirmation_evidence(self, payment_id, evidence: dict, updated_by: str) -> PaymentConfirmation:
        """
        Replace the evidence on a pending confirmation.

        Raises:
            ValidationError: evidence not an object or updated_by missing
            NotFoundError: payment or confirmation missing
            InvalidStateError: confirmation already settled
        """
        if not isinstance(evidence, dict):
            raise ValidationError("evidence must be an object")
        if not updated_by:
            raise ValidationError("updated_by is required")

        confirmation = self._get_confirmation(payment_id)
        if confirmation.confirmation_status != CONFIRMATION_STATUS_PENDING:
            raise InvalidStateError(
                f"Evidence can only change while pending (status: {confirmation.confirmation_status})",
                payment_id=str(payment_id),
            )

        history = list(confirmation.confirmation_history or [])
        history.append(_history_entry(
            CONFIRMATION_STATUS_PENDING, "evidence_update", "Confirmation evidence updated", actor=updated_by,
        ))
        confirmation = self.store.update(PaymentConfirmation, confirmation.id, {
            "confirmation_evidence": evidence,
            "confirmation_history": history,
        }, expect={"confirmation_status": CONFIRMATION_STATUS_PENDING})
        current_app.logger.info("Evidence updated on confirmation %s by %s", confirmation.document_id, updated_by)
        return confirmation

    def bulk_confirm_payments(self, payment_ids: list, confirmed_by: str, notes: str | None = None) -> dict:
        """
        Confirm several payments, each in its own transaction.

        One failure does not stop the rest; it is reported under "errors".
        """
        if not isinstance(payment_ids, list) or not payment_ids:
            raise ValidationError("payment_ids must be a non-empty list")
        if not confirmed_by:
            raise ValidationError("confirmed_by is required")

        results = {"confirmed": [], "errors": []}
        for payment_id in payment_ids:
            try:
                confirmation = self.confirm_manual_payment(payment_id, ConfirmationData(
                    confirmed_by=confirmed_by,
                    confirmation_notes=notes or "Bulk confirmation",
                ))
                results["confirmed"].append(confirmation)
            except LifecycleError as e:
                current_app.logger.warning("Bulk confirmation skipped payment %s: %s", payment_id, e.message)
                results["errors"].append({
                    "payment_id": str(payment_id),
                    "error": e.message,
                    "kind": type(e).__name__,
                })

        current_app.logger.info(
            "Bulk confirmation by %s: %s confirmed, %s failed",
            confirmed_by, len(results["confirmed"]), len(results["errors"]),
        )
        return results

    def _get_confirmation(self, payment_id) -> PaymentConfirmation:
        payment = self.get_payment(payment_id)
        confirmation = self.store.find(PaymentConfirmation, payment_id=payment.id)
        if not confirmation:
            raise NotFoundError("Payment confirmation not found", payment_id=payment.document_id)
        return confirmation


def _history_entry(status: str, action: str, notes: str, actor: str | None = None) -> dict:
    entry = {
        "status": status,
        "timestamp": utcnow().isoformat() + "Z",
        "notes": notes,
        "action": action,
    }
    if actor:
        entry["actor"] = actor
    return entry
