from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .common import new_document_id, money_str


class PaymentMethod(db.Model):
    """Configured way to pay (bank transfer, cash on delivery, ...)."""
    __tablename__ = "payment_methods"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(36), nullable=False, unique=True, default=new_document_id)
    code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
        }


class Payment(db.Model):
    """
    One attempt to settle an order's balance.

    STATUS: pending -> confirmed | rejected | cancelled (terminal).
    Always paired 1:1 with a PaymentConfirmation; both are pending together
    or terminal together.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(36), nullable=False, unique=True, default=new_document_id)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    # Left unset (not written) for guest payments
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    payment_method_id = db.Column(db.Integer, db.ForeignKey("payment_methods.id"), nullable=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    payment_type = db.Column(db.String(16), nullable=False, default="manual")
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_notes = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("payments", lazy=True))
    user = db.relationship("User")
    payment_method = db.relationship("PaymentMethod")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def confirmation(self):
        return self.confirmations[0] if self.confirmations else None

    def to_dict(self) -> dict:
        confirmation = self.confirmation
        return {
            "id": self.id,
            "document_id": self.document_id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "payment_method": self.payment_method.to_dict() if self.payment_method else None,
            "amount": money_str(self.amount),
            "currency": self.currency,
            "payment_type": self.payment_type,
            "status": self.status,
            "payment_notes": self.payment_notes,
            "admin_notes": self.admin_notes,
            "created_at": to_utc_z(self.created_at),
            "confirmation": confirmation.to_dict() if confirmation else None,
        }


class PaymentConfirmation(db.Model):
    """
    Verification record for a payment (admin dashboard or API callback).

    STATUS: pending -> confirmed | rejected. Only a pending confirmation may
    change; a rejected payment is never resurrected.
    """
    __tablename__ = "payment_confirmations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(36), nullable=False, unique=True, default=new_document_id)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, unique=True)

    confirmation_type = db.Column(db.String(16), nullable=False)
    confirmation_method = db.Column(db.String(32), nullable=False, default="admin_dashboard")
    confirmation_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    confirmed_by = db.Column(db.String(255), nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmation_notes = db.Column(db.Text, nullable=True)
    confirmation_evidence = db.Column(db.JSON, nullable=True)
    confirmation_history = db.Column(db.JSON, nullable=True)
    attachments = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    payment = db.relationship("Payment", backref=db.backref("confirmations", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "payment_id": self.payment_id,
            "confirmation_type": self.confirmation_type,
            "confirmation_method": self.confirmation_method,
            "confirmation_status": self.confirmation_status,
            "confirmed_by": self.confirmed_by,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "confirmation_notes": self.confirmation_notes,
            "confirmation_evidence": self.confirmation_evidence,
            "confirmation_history": self.confirmation_history,
            "attachments": self.attachments,
        }
