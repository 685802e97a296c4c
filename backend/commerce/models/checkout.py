from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .common import new_document_id


SESSION_STATUS_ACTIVE = "active"
SESSION_STATUS_COMPLETED = "completed"
SESSION_STATUS_ABANDONED = "abandoned"


class CheckoutSession(db.Model):
    """
    Address / shipping / payment selections for one checkout attempt.

    At most one active session per cart. Moves to completed exactly once,
    when an order is created from it; abandoned when the shopper gives up.
    While active, its shipping address and method price the cart's tax and
    shipping.
    """
    __tablename__ = "checkout_sessions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(36), nullable=False, unique=True, default=new_document_id)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)
    shipping_address = db.Column(db.JSON, nullable=True)
    billing_address = db.Column(db.JSON, nullable=True)
    payment_method = db.Column(db.String(64), nullable=True)
    shipping_method = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    cart = db.relationship("Cart")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "cart_id": self.cart_id,
            "status": self.status,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "payment_method": self.payment_method,
            "shipping_method": self.shipping_method,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
        }
