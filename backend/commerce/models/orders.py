from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .common import new_document_id, money_str


class Order(db.Model):
    """
    Immutable snapshot of a completed purchase.

    WHY: Totals and addresses are copied from the cart and checkout session
    so later edits never rewrite history. After creation only status,
    payment_status and the status notes change.

    STATUS:
    - pending -> confirmed (payment confirmed) | cancelled
    - confirmed -> processing | cancelled | refunded
    - processing -> shipping | cancelled | refunded
    - shipping -> delivered
    - delivered -> returned | refunded
    - cancelled, refunded, returned are final

    PAYMENT STATUS:
    - pending: no confirmed payment yet
    - paid: a payment was confirmed
    - failed: the last payment was rejected or cancelled
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(36), nullable=False, unique=True, default=new_document_id)

    # Human-readable number (e.g., "ORD12345678A1B2")
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)
    checkout_session_id = db.Column(db.Integer, db.ForeignKey("checkout_sessions.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    shipping = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    shipping_address = db.Column(db.JSON, nullable=True)
    billing_address = db.Column(db.JSON, nullable=True)

    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    payment_method = db.Column(db.String(64), nullable=False, default="manual")
    payment_intent_id = db.Column(db.String(128), nullable=True)
    shipping_method = db.Column(db.String(64), nullable=True)
    order_source = db.Column(db.String(16), nullable=False, default="web")

    is_gift = db.Column(db.Boolean, nullable=False, default=False)
    gift_message = db.Column(db.Text, nullable=True)
    gift_wrapping = db.Column(db.Boolean, nullable=False, default=False)
    customer_notes = db.Column(db.Text, nullable=True)
    referral_code = db.Column(db.String(64), nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)
    status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    extra = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User")
    cart = db.relationship("Cart")
    checkout_session = db.relationship("CheckoutSession")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "document_id": self.document_id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "cart_id": self.cart_id,
            "checkout_session_id": self.checkout_session_id,
            "status": self.status,
            "subtotal": money_str(self.subtotal),
            "tax": money_str(self.tax),
            "shipping": money_str(self.shipping),
            "discount": money_str(self.discount),
            "total": money_str(self.total),
            "currency": self.currency,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "shipping_method": self.shipping_method,
            "order_source": self.order_source,
            "is_gift": self.is_gift,
            "gift_message": self.gift_message,
            "customer_notes": self.customer_notes,
            "referral_code": self.referral_code,
            "admin_notes": self.admin_notes,
            "status_changed_at": to_utc_z(self.status_changed_at),
            "metadata": self.extra,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Point-in-time copy of a cart item; written once, never updated."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(36), nullable=False, unique=True, default=new_document_id)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # Loose references; everything needed for history is copied below
    product_id = db.Column(db.Integer, nullable=True)
    variant_id = db.Column(db.Integer, nullable=True)

    sku = db.Column(db.String(64), nullable=True)
    product_name = db.Column(db.String(255), nullable=False)
    product_description = db.Column(db.Text, nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    line_price = db.Column(db.Numeric(12, 2), nullable=False)
    original_price = db.Column(db.Numeric(12, 2), nullable=True)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    weight = db.Column(db.Numeric(10, 3), nullable=True)
    dimensions = db.Column(db.JSON, nullable=True)
    is_digital = db.Column(db.Boolean, nullable=False, default=False)
    digital_delivery_status = db.Column(db.String(16), nullable=True)
    customizations = db.Column(db.JSON, nullable=True)
    gift_wrapping = db.Column(db.Boolean, nullable=False, default=False)
    return_eligible = db.Column(db.Boolean, nullable=False, default=True)
    warranty_info = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("items", lazy=True, order_by="OrderItem.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "sku": self.sku,
            "product_name": self.product_name,
            "product_description": self.product_description,
            "quantity": self.quantity,
            "unit_price": money_str(self.unit_price),
            "line_price": money_str(self.line_price),
            "is_digital": self.is_digital,
            "return_eligible": self.return_eligible,
        }
