from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .common import new_document_id, money_str


class Cart(db.Model):
    """
    Shopping cart owned by exactly one guest session or one user.

    STATUS:
    - active: mutable; exactly one of session_id / user_id is set
    - converted: turned into an order or merged into a user cart;
      session_id is kept for audit, no further item changes

    Expires 30 days after creation or last renewal.
    """
    __tablename__ = "carts"
    __table_args__ = (
        db.Index("ix_carts_session_status", "session_id", "status"),
        db.Index("ix_carts_user_status", "user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(36), nullable=False, unique=True, default=new_document_id)

    session_id = db.Column(db.String(128), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    shipping = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    status = db.Column(db.String(16), nullable=False, default="active", index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def live_items(self) -> list:
        return [item for item in self.items if item.deleted_at is None]

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "document_id": self.document_id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "subtotal": money_str(self.subtotal),
            "tax": money_str(self.tax),
            "shipping": money_str(self.shipping),
            "discount_amount": money_str(self.discount_amount),
            "total": money_str(self.total),
            "currency": self.currency,
            "status": self.status,
            "expires_at": to_utc_z(self.expires_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.live_items]
        return data


class CartItem(db.Model):
    """Line in a cart; price is the unit price snapshot taken at add time."""
    __tablename__ = "cart_items"
    __table_args__ = (
        db.Index("ix_cart_items_cart_product", "cart_id", "product_id", "variant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(36), nullable=False, unique=True, default=new_document_id)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    total = db.Column(db.Numeric(12, 2), nullable=False)
    original_price = db.Column(db.Numeric(12, 2), nullable=True)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    selected_options = db.Column(db.JSON, nullable=True)
    customizations = db.Column(db.JSON, nullable=True)
    gift_wrapping = db.Column(db.Boolean, nullable=False, default=False)

    added_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cart = db.relationship("Cart", backref=db.backref("items", lazy=True, order_by="CartItem.id"))
    product = db.relationship("Product")
    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "cart_id": self.cart_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "price": money_str(self.price),
            "total": money_str(self.total),
            "notes": self.notes,
            "selected_options": self.selected_options,
            "added_at": to_utc_z(self.added_at),
            "updated_at": to_utc_z(self.updated_at),
        }
