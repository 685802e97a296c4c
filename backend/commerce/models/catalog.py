from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .common import new_document_id, money_str


class Product(db.Model):
    """
    Catalog listing (read-only to the lifecycle).

    WHY: Cart items snapshot the listing price at add time; checkout compares
    that snapshot against base_price and copies name/description/weight into
    order items.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(36), nullable=False, unique=True, default=new_document_id)

    sku = db.Column(db.String(64), nullable=True, index=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    base_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    weight = db.Column(db.Numeric(10, 3), nullable=True)
    dimensions = db.Column(db.JSON, nullable=True)
    is_digital = db.Column(db.Boolean, nullable=False, default=False)
    return_eligible = db.Column(db.Boolean, nullable=False, default=True)
    warranty_info = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "sku": self.sku,
            "title": self.title,
            "description": self.description,
            "base_price": money_str(self.base_price),
            "is_digital": self.is_digital,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class ProductVariant(db.Model):
    """Sellable variant of a product; the only level inventory is tracked at."""
    __tablename__ = "product_variants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(36), nullable=False, unique=True, default=new_document_id)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=True)
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    inventory = db.Column(db.Integer, nullable=False, default=0)
    weight = db.Column(db.Numeric(10, 3), nullable=True)
    dimensions = db.Column(db.JSON, nullable=True)

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "price": money_str(self.price),
            "inventory": self.inventory,
        }
