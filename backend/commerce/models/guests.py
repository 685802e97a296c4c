from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .common import new_document_id


class Guest(db.Model):
    """
    Anonymous shopper bound to a browser session.

    The bound cart (if any) carries the same session_id and no user.
    Becomes converted, pointing at the new user, when the shopper registers.
    """
    __tablename__ = "guests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(36), nullable=False, unique=True, default=new_document_id)

    session_id = db.Column(db.String(128), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active", index=True)
    converted_to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    converted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    extra = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    cart = db.relationship("Cart")
    converted_to_user = db.relationship("User")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "session_id": self.session_id,
            "email": self.email,
            "cart_id": self.cart_id,
            "status": self.status,
            "converted_to_user_id": self.converted_to_user_id,
            "converted_at": to_utc_z(self.converted_at),
            "metadata": self.extra,
            "created_at": to_utc_z(self.created_at),
        }
