from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .common import new_document_id


class User(db.Model):
    """
    Registered customer account.

    WHY: Carts, orders and payments can be owned by a user instead of a guest
    session. Username and email are globally unique; guest creation and
    guest conversion check against them.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.String(36), nullable=False, unique=True, default=new_document_id)

    username = db.Column(db.String(64), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    confirmed = db.Column(db.Boolean, nullable=False, default=False)
    blocked = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "username": self.username,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "confirmed": self.confirmed,
            "blocked": self.blocked,
            "created_at": to_utc_z(self.created_at),
        }
