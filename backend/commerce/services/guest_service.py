# Overview: Service-layer operations for guests; session-bound shoppers and their conversion to users.

"""
Guest Identity Bridge

WHY: Most shoppers start anonymous. A Guest ties a browser session to an
optional email and cart so the purchase lifecycle works without an
account, and conversion turns that guest into a registered User while
carrying the cart across.

DESIGN PRINCIPLES:
- One guest per session; registered emails cannot be reused by a guest
- A bound cart must be a guest cart of the same session
- Conversion checks everything (already converted, required fields,
  username and email uniqueness) before writing anything
- If the guest update or cart migration fails after the user exists, the
  guest is restored and the user removed before the error propagates
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import bcrypt
from flask import current_app

from ..errors import (
    AlreadyConvertedError,
    CartOwnershipError,
    ConflictError,
    DuplicateSessionError,
    EmailConflictError,
    LifecycleError,
    NotFoundError,
    ValidationError,
)
from ..models import Cart, Guest, User
from ..store import DocumentStore
from ..time_utils import utcnow
from .cart_service import CartService


GUEST_STATUS_ACTIVE = "active"
GUEST_STATUS_CONVERTED = "converted"

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6
REQUIRED_USER_FIELDS = ("username", "email", "password", "first_name", "last_name")
UPDATABLE_FIELDS = ("email", "metadata")


@dataclass
class ConversionResult:
    user: User
    cart: Cart | None
    guest: Guest

    def to_dict(self) -> dict:
        return {
            "user": self.user.to_dict(),
            "cart": self.cart.to_dict() if self.cart else None,
            "guest": self.guest.to_dict(),
        }


def hash_password(password: str, rounds: int | None = None) -> str:
    """Bcrypt hash, stored as a string."""
    salt = bcrypt.gensalt(rounds=rounds or current_app.config.get("BCRYPT_ROUNDS", 12))
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def _validate_email(email) -> str:
    if not isinstance(email, str) or not EMAIL_PATTERN.match(email.strip()):
        raise ValidationError("Invalid email format", email=email)
    return email.strip().lower()


class GuestService:
    def __init__(self, store: DocumentStore, cart_service: CartService | None = None):
        self.store = store
        self.cart_service = cart_service or CartService(store)

    # =========================================================================
    # GUEST CRUD
    # =========================================================================

    def create_guest(self, data: dict) -> Guest:
        """
        Register a guest for a browser session.

        Args:
            data: session_id (required), email, cart_id, metadata

        Raises:
            ValidationError: session_id missing or not a string, bad email,
                metadata not an object
            EmailConflictError: email belongs to a registered user
            DuplicateSessionError: a guest already exists for the session
            NotFoundError: cart_id does not exist
            CartOwnershipError: cart belongs to a user or another session
        """
        session_id = data.get("session_id")
        if not session_id:
            raise ValidationError("session_id is required")
        if not isinstance(session_id, str):
            raise ValidationError("session_id must be a string")

        email = data.get("email")
        if email is not None:
            email = _validate_email(email)
            if self.store.count(User, email=email):
                raise EmailConflictError("Email is already registered", email=email)

        if self.store.count(Guest, session_id=session_id):
            raise DuplicateSessionError("Guest already exists for session", session_id=session_id)

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")

        cart_pk = None
        if data.get("cart_id") is not None:
            cart = self.store.get(Cart, data["cart_id"])
            if not cart:
                raise NotFoundError("Cart not found", cart_id=str(data["cart_id"]))
            if cart.user_id is not None or cart.session_id != session_id:
                raise CartOwnershipError(
                    "Cart does not belong to this guest session",
                    cart_id=cart.document_id, session_id=session_id,
                )
            cart_pk = cart.id

        guest = self.store.create(Guest, {
            "session_id": session_id,
            "email": email,
            "cart_id": cart_pk,
            "status": GUEST_STATUS_ACTIVE,
            "extra": metadata,
        })
        current_app.logger.info("Created guest %s for session %s", guest.document_id, session_id)
        return guest

    def get_guest(self, session_id: str) -> Guest:
        guest = self.store.find(Guest, session_id=session_id)
        if not guest:
            raise NotFoundError("Guest not found", session_id=session_id)
        return guest

    def update_guest(self, session_id: str, data: dict) -> Guest:
        """Change email and/or metadata of an active guest."""
        guest = self.get_guest(session_id)
        if guest.status == GUEST_STATUS_CONVERTED:
            raise AlreadyConvertedError("Guest has already been converted", session_id=session_id)

        unknown = sorted(set(data) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")

        changes = {}
        if "email" in data:
            email = _validate_email(data["email"])
            if self.store.count(User, email=email):
                raise EmailConflictError("Email is already registered", email=email)
            changes["email"] = email
        if "metadata" in data:
            if not isinstance(data["metadata"], dict):
                raise ValidationError("metadata must be an object")
            changes["extra"] = {**(guest.extra or {}), **data["metadata"]}

        if not changes:
            return guest
        return self.store.update(Guest, guest.id, changes)

    def delete_guest(self, session_id: str) -> None:
        guest = self.get_guest(session_id)
        self.store.delete(Guest, guest.id)
        current_app.logger.info("Deleted guest %s", guest.document_id)

    # =========================================================================
    # CONVERSION
    # =========================================================================

    def convert_to_user(self, session_id: str, user_data: dict) -> ConversionResult:
        """
        Turn a guest into a registered user and carry the cart across.

        Args:
            session_id: guest's browser session
            user_data: username, email, password, first_name, last_name

        Returns:
            ConversionResult(user, cart, guest); cart is None when the
            session had no active guest cart

        Raises:
            NotFoundError: no guest for the session
            AlreadyConvertedError: guest was converted before
            ValidationError: missing or non-string fields, bad email, short password
            ConflictError: username taken
            EmailConflictError: email taken
        """
        guest = self.get_guest(session_id)
        if guest.status == GUEST_STATUS_CONVERTED:
            raise AlreadyConvertedError(
                "Guest has already been converted",
                session_id=session_id, user_id=guest.converted_to_user_id,
            )

        missing = [name for name in REQUIRED_USER_FIELDS if not user_data.get(name)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        not_text = [name for name in REQUIRED_USER_FIELDS if not isinstance(user_data[name], str)]
        if not_text:
            raise ValidationError(f"Fields must be strings: {', '.join(not_text)}")
        email = _validate_email(user_data["email"])
        if len(user_data["password"]) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

        username = user_data["username"].strip()
        if self.store.count(User, username=username):
            raise ConflictError("Username is already taken", username=username)
        if self.store.count(User, email=email):
            raise EmailConflictError("Email is already registered", email=email)

        guest_pk = guest.id
        user = self.store.create(User, {
            "username": username,
            "email": email,
            "password_hash": hash_password(user_data["password"]),
            "first_name": user_data["first_name"],
            "last_name": user_data["last_name"],
            "confirmed": True,
            "blocked": False,
        })
        user_pk = user.id

        try:
            self.store.update(Guest, guest_pk, {
                "status": GUEST_STATUS_CONVERTED,
                "converted_to_user_id": user_pk,
                "converted_at": utcnow(),
                "email": email,
            })
            cart = self.cart_service.migrate_guest_to_user_cart(session_id, user_pk)
        except Exception:
            current_app.logger.exception("Conversion of guest session %s failed; rolling back", session_id)
            self.rollback_conversion(guest_pk, user_pk)
            raise

        current_app.logger.info("Converted guest session %s to user %s", session_id, user.document_id)
        return ConversionResult(
            user=self.store.get(User, user_pk),
            cart=cart,
            guest=self.store.get(Guest, guest_pk),
        )

    def rollback_conversion(self, guest_id, user_id) -> bool:
        """
        Undo a half-finished conversion: guest back to active, user removed.

        Best effort; each step logs its own failure. Returns True when both
        steps succeeded.
        """
        ok = True
        try:
            self.store.update(Guest, guest_id, {
                "status": GUEST_STATUS_ACTIVE,
                "converted_to_user_id": None,
                "converted_at": None,
            })
        except LifecycleError:
            current_app.logger.exception("Failed to restore guest %s", guest_id)
            ok = False
        try:
            self.store.delete(User, user_id)
        except LifecycleError:
            current_app.logger.exception("Failed to delete user %s", user_id)
            ok = False
        return ok

    # =========================================================================
    # ANALYTICS
    # =========================================================================

    def get_analytics(self) -> dict:
        """
        Guest funnel counters.

        conversion_rate: converted / total, percent
        completion_rate: guests that provided an email / total, percent
        """
        total = self.store.count(Guest)
        active = self.store.count(Guest, status=GUEST_STATUS_ACTIVE)
        converted = self.store.count(Guest, status=GUEST_STATUS_CONVERTED)
        with_email = self.store.count(Guest, email__isnull=False)

        def _rate(part: int) -> float:
            return round(part / total * 100, 2) if total else 0.0

        return {
            "total_guests": total,
            "active_guests": active,
            "converted_guests": converted,
            "conversion_rate": _rate(converted),
            "completion_rate": _rate(with_email),
        }
