# Overview: Service-layer operations for checkout sessions (address, shipping and payment selections).

from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from ..models import Cart, CartItem, CheckoutSession
from ..models.checkout import SESSION_STATUS_ABANDONED, SESSION_STATUS_ACTIVE
from ..store import DocumentStore
from ..time_utils import utcnow
from .cart_calculation import SHIPPING_RATES
from .cart_service import CART_STATUS_ACTIVE, CartService


UPDATABLE_FIELDS = {"shipping_address", "billing_address", "payment_method", "shipping_method"}
# Changing any of these reprices the cart
PRICING_FIELDS = {"shipping_address", "shipping_method"}


class CheckoutService:
    def __init__(self, store: DocumentStore, cart_service: CartService | None = None):
        self.store = store
        self.cart_service = cart_service or CartService(store)

    def start_checkout(
        self,
        cart_id,
        shipping_address: dict,
        billing_address: dict | None = None,
        payment_method: str = "manual",
        shipping_method: str | None = None,
    ) -> CheckoutSession:
        """
        Open the single active checkout session for a cart.

        Billing address defaults to the shipping address. The cart's tax and
        shipping are recalculated from the new session.

        Raises:
            NotFoundError: cart missing
            InvalidStateError: cart not active
            ValidationError: cart empty, shipping address missing, or unknown
                shipping method
            ConflictError: cart already has an active checkout session
        """
        cart = self.store.get(Cart, cart_id)
        if not cart:
            raise NotFoundError("Cart not found", cart_id=str(cart_id))
        if cart.status != CART_STATUS_ACTIVE:
            raise InvalidStateError("Checkout requires an active cart", cart_id=cart.document_id)
        if not self.store.count(CartItem, cart_id=cart.id, deleted_at__isnull=True):
            raise ValidationError("Cart is empty", cart_id=cart.document_id)
        if not shipping_address or not isinstance(shipping_address, dict):
            raise ValidationError("shipping_address is required")
        _validate_shipping_method(shipping_method)
        if self.store.count(CheckoutSession, cart_id=cart.id, status=SESSION_STATUS_ACTIVE):
            raise ConflictError("Cart already has an active checkout session", cart_id=cart.document_id)

        cart_pk = cart.id

        def _start():
            session = self.store.create(CheckoutSession, {
                "cart_id": cart_pk,
                "status": SESSION_STATUS_ACTIVE,
                "shipping_address": shipping_address,
                "billing_address": billing_address or shipping_address,
                "payment_method": payment_method or "manual",
                "shipping_method": shipping_method,
            })
            self.cart_service.recalculate_totals(cart_pk)
            return session.id

        session = self.get_checkout_session(self.store.transaction(_start))
        current_app.logger.info("Started checkout session %s for cart %s", session.document_id, cart.document_id)
        return session

    def get_checkout_session(self, session_id) -> CheckoutSession:
        session = self.store.get(CheckoutSession, session_id)
        if not session:
            raise NotFoundError("Checkout session not found", checkout_session_id=str(session_id))
        return session

    def update_checkout_session(self, session_id, data: dict) -> CheckoutSession:
        session = self.get_checkout_session(session_id)
        if session.status != SESSION_STATUS_ACTIVE:
            raise InvalidStateError("Checkout session is not active", checkout_session_id=session.document_id)

        unknown = set(data) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields not updatable: {', '.join(sorted(unknown))}")
        if "shipping_address" in data and (not data["shipping_address"] or not isinstance(data["shipping_address"], dict)):
            raise ValidationError("shipping_address is required")
        if "shipping_method" in data:
            _validate_shipping_method(data["shipping_method"])

        session_pk = session.id
        cart_pk = session.cart_id

        def _update():
            self.store.update(CheckoutSession, session_pk, data)
            if PRICING_FIELDS & set(data):
                self.cart_service.recalculate_totals(cart_pk)

        self.store.transaction(_update)
        return self.get_checkout_session(session_pk)

    def abandon_checkout(self, session_id) -> CheckoutSession:
        """Close an active session; the cart drops back to item-only totals."""
        session = self.get_checkout_session(session_id)
        if session.status != SESSION_STATUS_ACTIVE:
            raise InvalidStateError("Checkout session is not active", checkout_session_id=session.document_id)

        session_pk = session.id
        cart_pk = session.cart_id

        def _abandon():
            self.store.update(CheckoutSession, session_pk, {
                "status": SESSION_STATUS_ABANDONED,
                "completed_at": utcnow(),
            }, expect={"status": SESSION_STATUS_ACTIVE})
            cart = self.store.get(Cart, cart_pk)
            if cart is not None and cart.status == CART_STATUS_ACTIVE:
                self.cart_service.recalculate_totals(cart_pk)

        self.store.transaction(_abandon)
        session = self.get_checkout_session(session_pk)
        current_app.logger.info("Abandoned checkout session %s", session.document_id)
        return session


def _validate_shipping_method(shipping_method) -> None:
    if shipping_method is not None and (not isinstance(shipping_method, str) or shipping_method not in SHIPPING_RATES):
        raise ValidationError(
            f"Invalid shipping method: {shipping_method}. Must be one of {sorted(SHIPPING_RATES)}"
        )
