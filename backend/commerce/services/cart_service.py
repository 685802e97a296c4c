# Overview: Service-layer operations for carts; guest/user ownership, items, expiry and migration.

"""
Cart Manager

WHY: A shopper's cart is the first record in the purchase lifecycle. It is
owned by a guest session or by a user (never both while active), expires
30 days after creation or renewal, and is merged into the user's cart when
a guest signs in or registers.

DESIGN PRINCIPLES:
- Create operations do not dedupe silently: a second live (active,
  unexpired) cart for the same identity is a ConflictError
- Lookups only see live carts and non-deleted items; an expired cart waits
  for the sweep and never blocks a new one
- Tax and shipping are priced only while a checkout session is active
- Item removal is a soft delete (deleted_at)
- Migration keeps the destination cart's unit price when lines merge
- Migration marks the guest cart converted, so repeating it is a no-op
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..errors import ConflictError, InvalidStateError, LifecycleError, NotFoundError, ValidationError
from ..models import Cart, CartItem, CheckoutSession, Guest, Product, ProductVariant
from ..models.checkout import SESSION_STATUS_ACTIVE
from ..models.common import to_money
from ..store import DocumentStore
from ..time_utils import days_from_now, utcnow
from .cart_calculation import calculate_shipping, calculate_tax


CART_STATUS_ACTIVE = "active"
CART_STATUS_CONVERTED = "converted"

DEFAULT_EXPIRATION_DAYS = 30


class CartService:
    def __init__(self, store: DocumentStore, *, expiration_days: int | None = None,
                 currency: str | None = None):
        self.store = store
        config = current_app.config
        self.expiration_days = expiration_days or config.get("CART_EXPIRATION_DAYS", DEFAULT_EXPIRATION_DAYS)
        self.currency = currency or config.get("DEFAULT_CURRENCY", "USD")

    # =========================================================================
    # CART CREATION
    # =========================================================================

    def create_guest_cart(self, session_id: str) -> Cart:
        """
        Create an active guest cart with zeroed totals.

        Raises:
            ValidationError: session_id missing
            ConflictError: a live cart already exists for the session
        """
        if not session_id:
            raise ValidationError("session_id is required")
        if self.store.count(Cart, session_id=session_id, user_id=None, status=CART_STATUS_ACTIVE,
                            expires_at__gt=utcnow()):
            raise ConflictError("Active cart already exists for session", session_id=session_id)

        cart = self.store.create(Cart, self._new_cart_data(session_id=session_id, user_id=None))
        current_app.logger.info("Created guest cart %s for session %s", cart.document_id, session_id)
        return cart

    def create_user_cart(self, user_id: int) -> Cart:
        """
        Create an active cart owned by a registered user.

        Raises:
            ValidationError: user_id missing
            ConflictError: the user already has a live cart
        """
        if not user_id:
            raise ValidationError("user_id is required")
        if self.store.count(Cart, user_id=user_id, status=CART_STATUS_ACTIVE, expires_at__gt=utcnow()):
            raise ConflictError("Active cart already exists for user", user_id=user_id)

        cart = self.store.create(Cart, self._new_cart_data(session_id=None, user_id=user_id))
        current_app.logger.info("Created user cart %s for user %s", cart.document_id, user_id)
        return cart

    def _new_cart_data(self, *, session_id, user_id) -> dict:
        zero = to_money(0)
        return {
            "session_id": session_id,
            "user_id": user_id,
            "subtotal": zero,
            "tax": zero,
            "shipping": zero,
            "discount_amount": zero,
            "total": zero,
            "currency": self.currency,
            "expires_at": days_from_now(self.expiration_days),
            "status": CART_STATUS_ACTIVE,
        }

    # =========================================================================
    # CART QUERIES
    # =========================================================================

    def get_cart_by_session_id(self, session_id: str) -> Cart | None:
        """Active, unexpired guest cart for the session (None when absent)."""
        if not session_id:
            return None
        return self.store.find(
            Cart,
            session_id=session_id,
            user_id=None,
            status=CART_STATUS_ACTIVE,
            expires_at__gt=utcnow(),
        )

    def get_cart_by_user_id(self, user_id: int) -> Cart | None:
        """Active, unexpired cart for the user (None when absent)."""
        if not user_id:
            return None
        return self.store.find(
            Cart,
            user_id=user_id,
            status=CART_STATUS_ACTIVE,
            expires_at__gt=utcnow(),
        )

    def get_or_create_cart(self, session_id: str | None = None, user_id: int | None = None) -> Cart:
        """User cart when authenticated, otherwise the guest session cart."""
        if user_id:
            return self.get_cart_by_user_id(user_id) or self.create_user_cart(user_id)
        if session_id:
            return self.get_cart_by_session_id(session_id) or self.create_guest_cart(session_id)
        raise ValidationError("session_id or user_id is required")

    def get_cart(self, cart_id) -> Cart:
        cart = self.store.get(Cart, cart_id)
        if not cart:
            raise NotFoundError("Cart not found", cart_id=str(cart_id))
        return cart

    def get_items(self, cart: Cart) -> list[CartItem]:
        return self.store.find_many(CartItem, cart_id=cart.id, deleted_at__isnull=True)

    # =========================================================================
    # ITEM MANAGEMENT
    # =========================================================================

    def add_item(
        self,
        cart_id,
        product_id,
        quantity: int,
        variant_id=None,
        notes: str | None = None,
        selected_options: dict | None = None,
    ) -> CartItem:
        """
        Add a product (or variant) to the cart, snapshotting its current price.

        An existing live line for the same (product, variant) has its quantity
        increased instead of a second line being written.
        """
        cart = self._get_mutable_cart(cart_id)
        quantity = _validate_quantity(quantity)

        product = self.store.get(Product, product_id)
        if not product or not product.is_active:
            raise NotFoundError("Product not found", product_id=str(product_id))

        variant = None
        if variant_id is not None:
            variant = self.store.get(ProductVariant, variant_id)
            if not variant or variant.product_id != product.id:
                raise NotFoundError("Variant not found", variant_id=str(variant_id))

        now = utcnow()
        existing = self.store.find(
            CartItem,
            cart_id=cart.id,
            product_id=product.id,
            variant_id=variant.id if variant else None,
            deleted_at__isnull=True,
        )
        if existing:
            new_quantity = existing.quantity + quantity
            item = self.store.update(CartItem, existing.id, {
                "quantity": new_quantity,
                "total": to_money(new_quantity * existing.price),
                "updated_at": now,
            })
        else:
            price = to_money(variant.price if variant else product.base_price)
            item = self.store.create(CartItem, {
                "cart_id": cart.id,
                "product_id": product.id,
                "variant_id": variant.id if variant else None,
                "quantity": quantity,
                "price": price,
                "original_price": price,
                "total": to_money(quantity * price),
                "notes": notes,
                "selected_options": selected_options,
                "added_at": now,
                "updated_at": now,
            })

        self._touch(cart)
        return item

    def update_item_quantity(self, cart_id, item_id, quantity: int) -> CartItem:
        cart = self._get_mutable_cart(cart_id)
        quantity = _validate_quantity(quantity)
        item = self._get_live_item(cart, item_id)

        item = self.store.update(CartItem, item.id, {
            "quantity": quantity,
            "total": to_money(quantity * item.price),
            "updated_at": utcnow(),
        })
        self._touch(cart)
        return item

    def remove_item(self, cart_id, item_id) -> None:
        cart = self._get_mutable_cart(cart_id)
        item = self._get_live_item(cart, item_id)
        self.store.update(CartItem, item.id, {"deleted_at": utcnow()})
        self._touch(cart)

    def clear_cart(self, cart_id) -> Cart:
        cart = self._get_mutable_cart(cart_id)
        now = utcnow()
        for item in self.get_items(cart):
            self.store.update(CartItem, item.id, {"deleted_at": now})
        return self.recalculate_totals(cart.id)

    def recalculate_totals(self, cart_id) -> Cart:
        """
        Recompute subtotal, tax, shipping and total from live items.

        Tax and shipping come from the cart's active checkout session once it
        has a shipping address; without one both are zero.

        total = max(0, subtotal + tax + shipping - discount)
        """
        cart = self.get_cart(cart_id)
        items = self.get_items(cart)
        subtotal = to_money(sum((item.total for item in items), to_money(0)))

        tax = shipping = to_money(0)
        session = self.store.find(CheckoutSession, cart_id=cart.id, status=SESSION_STATUS_ACTIVE)
        if session is not None and session.shipping_address:
            tax = calculate_tax(subtotal, session.shipping_address)
            shipping = calculate_shipping(items, subtotal, session.shipping_method)

        total = subtotal + tax + shipping - to_money(cart.discount_amount)
        return self.store.update(Cart, cart.id, {
            "subtotal": subtotal,
            "tax": tax,
            "shipping": shipping,
            "total": max(to_money(0), to_money(total)),
        })

    # =========================================================================
    # GUEST -> USER MIGRATION
    # =========================================================================

    def migrate_guest_to_user_cart(self, session_id: str, user_id: int) -> Cart | None:
        """
        Move a guest session's cart into the user's cart.

        Lines for a (product, variant) already in the user cart are merged:
        quantities are summed and the line total is recomputed with the
        user cart's unit price. Other lines are copied as-is.

        Returns:
            The refreshed user cart, or None when the session has no active
            guest cart (nothing to do, including a repeated call).
        """
        guest_cart = self.get_cart_by_session_id(session_id)
        if not guest_cart:
            current_app.logger.info("No guest cart found for session %s", session_id)
            return None

        guest_pk = guest_cart.id
        guest_document_id = guest_cart.document_id

        # All merges and the guest cart flip commit together
        def _merge():
            user_cart = self.get_cart_by_user_id(user_id) or self.create_user_cart(user_id)
            now = utcnow()

            for item in self.get_items(guest_cart):
                existing = self.store.find(
                    CartItem,
                    cart_id=user_cart.id,
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    deleted_at__isnull=True,
                )
                if existing:
                    merged_quantity = existing.quantity + item.quantity
                    self.store.update(CartItem, existing.id, {
                        "quantity": merged_quantity,
                        "total": to_money(merged_quantity * existing.price),
                        "updated_at": now,
                    })
                else:
                    self.store.create(CartItem, {
                        "cart_id": user_cart.id,
                        "product_id": item.product_id,
                        "variant_id": item.variant_id,
                        "quantity": item.quantity,
                        "price": to_money(item.price),
                        "original_price": item.original_price,
                        "total": to_money(item.total),
                        "notes": item.notes,
                        "selected_options": item.selected_options,
                        "customizations": item.customizations,
                        "gift_wrapping": item.gift_wrapping,
                        "added_at": now,
                        "updated_at": now,
                    })

            self.store.update(Cart, guest_pk, {"status": CART_STATUS_CONVERTED})
            self.recalculate_totals(user_cart.id)
            return user_cart.id

        user_cart_pk = self.store.transaction(_merge)

        current_app.logger.info(
            "Migrated guest cart %s (session %s) into user cart %s for user %s",
            guest_document_id, session_id, user_cart_pk, user_id,
        )
        return self.get_cart(user_cart_pk)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def update_cart_expiration(self, cart_id, expires_at: datetime) -> Cart:
        cart = self.get_cart(cart_id)
        cart = self.store.update(Cart, cart.id, {"expires_at": expires_at})
        current_app.logger.info("Updated cart expiration for %s", cart.document_id)
        return cart

    def cleanup_expired_carts(self) -> int:
        """
        Delete active carts whose expiry has passed, with their items,
        checkout sessions and guest links.

        Each cart is re-checked at delete time so a cart renewed or converted
        since the scan is left alone. A failure on one cart is logged and
        the sweep moves on.

        Returns:
            Number of carts deleted
        """
        now = utcnow()
        expired = [
            (cart.id, cart.document_id)
            for cart in self.store.find_many(Cart, status=CART_STATUS_ACTIVE, expires_at__lt=now)
        ]

        deleted = 0
        for cart_pk, document_id in expired:
            try:
                still_expired = self.store.find(
                    Cart, id=cart_pk, status=CART_STATUS_ACTIVE, expires_at__lt=now,
                )
                if not still_expired:
                    continue
                self._delete_cart_records(cart_pk)
                deleted += 1
            except LifecycleError:
                current_app.logger.warning("Skipping expired cart %s during cleanup", document_id, exc_info=True)

        current_app.logger.info("Cleaned up %s expired carts", deleted)
        return deleted

    def delete_cart(self, cart_id) -> None:
        cart = self.get_cart(cart_id)
        self._delete_cart_records(cart.id)
        current_app.logger.info("Deleted cart %s", cart.document_id)

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _delete_cart_records(self, cart_pk: int) -> None:
        """Remove a cart and everything that points at it in one transaction."""
        def _delete():
            for session in self.store.find_many(CheckoutSession, cart_id=cart_pk):
                self.store.delete(CheckoutSession, session.id)
            for guest in self.store.find_many(Guest, cart_id=cart_pk):
                self.store.update(Guest, guest.id, {"cart_id": None})
            for item in self.store.find_many(CartItem, cart_id=cart_pk):
                self.store.delete(CartItem, item.id)
            self.store.delete(Cart, cart_pk)

        self.store.transaction(_delete)

    def _get_mutable_cart(self, cart_id) -> Cart:
        cart = self.get_cart(cart_id)
        if cart.status != CART_STATUS_ACTIVE:
            raise InvalidStateError(
                f"Cart is {cart.status}; items can only change on an active cart",
                cart_id=cart.document_id,
            )
        return cart

    def _get_live_item(self, cart: Cart, item_id) -> CartItem:
        item = self.store.get(CartItem, item_id)
        if not item or item.cart_id != cart.id or item.deleted_at is not None:
            raise NotFoundError("Cart item not found", cart_id=cart.document_id, item_id=str(item_id))
        return item

    def _touch(self, cart: Cart) -> None:
        """Recalculate totals and renew expiry after an item change."""
        self.recalculate_totals(cart.id)
        self.store.update(Cart, cart.id, {"expires_at": days_from_now(self.expiration_days)})


def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer")
    if quantity <= 0:
        raise ValidationError("quantity must be greater than 0")
    return quantity
