# Overview: Service-layer operations for order creation; converts a cart plus checkout session into an order.

"""
Checkout Orchestrator

WHY: Turning a cart into an order touches four records (order, order items,
cart, checkout session) and the store only offers per-call commits here, so
the sequence is validated up front and undone explicitly if it breaks half
way.

FLOW:
1. Validation gate (no writes): cart and session exist, the cart belongs
   to the calling user or guest session, the cart has items and
   a positive total, session is active, variant stock covers quantities.
   Price drift beyond tolerance is reported as a warning only.
2. Draw an order number and insert the order; a number taken in the
   meantime is redrawn, within the retry budget.
3. Create one order item per cart item (copied values).
4. Mark the cart converted and the checkout session completed.
5. Any failure after the order row exists runs rollback_order_creation()
   and re-raises.

After creation the order moves through the lifecycle in order_status.py;
payment confirmation takes it from pending to confirmed.

KNOWN GAPS:
- Items without a variant are not stock-checked; no product-level stock
  policy exists yet. They are listed in OrderValidation.unchecked_item_ids.
- Two concurrent requests against one cart are not mutually excluded here.
"""

from __future__ import annotations

import random
import string
from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app

from ..errors import (
    CartOwnershipError,
    ConflictError,
    InvalidStateError,
    InventoryError,
    LifecycleError,
    NotFoundError,
    OrderValidationError,
    PriceDriftWarning,
    ValidationError,
)
from ..models import Cart, CartItem, CheckoutSession, Order, OrderItem, Payment, Product, ProductVariant
from ..models.checkout import SESSION_STATUS_ACTIVE, SESSION_STATUS_COMPLETED
from ..models.common import to_money
from ..store import DocumentStore
from ..time_utils import epoch_millis, utcnow
from .cart_service import CART_STATUS_ACTIVE, CART_STATUS_CONVERTED
from .order_status import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_PENDING,
    check_status_transition,
)
from .payment_service import ORDER_PAYMENT_PAID, PAYMENT_STATUS_PENDING, PaymentService


ORDER_NUMBER_PREFIX = "ORD"
BASE36_ALPHABET = string.digits + string.ascii_uppercase

VALID_SOURCES = ("web", "mobile", "admin", "api")

DEFAULT_PRICE_DRIFT_TOLERANCE = Decimal("0.05")
DEFAULT_ORDER_NUMBER_ATTEMPTS = 10


# =============================================================================
# REQUEST / RESULT TYPES
# =============================================================================

@dataclass
class GiftOptions:
    is_gift: bool = False
    gift_message: str | None = None
    gift_wrapping: bool = False


@dataclass
class OrderCreationRequest:
    cart_id: str
    checkout_session_id: str
    source: str
    payment_intent_id: str | None = None
    customer_notes: str | None = None
    gift_options: GiftOptions | None = None
    promo_code: str | None = None
    metadata: dict | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "OrderCreationRequest":
        gift = data.get("gift_options")
        if gift is not None and not isinstance(gift, dict):
            raise ValidationError("gift_options must be an object")
        metadata = data.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")
        return cls(
            cart_id=data.get("cart_id"),
            checkout_session_id=data.get("checkout_session_id"),
            source=data.get("source"),
            payment_intent_id=data.get("payment_intent_id"),
            customer_notes=data.get("customer_notes"),
            gift_options=GiftOptions(
                is_gift=bool(gift.get("is_gift", False)),
                gift_message=gift.get("gift_message"),
                gift_wrapping=bool(gift.get("gift_wrapping", False)),
            ) if gift else None,
            promo_code=data.get("promo_code"),
            metadata=metadata,
        )


@dataclass
class OrderValidation:
    # (error class, message) pairs in the order they were found
    failures: list[tuple[type, str]] = field(default_factory=list)
    warnings: list[PriceDriftWarning] = field(default_factory=list)
    out_of_stock_item_ids: list[str] = field(default_factory=list)
    unchecked_item_ids: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.failures

    @property
    def errors(self) -> list[str]:
        return [message for _, message in self.failures]

    @property
    def inventory_check(self) -> bool:
        return not self.out_of_stock_item_ids

    @property
    def price_validation(self) -> bool:
        return not self.warnings

    def fail(self, kind: type, message: str) -> None:
        self.failures.append((kind, message))


@dataclass
class OrderCreationResult:
    order: Order
    items: list[OrderItem]
    warnings: list[PriceDriftWarning]

    def to_dict(self) -> dict:
        data = self.order.to_dict()
        data["items"] = [item.to_dict() for item in self.items]
        return {"order": data, "warnings": [w.to_dict() for w in self.warnings]}


# Most specific failure wins when several were collected
_FAILURE_PRECEDENCE = (NotFoundError, CartOwnershipError, InvalidStateError, InventoryError)


def _order_number_suffix() -> str:
    return "".join(random.choices(BASE36_ALPHABET, k=4))


class OrderCreationService:
    def __init__(self, store: DocumentStore, *, price_drift_tolerance=None,
                 order_number_attempts: int | None = None):
        self.store = store
        config = current_app.config
        tolerance = price_drift_tolerance
        if tolerance is None:
            tolerance = config.get("PRICE_DRIFT_TOLERANCE", DEFAULT_PRICE_DRIFT_TOLERANCE)
        self.price_drift_tolerance = Decimal(str(tolerance))
        self.order_number_attempts = order_number_attempts or config.get(
            "ORDER_NUMBER_MAX_ATTEMPTS", DEFAULT_ORDER_NUMBER_ATTEMPTS
        )

    # =========================================================================
    # ORDER CREATION
    # =========================================================================

    def create_order_from_cart(self, request: OrderCreationRequest, user_id: int | None = None,
                               session_id: str | None = None) -> OrderCreationResult:
        """
        Create an order from a cart and its checkout session.

        Args:
            request: cart / checkout session ids plus order options
            user_id: authenticated user placing the order (None for guests)
            session_id: browser session placing the order

        Returns:
            OrderCreationResult with the order, its items and any price-drift
            warnings

        Raises:
            NotFoundError: cart or checkout session missing
            CartOwnershipError: cart belongs to another user or session, or
                the checkout session belongs to another cart
            InvalidStateError: cart not active or session not active
            InventoryError: a variant does not have enough stock
            OrderValidationError: malformed request, empty cart, zero total
            ConflictError: no free order number after the retry budget
        """
        validation = self.validate_order_request(request, user_id=user_id, session_id=session_id)
        if not validation.is_valid:
            current_app.logger.warning(
                "Order validation failed for cart %s: %s", request.cart_id, "; ".join(validation.errors)
            )
            raise self._failure_for(validation, request)

        for warning in validation.warnings:
            current_app.logger.warning(
                "Price drift on cart item %s: %s -> %s",
                warning.cart_item_id, warning.snapshot_price, warning.current_price,
            )

        cart = self.store.get(Cart, request.cart_id)
        checkout_session = self.store.get(CheckoutSession, request.checkout_session_id)
        cart_items = self.store.find_many(CartItem, cart_id=cart.id, deleted_at__isnull=True)
        cart_pk = cart.id
        cart_document_id = cart.document_id
        session_pk = checkout_session.id

        order = self._insert_order(request, cart, checkout_session, user_id)
        order_pk = order.id
        order_number = order.order_number

        try:
            items = self.create_order_items(order_pk, cart_items)
            self.store.update(Cart, cart_pk, {"status": CART_STATUS_CONVERTED})
            self.store.update(CheckoutSession, session_pk, {
                "status": SESSION_STATUS_COMPLETED,
                "completed_at": utcnow(),
            })
        except Exception:
            current_app.logger.exception("Order %s creation failed; rolling back", order_number)
            self.rollback_order_creation(order_pk, cart_pk, session_pk)
            raise

        order = self.store.get(Order, order_pk)
        current_app.logger.info(
            "Created order %s from cart %s (%s items)", order.order_number, cart_document_id, len(items)
        )
        return OrderCreationResult(order=order, items=items, warnings=validation.warnings)

    def _insert_order(self, request, cart, checkout_session, user_id) -> Order:
        """
        Write the order row under a freshly drawn number.

        The unique index on order_number is the final arbiter: a number
        taken by another order between the draw and the insert is redrawn.
        """
        for attempt in range(self.order_number_attempts):
            order_number = self.generate_order_number()
            try:
                return self.store.create(
                    Order, self._order_data(order_number, request, cart, checkout_session, user_id)
                )
            except ConflictError:
                if not self.store.count(Order, order_number=order_number):
                    raise
                current_app.logger.info(
                    "Order number %s claimed concurrently (attempt %s); retrying", order_number, attempt + 1
                )
        raise ConflictError("Could not generate a unique order number")

    def _order_data(self, order_number, request, cart, checkout_session, user_id) -> dict:
        gift = request.gift_options or GiftOptions()
        return {
            "order_number": order_number,
            "user_id": user_id if user_id is not None else cart.user_id,
            "cart_id": cart.id,
            "checkout_session_id": checkout_session.id,
            "status": ORDER_STATUS_PENDING,
            "subtotal": to_money(cart.subtotal),
            "tax": to_money(cart.tax),
            "shipping": to_money(cart.shipping),
            "discount": to_money(cart.discount_amount or 0),
            "total": to_money(cart.total),
            "currency": cart.currency,
            # Copied, not referenced, so later address edits don't rewrite history
            "shipping_address": dict(checkout_session.shipping_address or {}),
            "billing_address": dict(checkout_session.billing_address or {}),
            "payment_status": "pending",
            "payment_method": checkout_session.payment_method or "manual",
            "payment_intent_id": request.payment_intent_id,
            "shipping_method": checkout_session.shipping_method,
            "order_source": request.source,
            "customer_notes": request.customer_notes,
            "is_gift": gift.is_gift,
            "gift_message": gift.gift_message,
            "gift_wrapping": gift.gift_wrapping,
            "referral_code": request.promo_code,
            "extra": request.metadata,
        }

    def generate_order_number(self) -> str:
        """
        ORD + last 8 digits of epoch millis + 4 uppercase base36 characters.

        A number already taken triggers another draw.
        """
        for attempt in range(self.order_number_attempts):
            order_number = f"{ORDER_NUMBER_PREFIX}{str(epoch_millis())[-8:]}{_order_number_suffix()}"
            if not self.store.count(Order, order_number=order_number):
                return order_number
            current_app.logger.info("Order number %s taken (attempt %s); retrying", order_number, attempt + 1)
        raise ConflictError("Could not generate a unique order number")

    def create_order_items(self, order_id: int, cart_items: list[CartItem]) -> list[OrderItem]:
        """Write one order item per cart item, copying catalog values as of now."""
        created = []
        for cart_item in cart_items:
            product = cart_item.product
            variant = cart_item.variant
            created.append(self.store.create(OrderItem, {
                "order_id": order_id,
                "product_id": cart_item.product_id,
                "variant_id": cart_item.variant_id,
                "sku": (variant.sku if variant and variant.sku else None) or product.sku,
                "product_name": product.title,
                "product_description": product.description,
                "quantity": cart_item.quantity,
                "unit_price": to_money(cart_item.price),
                "line_price": to_money(cart_item.total),
                "original_price": cart_item.original_price,
                "discount_amount": to_money(cart_item.discount_amount or 0),
                "tax_amount": to_money(cart_item.tax_amount or 0),
                "weight": (variant.weight if variant and variant.weight is not None else product.weight),
                "dimensions": (variant.dimensions if variant and variant.dimensions else product.dimensions),
                "is_digital": bool(product.is_digital),
                "digital_delivery_status": "pending" if product.is_digital else None,
                "customizations": cart_item.customizations,
                "gift_wrapping": bool(cart_item.gift_wrapping),
                "return_eligible": product.return_eligible is not False,
                "warranty_info": product.warranty_info,
            }))
        return created

    # =========================================================================
    # ROLLBACK
    # =========================================================================

    def rollback_order_creation(self, order_id, cart_id, checkout_session_id) -> bool:
        """
        Undo a partially created order.

        Deletes the order's items and the order, then puts the cart and the
        checkout session back to active. Each step is attempted even if an
        earlier one failed; safe to call again for the same order.

        Returns:
            True when every step succeeded
        """
        ok = True

        order = self.store.get(Order, order_id)
        if order is not None:
            order_pk = order.id
            for item in self.store.find_many(OrderItem, order_id=order_pk):
                ok = self._rollback_step(
                    "delete order item", lambda pk=item.id: self.store.delete(OrderItem, pk)
                ) and ok
            ok = self._rollback_step("delete order", lambda: self.store.delete(Order, order_pk)) and ok

        ok = self._rollback_step(
            "restore cart", lambda: self.store.update(Cart, cart_id, {"status": CART_STATUS_ACTIVE})
        ) and ok
        ok = self._rollback_step(
            "restore checkout session",
            lambda: self.store.update(CheckoutSession, checkout_session_id, {
                "status": SESSION_STATUS_ACTIVE,
                "completed_at": None,
            }),
        ) and ok

        if ok:
            current_app.logger.info("Order creation rollback completed for order %s", order_id)
        else:
            current_app.logger.error("Order creation rollback incomplete for order %s", order_id)
        return ok

    @staticmethod
    def _rollback_step(name: str, step) -> bool:
        try:
            step()
            return True
        except LifecycleError:
            current_app.logger.exception("Rollback step failed: %s", name)
            return False

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def validate_order_request(self, request: OrderCreationRequest, user_id: int | None = None,
                               session_id: str | None = None) -> OrderValidation:
        """
        Run every pre-mutation check and collect the results.

        A user cart may only be ordered by its user; a guest cart only from
        the session that owns it.
        """
        validation = OrderValidation()

        if not request.cart_id:
            validation.fail(OrderValidationError, "Cart ID is required")
        if not request.checkout_session_id:
            validation.fail(OrderValidationError, "Checkout session ID is required")
        if not request.source:
            validation.fail(OrderValidationError, "Order source is required")
        elif request.source not in VALID_SOURCES:
            validation.fail(OrderValidationError, f"Order source must be one of {', '.join(VALID_SOURCES)}")

        cart = self.store.get(Cart, request.cart_id) if request.cart_id else None
        cart_items = []
        if request.cart_id and not cart:
            validation.fail(NotFoundError, "Cart not found")
        elif cart:
            cart_items = self.store.find_many(CartItem, cart_id=cart.id, deleted_at__isnull=True)
            if cart.status != CART_STATUS_ACTIVE:
                validation.fail(InvalidStateError, "Cart is not active")
            if cart.user_id is not None:
                if user_id is None or cart.user_id != user_id:
                    validation.fail(CartOwnershipError, "Cart belongs to another user")
            elif not session_id or cart.session_id != session_id:
                validation.fail(CartOwnershipError, "Cart belongs to another session")
            if not cart_items:
                validation.fail(OrderValidationError, "Cart is empty")
            if to_money(cart.total) <= 0:
                validation.fail(OrderValidationError, "Cart total must be greater than 0")

        if request.checkout_session_id:
            checkout_session = self.store.get(CheckoutSession, request.checkout_session_id)
            if not checkout_session:
                validation.fail(NotFoundError, "Checkout session not found")
            else:
                if checkout_session.status != SESSION_STATUS_ACTIVE:
                    validation.fail(InvalidStateError, "Checkout session is not active")
                if cart and checkout_session.cart_id != cart.id:
                    validation.fail(CartOwnershipError, "Checkout session belongs to another cart")

        if cart_items:
            self.validate_inventory(cart_items, validation)
            self.validate_prices(cart_items, validation)

        return validation

    def validate_inventory(self, cart_items: list[CartItem], validation: OrderValidation) -> bool:
        """
        Variant stock must cover each variant-bound line.

        Lines without a variant are recorded as unchecked.
        """
        for item in cart_items:
            if item.variant_id is None:
                validation.unchecked_item_ids.append(item.document_id)
                continue
            variant = self.store.get(ProductVariant, item.variant_id)
            if not variant or variant.inventory < item.quantity:
                validation.out_of_stock_item_ids.append(item.document_id)

        if validation.out_of_stock_item_ids:
            validation.fail(InventoryError, "Some items are out of stock")
            return False
        return True

    def validate_prices(self, cart_items: list[CartItem], validation: OrderValidation) -> bool:
        """Compare each snapshot price with the current catalog price; warn past tolerance."""
        for item in cart_items:
            if item.variant_id is not None:
                variant = self.store.get(ProductVariant, item.variant_id)
                current = to_money(variant.price if variant else 0)
            else:
                product = self.store.get(Product, item.product_id)
                current = to_money(product.base_price if product else 0)

            snapshot = to_money(item.price)
            if snapshot == 0:
                drift = Decimal(0) if current == 0 else Decimal("Infinity")
            else:
                drift = abs(current - snapshot) / snapshot

            if drift > self.price_drift_tolerance:
                validation.warnings.append(PriceDriftWarning(
                    cart_item_id=item.document_id,
                    snapshot_price=snapshot,
                    current_price=current,
                    drift=drift,
                ))
        return not validation.warnings

    @staticmethod
    def _failure_for(validation: OrderValidation, request: OrderCreationRequest) -> LifecycleError:
        context = {
            "cart_id": request.cart_id,
            "checkout_session_id": request.checkout_session_id,
        }
        for kind in _FAILURE_PRECEDENCE:
            for failure_kind, message in validation.failures:
                if failure_kind is kind:
                    if kind is InventoryError:
                        context["item_ids"] = validation.out_of_stock_item_ids
                    return kind(message, errors=validation.errors, **context)
        return OrderValidationError(validation.errors, **context)

    # =========================================================================
    # STATUS CHANGES
    # =========================================================================

    def update_order_status(self, order_id, new_status: str, changed_by: str, notes: str | None = None) -> Order:
        """
        Move an order along its lifecycle.

        Confirming requires a confirmed payment; cancelling goes through
        cancel_order() so pending payments are closed too.

        Raises:
            ValidationError: changed_by or new_status missing
            NotFoundError: order missing
            InvalidStateError: transition not allowed, or confirming an unpaid order
        """
        if not changed_by or not new_status:
            raise ValidationError("new_status and changed_by are required")
        if new_status == ORDER_STATUS_CANCELLED:
            return self.cancel_order(order_id, changed_by, notes or "Cancelled by staff")

        order = self.get_order(order_id)
        previous = order.status
        for warning in check_status_transition(previous, new_status):
            current_app.logger.warning("Order %s: %s", order.order_number, warning)
        if new_status == ORDER_STATUS_CONFIRMED and order.payment_status != ORDER_PAYMENT_PAID:
            raise InvalidStateError("Order cannot be confirmed before its payment", order_id=order.document_id)

        update = {"status": new_status, "status_changed_at": utcnow()}
        if notes:
            update["admin_notes"] = notes
        order = self.store.update(Order, order.id, update, expect={"status": previous})
        current_app.logger.info(
            "Order %s moved from %s to %s by %s", order.order_number, previous, new_status, changed_by
        )
        return order

    def cancel_order(self, order_id, cancelled_by: str, reason: str) -> Order:
        """
        Cancel an order and any payment still waiting for confirmation.

        The payments and the order status commit together.

        Raises:
            ValidationError: cancelled_by or reason missing
            NotFoundError: order missing
            InvalidStateError: order can no longer be cancelled
        """
        if not cancelled_by or not reason:
            raise ValidationError("cancelled_by and reason are required")

        order = self.get_order(order_id)
        previous = order.status
        for warning in check_status_transition(previous, ORDER_STATUS_CANCELLED):
            current_app.logger.warning("Order %s: %s", order.order_number, warning)

        order_pk = order.id
        payments = PaymentService(self.store)

        def _cancel():
            for payment in self.store.find_many(Payment, order_id=order_pk, status=PAYMENT_STATUS_PENDING):
                payments.cancel_payment(payment.id, cancelled_by, f"Order cancelled: {reason}")
            self.store.update(Order, order_pk, {
                "status": ORDER_STATUS_CANCELLED,
                "status_changed_at": utcnow(),
                "admin_notes": f"Cancelled: {reason}",
            }, expect={"status": previous})

        self.store.transaction(_cancel)
        order = self.get_order(order_pk)
        current_app.logger.info("Order %s cancelled by %s", order.order_number, cancelled_by)
        return order

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_order(self, order_id) -> Order:
        order = self.store.get(Order, order_id)
        if not order:
            raise NotFoundError("Order not found", order_id=str(order_id))
        return order

    def get_order_by_number(self, order_number: str) -> Order:
        order = self.store.find(Order, order_number=order_number)
        if not order:
            raise NotFoundError("Order not found", order_number=order_number)
        return order

    def list_user_orders(self, user_id: int) -> list[Order]:
        return self.store.find_many(Order, order_by="-created_at", user_id=user_id)
