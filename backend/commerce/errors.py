# Overview: Typed failures raised by the lifecycle services; routes map them to HTTP codes.

"""
Lifecycle Error Taxonomy

Every service operation either returns a value or raises one of these.
Failures raised before any write leave the store untouched; failures raised
after writes began are raised only once the compensating rollback has run.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


class LifecycleError(Exception):
    """Base class for cart/checkout/payment/guest failures."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        payload = {"error": self.message, "kind": type(self).__name__}
        if self.context:
            payload["context"] = {k: v for k, v in self.context.items() if v is not None}
        return payload


class ValidationError(LifecycleError):
    """400-level input problem."""


class OrderValidationError(ValidationError):
    """Order request failed the pre-mutation validation gate."""

    def __init__(self, errors: list[str], **context):
        super().__init__(f"Order validation failed: {', '.join(errors)}", **context)
        self.errors = list(errors)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["errors"] = self.errors
        return payload


class NotFoundError(LifecycleError):
    """Referenced cart/order/payment/guest/confirmation does not exist."""


class ConflictError(LifecycleError):
    """409-level uniqueness conflict (e.g. a second active cart)."""


class DuplicateSessionError(ConflictError):
    """A guest already exists for this session."""


class EmailConflictError(ConflictError):
    """Email already belongs to a registered user."""


class InvalidStateError(LifecycleError):
    """Operation is not allowed from the record's current status."""


class AlreadyConvertedError(InvalidStateError):
    """Guest has already been converted to a registered user."""


class CartOwnershipError(LifecycleError):
    """Cart belongs to another session or user."""


class InventoryError(LifecycleError):
    """Insufficient stock for a variant-bound cart item."""


class PersistenceError(LifecycleError):
    """Underlying store call failed."""


@dataclass(frozen=True)
class PriceDriftWarning:
    """Surfaced next to a successful order; never raised."""
    cart_item_id: str
    snapshot_price: Decimal
    current_price: Decimal
    drift: Decimal

    @property
    def message(self) -> str:
        return "Prices may have changed since cart creation"

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "cart_item_id": self.cart_item_id,
            "snapshot_price": str(self.snapshot_price),
            "current_price": str(self.current_price),
            "drift": str(self.drift),
        }


_HTTP_STATUS = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (InvalidStateError, 422),
    (CartOwnershipError, 422),
    (InventoryError, 422),
    (PersistenceError, 503),
)


def http_status_for(error: LifecycleError) -> int:
    """HTTP status code routes answer with for a lifecycle failure."""
    for error_type, status in _HTTP_STATUS:
        if isinstance(error, error_type):
            return status
    return 500
