# Overview: Order status values and the transitions allowed between them.

"""
Order Status

LIFECYCLE:
    pending -> confirmed | cancelled
    confirmed -> processing | cancelled | refunded
    processing -> shipping | cancelled | refunded
    shipping -> delivered
    delivered -> returned | refunded
    cancelled, refunded, returned: terminal

Payment confirmation moves an order from pending to confirmed; fulfilment
moves it along from there.
"""

from __future__ import annotations

from ..errors import InvalidStateError


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_CONFIRMED = "confirmed"
ORDER_STATUS_PROCESSING = "processing"
ORDER_STATUS_SHIPPING = "shipping"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_CANCELLED = "cancelled"
ORDER_STATUS_REFUNDED = "refunded"
ORDER_STATUS_RETURNED = "returned"

ORDER_STATUS_TRANSITIONS = {
    ORDER_STATUS_PENDING: (ORDER_STATUS_CONFIRMED, ORDER_STATUS_CANCELLED),
    ORDER_STATUS_CONFIRMED: (ORDER_STATUS_PROCESSING, ORDER_STATUS_CANCELLED, ORDER_STATUS_REFUNDED),
    ORDER_STATUS_PROCESSING: (ORDER_STATUS_SHIPPING, ORDER_STATUS_CANCELLED, ORDER_STATUS_REFUNDED),
    ORDER_STATUS_SHIPPING: (ORDER_STATUS_DELIVERED,),
    ORDER_STATUS_DELIVERED: (ORDER_STATUS_RETURNED, ORDER_STATUS_REFUNDED),
    ORDER_STATUS_CANCELLED: (),
    ORDER_STATUS_REFUNDED: (),
    ORDER_STATUS_RETURNED: (),
}

ORDER_STATUSES = tuple(ORDER_STATUS_TRANSITIONS)


def check_status_transition(previous: str, new: str) -> list[str]:
    """
    Validate previous -> new against the lifecycle.

    Returns:
        Warnings for allowed but unusual moves (currently: cancelling an
        order that is already being fulfilled)

    Raises:
        InvalidStateError: unknown status or transition not allowed
    """
    if new not in ORDER_STATUS_TRANSITIONS:
        raise InvalidStateError(f"Unknown order status: {new}", status=new)
    if new not in ORDER_STATUS_TRANSITIONS.get(previous, ()):
        raise InvalidStateError(
            f"Order cannot move from {previous} to {new}", previous_status=previous, status=new,
        )

    warnings = []
    if new == ORDER_STATUS_CANCELLED and previous == ORDER_STATUS_PROCESSING:
        warnings.append("Order is already being processed; stop fulfilment before shipping")
    return warnings
