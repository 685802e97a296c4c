from __future__ import annotations

import uuid
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

CENT = Decimal("0.01")


def new_document_id() -> str:
    """Opaque, stable public identity for a record."""
    return str(uuid.uuid4())


def to_money(value) -> Decimal:
    """Coerce int/float/str/Decimal to a 2-place Decimal (half-up)."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value) -> Optional[str]:
    if value is None:
        return None
    return str(to_money(value))
