# Overview: Tax and shipping pricing for carts in checkout.

"""
Cart Calculation

WHY: Tax and shipping depend on where and how the order ships, which is only
known once a checkout session supplies a shipping address and method. Until
then a cart is priced from its items alone.

RULES:
- Tax: subtotal x rate for the shipping country (unknown country -> default rate)
- Shipping: free at or above the free-shipping threshold; otherwise the
  method's base rate plus a surcharge per kg over the weight allowance
- Line weight comes from the variant, then the product, then a default
- All amounts are 2-place Decimals rounded half-up
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..models.common import to_money


DEFAULT_TAX_RATES = {
    "US": Decimal("0.08"),
    "CA": Decimal("0.13"),
    "UK": Decimal("0.20"),
}
DEFAULT_TAX_RATE = Decimal("0.08")

SHIPPING_RATES = {
    "standard": Decimal("5.00"),
    "express": Decimal("15.00"),
    "overnight": Decimal("25.00"),
}
DEFAULT_SHIPPING_METHOD = "standard"
DEFAULT_FREE_SHIPPING_THRESHOLD = Decimal("50.00")

DEFAULT_ITEM_WEIGHT_KG = Decimal("0.5")
WEIGHT_ALLOWANCE_KG = Decimal("2")
WEIGHT_SURCHARGE_PER_KG = Decimal("2.00")


def tax_rate_for(shipping_address: dict | None) -> Decimal:
    config = current_app.config
    rates = config.get("TAX_RATES") or DEFAULT_TAX_RATES
    default_rate = config.get("DEFAULT_TAX_RATE", DEFAULT_TAX_RATE)
    country = (shipping_address or {}).get("country")
    rate = rates.get(country.upper(), default_rate) if isinstance(country, str) else default_rate
    return Decimal(str(rate))


def calculate_tax(subtotal, shipping_address: dict | None) -> Decimal:
    return to_money(to_money(subtotal) * tax_rate_for(shipping_address))


def item_weight(item) -> Decimal:
    """Weight of one unit of a cart line, in kg."""
    variant = item.variant
    if variant is not None and variant.weight:
        return Decimal(str(variant.weight))
    product = item.product
    if product is not None and product.weight:
        return Decimal(str(product.weight))
    return DEFAULT_ITEM_WEIGHT_KG


def calculate_shipping(items: list, subtotal, shipping_method: str | None) -> Decimal:
    """Shipping charge for the given live cart items; unknown methods ship standard."""
    if not items:
        return to_money(0)

    threshold = current_app.config.get("FREE_SHIPPING_THRESHOLD", DEFAULT_FREE_SHIPPING_THRESHOLD)
    if to_money(subtotal) >= to_money(threshold):
        return to_money(0)

    base_rate = SHIPPING_RATES.get(shipping_method or DEFAULT_SHIPPING_METHOD, SHIPPING_RATES[DEFAULT_SHIPPING_METHOD])
    total_weight = sum((item_weight(item) * item.quantity for item in items), Decimal(0))
    surcharge = max(Decimal(0), total_weight - WEIGHT_ALLOWANCE_KG) * WEIGHT_SURCHARGE_PER_KG
    return to_money(base_rate + surcharge)
