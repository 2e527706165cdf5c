"""
Pricing Engine

Pure functions: line totals, order totals and the advisory discount.
Nothing here touches the database or mutates the items it is given.
"""

from collections.abc import Iterable, Mapping
from typing import Any, Optional

from orderflow.core.exceptions import ValidationError

DISCOUNT_PERCENT = "percent"
DISCOUNT_FIXED = "fixed"


def _field(item: Any, name: str) -> Any:
    # Stored orders carry items as dicts; schemas and carts carry objects.
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def line_total(item: Any) -> float:
    """
    Total for one order line.

    A precomputed ``total_price`` is authoritative for its line; otherwise
    the line is ``(price or 0) * quantity``.
    """
    precomputed = _field(item, "total_price")
    if precomputed is not None:
        return float(precomputed)
    price = _field(item, "price") or 0
    quantity = _field(item, "quantity") or 0
    return float(price) * quantity


def compute_order_total(items: Optional[Iterable[Any]]) -> float:
    """Sum of line totals, rounded to cents and never below zero."""
    if not items:
        return 0.0
    total = sum(line_total(item) for item in items)
    return max(0.0, round(total, 2))


def order_total(order: Any) -> float:
    """The stored total when present, otherwise derived from the items."""
    stored = getattr(order, "total", None)
    if stored is not None:
        return round(float(stored), 2)
    return compute_order_total(getattr(order, "items", None))


def apply_discount(subtotal: float, discount_type: str, discount_value: float) -> float:
    """
    Discounted amount for display and out-of-band settlement.

    ``percent`` takes ``discount_value`` percent off the subtotal; any
    other type subtracts ``discount_value`` as an absolute amount. The
    result never drops below zero.
    """
    if discount_value < 0:
        raise ValidationError(
            "Discount value cannot be negative",
            fields=["discount_value"],
        )
    if discount_type == DISCOUNT_PERCENT:
        discount = subtotal * discount_value / 100
    else:
        discount = discount_value
    return max(0.0, round(subtotal - discount, 2))
