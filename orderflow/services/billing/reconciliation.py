"""
Billing Reconciliation

Answers "is this order paid?" from the provider-reported payment status.

Providers and terminals report payment with several synonyms. Webhook
ingestion collapses them to the canonical PAYMENT_RECEIVED through
normalize_payment_status(); is_paid() still accepts every synonym so
values written by older terminals keep reconciling.
"""

from typing import Any, Optional

CANONICAL_PAID = "PAYMENT_RECEIVED"

PAID_STATUSES = frozenset({"PAYMENT_RECEIVED", "PAGO", "RECEIVED", "CONFIRMED"})


def is_paid(payment_status: Optional[str]) -> bool:
    """True when the provider status is one of the paid synonyms (any case)."""
    if not payment_status:
        return False
    return payment_status.strip().upper() in PAID_STATUSES


def order_is_paid(order: Any) -> bool:
    return is_paid(getattr(order, "payment_status", None))


def normalize_payment_status(raw: Optional[str]) -> Optional[str]:
    """
    Map a provider-reported status onto the value stored on the order.

    Paid synonyms become PAYMENT_RECEIVED; anything else is kept,
    uppercased, so the trail of what the provider said is preserved.

    >>> normalize_payment_status("pago")
    'PAYMENT_RECEIVED'
    >>> normalize_payment_status("overdue")
    'OVERDUE'
    """
    if raw is None:
        return None
    cleaned = raw.strip().upper()
    if not cleaned:
        return None
    if cleaned in PAID_STATUSES:
        return CANONICAL_PAID
    return cleaned
