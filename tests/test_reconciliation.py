"""
Billing Reconciliation Tests

Paid-status synonyms and ingestion normalization.
"""
from types import SimpleNamespace

import pytest

from orderflow.services.billing.reconciliation import (
    is_paid,
    normalize_payment_status,
    order_is_paid,
)


class TestIsPaid:
    """is_paid accepts every paid synonym, any case"""

    @pytest.mark.parametrize("status", ["PAYMENT_RECEIVED", "PAGO", "RECEIVED", "CONFIRMED", "pago", " received "])
    def test_paid_synonyms(self, status):
        assert is_paid(status)

    @pytest.mark.parametrize("status", [None, "", "PENDING", "OVERDUE", "PAID", "REFUNDED"])
    def test_not_paid(self, status):
        assert not is_paid(status)

    def test_order_without_status_is_unpaid(self):
        assert not order_is_paid(SimpleNamespace(payment_status=None))


class TestNormalize:
    """Webhook ingestion collapses synonyms"""

    def test_synonyms_collapse_to_canonical(self):
        assert normalize_payment_status("confirmed") == "PAYMENT_RECEIVED"
        assert normalize_payment_status("PAGO") == "PAYMENT_RECEIVED"

    def test_other_statuses_kept_uppercased(self):
        assert normalize_payment_status("overdue") == "OVERDUE"

    def test_blank_becomes_none(self):
        assert normalize_payment_status("  ") is None
        assert normalize_payment_status(None) is None
