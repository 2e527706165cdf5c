"""
Billing Service Factory

Single entry point for obtaining the billing provider, plus the
payment-status reconciliation helpers every module shares.

Usage:
    from orderflow.services.billing import get_billing_service

    # MockBillingService or AsaasBillingService based on ENV_MODE
    billing = get_billing_service()
    charge = await billing.create_charge(payer, 50.0, "PIX")

Environment Switching:
    - ENV_MODE=development → MockBillingService (no API calls)
    - ENV_MODE=staging → AsaasBillingService (sandbox URL)
    - ENV_MODE=production → AsaasBillingService (live URL)
"""

import logging
from functools import lru_cache

from orderflow.core.config import get_settings
from orderflow.services.billing.asaas import AsaasBillingService
from orderflow.services.billing.base import BaseBillingService, ChargeResult, PayerInfo
from orderflow.services.billing.mock import MockBillingService
from orderflow.services.billing.reconciliation import (
    CANONICAL_PAID,
    PAID_STATUSES,
    is_paid,
    normalize_payment_status,
    order_is_paid,
)

logger = logging.getLogger(__name__)

# Billing types the provider settles; the rest are paid at the counter
PROVIDER_BILLING_TYPES = frozenset({"PIX", "CREDIT_CARD"})


def create_billing_service() -> BaseBillingService:
    """
    Build a new billing service for the current ENV_MODE.

    Raises:
        ValueError: Outside development mode without ASAAS_API_KEY
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Billing Service: Using MockBillingService (development mode)")
        return MockBillingService(failure_rate=0.05, min_latency=0.1, max_latency=0.4)

    logger.info(f"Billing Service: Using AsaasBillingService ({settings.env_mode.value} mode)")
    return AsaasBillingService()


@lru_cache()
def get_billing_service() -> BaseBillingService:
    """Get the configured billing service instance (cached)."""
    return create_billing_service()


def reset_billing_service() -> None:
    """Clear the cached billing service; the next call builds a new one."""
    get_billing_service.cache_clear()
    logger.debug("Billing service cache cleared")


__all__ = [
    "create_billing_service",
    "get_billing_service",
    "reset_billing_service",
    "BaseBillingService",
    "ChargeResult",
    "PayerInfo",
    "MockBillingService",
    "AsaasBillingService",
    "PROVIDER_BILLING_TYPES",
    "CANONICAL_PAID",
    "PAID_STATUSES",
    "is_paid",
    "normalize_payment_status",
    "order_is_paid",
]
