"""
Core module initialization.
Exports configuration, logging utilities and the domain error taxonomy.
"""

from orderflow.core.config import get_settings, Settings, EnvironmentMode
from orderflow.core.exceptions import (
    OrderFlowError,
    ValidationError,
    OrderNotFound,
    InvalidTransition,
    ConflictingTransition,
    PaymentNotConfirmed,
    UpstreamBillingError,
    CashSessionError,
    CashSessionNotFound,
    OrderCodeUnavailable,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "OrderFlowError",
    "ValidationError",
    "OrderNotFound",
    "InvalidTransition",
    "ConflictingTransition",
    "PaymentNotConfirmed",
    "UpstreamBillingError",
    "CashSessionError",
    "CashSessionNotFound",
    "OrderCodeUnavailable",
]
