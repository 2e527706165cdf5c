"""
Domain Error Taxonomy

Every error raised by the lifecycle engine, the pricing engine and the
billing integration derives from OrderFlowError. Each carries the HTTP
status the API layer answers with, a machine-readable code, and a details
dict with what the initiating terminal needs to render actionable UI
(current status, required fields, amount due).
"""

from typing import Any, Optional


class OrderFlowError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    code: str = "order_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": False,
            "error": self.code,
            "detail": self.message,
            **self.details,
        }


class ValidationError(OrderFlowError):
    """Malformed input: empty items, missing item name, missing courier data."""

    status_code = 400
    code = "validation_error"

    def __init__(self, message: str, fields: Optional[list[str]] = None, **details: Any):
        super().__init__(message, fields=fields or [], **details)
        self.fields = fields or []


class OrderNotFound(OrderFlowError):
    status_code = 404
    code = "order_not_found"

    def __init__(self, order_ref: str):
        super().__init__(f"Order {order_ref} not found", order=order_ref)


class InvalidTransition(OrderFlowError):
    """The requested status change is not permitted from the current status."""

    status_code = 409
    code = "invalid_transition"

    def __init__(
        self,
        current_status: str,
        requested_status: str,
        allowed: list[str],
        reason: Optional[str] = None,
    ):
        message = reason or (
            f"Cannot move order from {current_status} to {requested_status}"
        )
        super().__init__(
            message,
            current_status=current_status,
            requested_status=requested_status,
            allowed=allowed,
        )
        self.current_status = current_status
        self.requested_status = requested_status


class ConflictingTransition(OrderFlowError):
    """Another actor moved the order after the caller read it."""

    status_code = 409
    code = "conflicting_transition"

    def __init__(self, expected_status: str, current_status: Optional[str]):
        super().__init__(
            f"Order is no longer {expected_status} (now {current_status}); "
            "re-fetch and retry",
            expected_status=expected_status,
            current_status=current_status,
        )
        self.expected_status = expected_status
        self.current_status = current_status


class PaymentNotConfirmed(OrderFlowError):
    """Delivery confirmation attempted on an unpaid order without override."""

    status_code = 402
    code = "payment_not_confirmed"

    def __init__(
        self,
        amount_due: float,
        billing_type: Optional[str] = None,
        qr_payload: Optional[str] = None,
        invoice_url: Optional[str] = None,
    ):
        super().__init__(
            "Order has not been paid; collect payment and confirm it to deliver",
            amount_due=amount_due,
            billing_type=billing_type,
            qr_payload=qr_payload,
            invoice_url=invoice_url,
        )
        self.amount_due = amount_due


class UpstreamBillingError(OrderFlowError):
    """The billing provider call failed. Never fails order creation."""

    status_code = 502
    code = "upstream_billing_error"

    def __init__(self, message: str, provider: str = "unknown", **details: Any):
        super().__init__(message, provider=provider, **details)


class CashSessionError(OrderFlowError):
    status_code = 409
    code = "cash_session_error"


class OrderCodeUnavailable(OrderFlowError):
    """Every code attempt collided within the current operating period."""

    status_code = 503
    code = "order_code_unavailable"


class CashSessionNotFound(OrderFlowError):
    status_code = 404
    code = "cash_session_not_found"

    def __init__(self, session_id: str):
        super().__init__(f"Cash session {session_id} not found", session_id=session_id)
