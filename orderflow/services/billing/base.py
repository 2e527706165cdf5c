"""
Billing Service Abstract Base Class

Defines the interface contract for billing-provider implementations.
Both MockBillingService and AsaasBillingService implement these
methods, so the order flow behaves the same whichever one is active.

The provider only creates charges and reports their status. It never
moves an order through its lifecycle: payment and order are decoupled,
and a failed charge never fails order creation.

Design Pattern: Strategy Pattern
    - Runtime switching between providers via ENV_MODE
    - Tests use the mock with a zero failure rate
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class PayerInfo:
    """
    Who is paying.

    Attributes:
        name: Payer display name
        cpf_cnpj: Brazilian taxpayer id, digits only
        phone: Mobile phone for provider notifications
        email: E-mail for provider receipts
    """
    name: str
    cpf_cnpj: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


@dataclass
class ChargeResult:
    """
    Standardized result from charge creation.

    Attributes:
        charge_id: Provider charge reference
        status: Provider status at creation (usually PENDING)
        invoice_url: Hosted payment page, for card links
        qr_payload: PIX copy-and-paste payload
        qr_image: Base64 PNG of the PIX QR code
        response_time_ms: Time taken by the provider
    """
    charge_id: str
    status: str = "PENDING"
    invoice_url: Optional[str] = None
    qr_payload: Optional[str] = None
    qr_image: Optional[str] = None
    response_time_ms: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "charge_id": self.charge_id,
            "status": self.status,
            "invoice_url": self.invoice_url,
            "qr_payload": self.qr_payload,
            "qr_image": self.qr_image,
            "response_time_ms": self.response_time_ms,
        }


class BaseBillingService(ABC):
    """
    Abstract base class for billing providers.

    Example:
        >>> service = get_billing_service()  # Mock or Asaas
        >>> charge = await service.create_charge(
        ...     PayerInfo(name="Maria"), amount=50.0, method="PIX"
        ... )
        >>> charge.qr_payload
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., "mock", "asaas")."""
        pass

    @abstractmethod
    async def create_charge(
        self,
        payer: PayerInfo,
        amount: float,
        method: str,
        description: Optional[str] = None,
        external_reference: Optional[str] = None,
    ) -> ChargeResult:
        """
        Create a charge for ``amount`` with the given payment method.

        Args:
            payer: Who is paying
            amount: Amount in currency units (e.g., 49.90)
            method: PIX or CREDIT_CARD
            description: Shown to the payer
            external_reference: Our order id, echoed back by webhooks

        Raises:
            UpstreamBillingError: The provider call failed
        """
        pass

    @abstractmethod
    async def get_charge_status(self, charge_id: str) -> str:
        """
        Current provider status of a charge.

        Raises:
            UpstreamBillingError: The provider call failed
        """
        pass

    def verify_webhook(self, token: Optional[str]) -> bool:
        """Check the shared token a webhook call carries."""
        return True

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify connectivity to the provider."""
        pass

    async def close(self) -> None:
        """Release provider resources."""
        return None
