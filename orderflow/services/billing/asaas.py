"""
Asaas Billing Service Implementation

Production implementation against the Asaas v3 REST API using httpx.
Used when ENV_MODE=production or ENV_MODE=staging.

Requirements:
    - ASAAS_API_KEY must be set in environment
    - ASAAS_WEBHOOK_TOKEN to authenticate incoming webhooks

Flow per charge:
    1. Find the customer by cpfCnpj, or create one
    2. POST /payments with billingType, value and dueDate
    3. For PIX, GET /payments/{id}/pixQrCode. A failure here is logged
       and the charge is still returned without a QR code.

API Documentation:
    https://docs.asaas.com/reference
"""

import hmac
import logging
from datetime import date, datetime
from typing import Any, Optional

import httpx

from orderflow.core.config import get_settings
from orderflow.core.exceptions import UpstreamBillingError
from orderflow.services.billing.base import BaseBillingService, ChargeResult, PayerInfo

logger = logging.getLogger(__name__)


class AsaasBillingService(BaseBillingService):
    """
    Production Asaas billing service.

    Args:
        api_key: Overrides ASAAS_API_KEY
        base_url: Overrides ASAAS_API_URL
        webhook_token: Overrides ASAAS_WEBHOOK_TOKEN
        transport: Optional httpx transport, e.g. ``httpx.MockTransport``

    Raises:
        ValueError: If no API key is configured
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        webhook_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        api_key = api_key or settings.asaas_api_key
        if not api_key:
            raise ValueError(
                "ASAAS_API_KEY is required outside development mode. "
                "Set it in your .env file or environment variables."
            )

        self._webhook_token = webhook_token or settings.asaas_webhook_token
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.asaas_api_url).rstrip("/"),
            headers={
                "access_token": api_key,
                "Content-Type": "application/json",
                "User-Agent": settings.app_name,
            },
            timeout=settings.billing_timeout_seconds,
            transport=transport,
        )

        logger.info(f"AsaasBillingService initialized ({self._client.base_url})")

    @property
    def provider_name(self) -> str:
        return "asaas"

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Send one request; any transport or HTTP failure becomes UpstreamBillingError."""
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            errors = []
            try:
                errors = e.response.json().get("errors", [])
            except ValueError:
                pass
            description = "; ".join(err.get("description", "") for err in errors) or e.response.text
            logger.error(f"Asaas: {method} {path} returned {e.response.status_code}: {description}")
            raise UpstreamBillingError(
                f"Asaas rejected {method} {path}: {description}",
                provider=self.provider_name,
                upstream_status=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Asaas: {method} {path} failed: {e!r}")
            raise UpstreamBillingError(
                f"Asaas unreachable: {e.__class__.__name__}",
                provider=self.provider_name,
            ) from e
        return response.json()

    async def _ensure_customer(self, payer: PayerInfo) -> str:
        if not payer.cpf_cnpj:
            raise UpstreamBillingError(
                "Asaas needs the payer cpfCnpj to register a customer",
                provider=self.provider_name,
            )
        found = await self._request("GET", "/customers", params={"cpfCnpj": payer.cpf_cnpj})
        existing = found.get("data") or []
        if existing:
            return existing[0]["id"]

        payload = {"name": payer.name, "cpfCnpj": payer.cpf_cnpj}
        if payer.phone:
            payload["mobilePhone"] = payer.phone
        if payer.email:
            payload["email"] = payer.email
        created = await self._request("POST", "/customers", json=payload)
        logger.info(f"Asaas: Customer {created['id']} created for {payer.name}")
        return created["id"]

    async def create_charge(
        self,
        payer: PayerInfo,
        amount: float,
        method: str,
        description: Optional[str] = None,
        external_reference: Optional[str] = None,
    ) -> ChargeResult:
        if amount <= 0:
            raise UpstreamBillingError("Charge amount must be positive", provider=self.provider_name)

        start_time = datetime.now()
        customer_id = await self._ensure_customer(payer)

        payment = await self._request(
            "POST",
            "/payments",
            json={
                "customer": customer_id,
                "billingType": method,
                "value": round(amount, 2),
                "dueDate": date.today().isoformat(),
                "description": description or get_settings().restaurant_name,
                "externalReference": external_reference,
            },
        )

        result = ChargeResult(
            charge_id=payment["id"],
            status=payment.get("status", "PENDING"),
            invoice_url=payment.get("invoiceUrl"),
        )

        if method == "PIX":
            try:
                qr = await self._request("GET", f"/payments/{result.charge_id}/pixQrCode")
                result.qr_payload = qr.get("payload")
                result.qr_image = qr.get("encodedImage")
            except UpstreamBillingError as e:
                # The charge exists; the payer can still use the invoice page.
                logger.warning(f"Asaas: PIX QR code unavailable for {result.charge_id}: {e.message}")

        result.response_time_ms = round((datetime.now() - start_time).total_seconds() * 1000, 2)
        logger.info(
            f"Asaas: Charge {result.charge_id} created - {amount:.2f} via {method} "
            f"({external_reference})"
        )
        return result

    async def get_charge_status(self, charge_id: str) -> str:
        payment = await self._request("GET", f"/payments/{charge_id}")
        return payment.get("status", "")

    def verify_webhook(self, token: Optional[str]) -> bool:
        if not self._webhook_token:
            logger.warning("Asaas: ASAAS_WEBHOOK_TOKEN not set; rejecting webhook")
            return False
        return token is not None and hmac.compare_digest(token, self._webhook_token)

    async def health_check(self) -> bool:
        try:
            await self._request("GET", "/finance/balance")
            return True
        except UpstreamBillingError:
            return False

    async def close(self) -> None:
        await self._client.aclose()
