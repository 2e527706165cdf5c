"""
Mock Billing Service Implementation

Simulates Asaas-like charge creation without making API calls.
Used in development mode (ENV_MODE=development) to:
    - Exercise the full PDV → KDS → delivery flow locally
    - Rehearse the billing-failure path (order still created)
    - Develop without provider credentials

Behavior:
    - Simulated latency within a configurable range
    - Fails a configurable share of calls with UpstreamBillingError
    - Generates Asaas-like ids (pay_xxx) and a fake PIX payload
    - Remembers charges so their status can be read back and settled
"""

import asyncio
import base64
import logging
import random
import uuid
from typing import Optional

from orderflow.core.exceptions import UpstreamBillingError
from orderflow.services.billing.base import BaseBillingService, ChargeResult, PayerInfo

logger = logging.getLogger(__name__)


class MockBillingService(BaseBillingService):
    """
    Mock implementation of the billing provider.

    Attributes:
        failure_rate: Probability of a simulated provider failure (0.0-1.0)
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds

    Example:
        >>> service = MockBillingService(failure_rate=0.0, max_latency=0.0)
        >>> charge = await service.create_charge(PayerInfo("Ana"), 30.0, "PIX")
        >>> await service.get_charge_status(charge.charge_id)
        'PENDING'
    """

    SUPPORTED_METHODS = ("PIX", "CREDIT_CARD")

    def __init__(
        self,
        failure_rate: float = 0.05,
        min_latency: float = 0.1,
        max_latency: float = 0.4,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max(min_latency, max_latency)
        self.charges: dict[str, str] = {}

        logger.info(
            f"MockBillingService initialized "
            f"(failure_rate={failure_rate:.0%}, "
            f"latency={min_latency}-{self.max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> float:
        latency = random.uniform(self.min_latency, self.max_latency)
        if latency > 0:
            await asyncio.sleep(latency)
        return latency * 1000

    def _should_fail(self) -> bool:
        return random.random() < self.failure_rate

    async def create_charge(
        self,
        payer: PayerInfo,
        amount: float,
        method: str,
        description: Optional[str] = None,
        external_reference: Optional[str] = None,
    ) -> ChargeResult:
        if amount <= 0:
            raise UpstreamBillingError(
                "Charge amount must be positive",
                provider=self.provider_name,
            )
        if method not in self.SUPPORTED_METHODS:
            raise UpstreamBillingError(
                f"Billing type {method} is settled at the counter, not by the provider",
                provider=self.provider_name,
            )

        elapsed = await self._simulate_latency()
        if self._should_fail():
            logger.warning(f"[MOCK] Simulated provider failure for {external_reference}")
            raise UpstreamBillingError("Simulated provider outage", provider=self.provider_name)

        charge_id = f"pay_mock_{uuid.uuid4().hex[:16]}"
        self.charges[charge_id] = "PENDING"

        result = ChargeResult(charge_id=charge_id, response_time_ms=round(elapsed, 2))
        if method == "PIX":
            result.qr_payload = f"00020126MOCKPIX{charge_id}5204000053039865406{amount:.2f}"
            result.qr_image = base64.b64encode(result.qr_payload.encode()).decode()
        else:
            result.invoice_url = f"https://sandbox.invalid/i/{charge_id}"

        logger.info(
            f"[MOCK] Charge {charge_id} created: {amount:.2f} via {method} "
            f"for {payer.name} ({external_reference})"
        )
        return result

    async def get_charge_status(self, charge_id: str) -> str:
        await self._simulate_latency()
        if charge_id not in self.charges:
            raise UpstreamBillingError(f"Unknown charge {charge_id}", provider=self.provider_name)
        return self.charges[charge_id]

    def settle(self, charge_id: str, status: str = "RECEIVED") -> None:
        """Mark a mock charge as paid, as the provider would after the payer pays."""
        self.charges[charge_id] = status

    async def health_check(self) -> bool:
        return True
