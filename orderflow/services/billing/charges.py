"""
Order Charges

Glue between orders and the billing provider: creating a charge for an
order, and writing provider-reported payment statuses back onto it.
"""

import logging
from typing import Any, Optional

from orderflow.core.exceptions import ValidationError
from orderflow.models import AuditAction, Order
from orderflow.services.billing import PROVIDER_BILLING_TYPES
from orderflow.services.billing.base import BaseBillingService, ChargeResult, PayerInfo
from orderflow.services.billing.reconciliation import normalize_payment_status
from orderflow.services.notifications import BaseChangeNotifier, notify_changed
from orderflow.services.pricing import order_total
from orderflow.services.store import OrderStore, audit_entry

logger = logging.getLogger(__name__)


def payer_for(order: Any, payer: Optional[PayerInfo] = None) -> PayerInfo:
    """Explicit payer data, falling back to the customer fields on the order."""
    if payer is not None:
        return payer
    return PayerInfo(
        name=order.customer_name or f"Pedido {order.code}",
        phone=order.customer_phone,
    )


async def charge_order(
    store: OrderStore,
    billing: BaseBillingService,
    order: Order,
    payer: Optional[PayerInfo] = None,
) -> ChargeResult:
    """
    Create a provider charge for the order total and attach it to the order.

    Raises:
        ValidationError: the order's billing type is settled at the counter
        UpstreamBillingError: the provider call failed
    """
    method = getattr(order.billing_type, "value", order.billing_type)
    if method not in PROVIDER_BILLING_TYPES:
        raise ValidationError(
            f"Billing type {method} is not charged through the provider",
            fields=["billing_type"],
        )

    amount = order_total(order)
    order_id, code = order.id, order.code
    charge = await billing.create_charge(
        payer_for(order, payer),
        amount=amount,
        method=method,
        description=f"Pedido {code}",
        external_reference=order_id,
    )
    await store.set_charge(
        order_id,
        charge.charge_id,
        invoice_url=charge.invoice_url,
        qr_payload=charge.qr_payload,
        qr_image=charge.qr_image,
        payment_status=normalize_payment_status(charge.status),
    )
    logger.info(f"Order {code}: charge {charge.charge_id} attached ({method} {amount:.2f})")
    return charge


async def apply_payment_status(
    store: OrderStore,
    notifier: BaseChangeNotifier,
    order: Order,
    raw_status: Optional[str],
    source: str = "billing-webhook",
) -> Optional[str]:
    """
    Write a provider-reported status onto the order and announce the change.

    Returns:
        The normalized status that was stored
    """
    status = normalize_payment_status(raw_status)
    if status == order.payment_status:
        logger.debug(f"Order {order.code}: payment status already {status}")
        return status

    order_id, code, previous = order.id, order.code, order.payment_status
    entry = audit_entry(
        order,
        AuditAction.PAYMENT_WEBHOOK,
        actor_id=source,
        actor_name=source,
        reason=f"payment_status {previous or 'unset'} -> {status or 'unset'}",
    )
    await store.set_payment_status(order_id, status)
    await store.record_audit(entry)
    logger.info(f"Order {code}: payment status {previous} -> {status} ({source})")

    await notify_changed(notifier, order_id)
    return status


async def sync_charge_status(
    store: OrderStore,
    billing: BaseBillingService,
    notifier: BaseChangeNotifier,
    order: Order,
) -> Optional[str]:
    """
    Poll the provider for the order's charge and store what it reports.

    Covers webhooks that never arrived. Raises ValidationError when the
    order has no charge, UpstreamBillingError when the provider call fails.
    """
    if not order.charge_id:
        raise ValidationError(f"Order {order.code} has no provider charge", fields=["charge_id"])

    raw_status = await billing.get_charge_status(order.charge_id)
    return await apply_payment_status(store, notifier, order, raw_status, source="billing-poll")
