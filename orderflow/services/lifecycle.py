"""
Order Lifecycle State Machine

Validates and applies order status transitions.

    PENDENTE ─► EM_PREPARO ─► PRONTO ─► SAIU_ENTREGA ─► ENTREGUE
        │            │          │  └──────────────────────►│
        └────────────┴──────────┴───────────┴─► CANCELADO

plan_transition() is pure: given an order snapshot and a request it
either raises a domain error or returns the column patch to apply.
OrderLifecycle persists that patch conditioned on the status the plan
was made against, so a concurrent move by another terminal surfaces as
ConflictingTransition instead of being overwritten.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from orderflow.core.exceptions import (
    ConflictingTransition,
    InvalidTransition,
    OrderNotFound,
    PaymentNotConfirmed,
    ValidationError,
)
from orderflow.models import AuditAction, Order, OrderStatus, ServiceType
from orderflow.services.billing.reconciliation import CANONICAL_PAID, order_is_paid
from orderflow.services.notifications import BaseChangeNotifier, notify_changed
from orderflow.services.pricing import order_total
from orderflow.services.store import OrderStore, audit_entry, utcnow

logger = logging.getLogger(__name__)


TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDENTE: frozenset({OrderStatus.EM_PREPARO, OrderStatus.CANCELADO}),
    OrderStatus.EM_PREPARO: frozenset({OrderStatus.PRONTO, OrderStatus.CANCELADO}),
    OrderStatus.PRONTO: frozenset({
        OrderStatus.SAIU_ENTREGA,
        OrderStatus.ENTREGUE,
        OrderStatus.CANCELADO,
    }),
    OrderStatus.SAIU_ENTREGA: frozenset({OrderStatus.ENTREGUE, OrderStatus.CANCELADO}),
    OrderStatus.ENTREGUE: frozenset(),
    OrderStatus.CANCELADO: frozenset(),
}

# Display order for error payloads
_STATUS_ORDER = list(OrderStatus)


def allowed_targets(status: OrderStatus) -> list[OrderStatus]:
    targets = TRANSITIONS.get(status, frozenset())
    return [s for s in _STATUS_ORDER if s in targets]


def is_allowed(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


@dataclass(frozen=True)
class Operator:
    """Staff member performing an action (KDS, PDV or admin console)."""
    id: str
    name: str


@dataclass
class TransitionRequest:
    """
    A terminal's request to move an order.

    Attributes:
        target: Requested status
        expected_status: Status the terminal saw when it rendered the order;
            a mismatch with the stored status is a conflict
        motoboy_name, motoboy_phone: Courier, required for SAIU_ENTREGA
        operator: Who is acting; required for ENTREGUE
        confirm_payment: Operator confirms payment was collected by hand
    """
    target: OrderStatus
    expected_status: Optional[OrderStatus] = None
    motoboy_name: Optional[str] = None
    motoboy_phone: Optional[str] = None
    operator: Optional[Operator] = None
    confirm_payment: bool = False


@dataclass
class TransitionPlan:
    from_status: OrderStatus
    to_status: OrderStatus
    patch: dict[str, Any]
    payment_override: bool = False


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def plan_transition(order: Any, request: TransitionRequest, now: datetime) -> TransitionPlan:
    """
    Validate ``request`` against ``order`` and build the column patch.

    Raises:
        InvalidTransition: target not reachable from the current status
        ValidationError: courier or operator data missing
        PaymentNotConfirmed: delivery of an unpaid order without override
    """
    current = OrderStatus(order.status)
    target = OrderStatus(request.target)
    allowed = [s.value for s in allowed_targets(current)]

    if not is_allowed(current, target):
        raise InvalidTransition(current.value, target.value, allowed)

    patch: dict[str, Any] = {"status": target, "updated_at": now}
    payment_override = False

    if target == OrderStatus.SAIU_ENTREGA:
        if ServiceType(order.service_type) != ServiceType.DELIVERY:
            raise InvalidTransition(
                current.value,
                target.value,
                [s for s in allowed if s != OrderStatus.SAIU_ENTREGA.value],
                reason="Only delivery orders can go out for delivery",
            )
        missing = [
            name for name in ("motoboy_name", "motoboy_phone")
            if _blank(getattr(request, name))
        ]
        if missing:
            raise ValidationError(
                "Courier name and phone are required to dispatch a delivery",
                fields=missing,
                current_status=current.value,
            )
        patch["motoboy_name"] = request.motoboy_name.strip()
        patch["motoboy_phone"] = request.motoboy_phone.strip()

    if target == OrderStatus.ENTREGUE:
        operator = request.operator
        if operator is None or _blank(operator.id) or _blank(operator.name):
            raise ValidationError(
                "The operator confirming delivery must be identified",
                fields=["operator_id", "operator_name"],
                current_status=current.value,
            )

        if not order_is_paid(order):
            if not request.confirm_payment:
                raise PaymentNotConfirmed(
                    amount_due=order_total(order),
                    billing_type=getattr(order.billing_type, "value", order.billing_type),
                    qr_payload=getattr(order, "qr_payload", None),
                    invoice_url=getattr(order, "invoice_url", None),
                )
            payment_override = True
            patch.update(
                payment_status=CANONICAL_PAID,
                payment_confirmed_by_id=operator.id,
                payment_confirmed_by_name=operator.name,
                payment_confirmed_at=now,
            )

        patch.update(
            delivered_by_id=operator.id,
            delivered_by_name=operator.name,
            delivered_at=now,
        )

    return TransitionPlan(
        from_status=current,
        to_status=target,
        patch=patch,
        payment_override=payment_override,
    )


class OrderLifecycle:
    """
    Applies validated transitions through the store and announces them.

    Example:
        >>> lifecycle = OrderLifecycle(OrderStore(session), notifier)
        >>> await lifecycle.transition(order_id, TransitionRequest(OrderStatus.EM_PREPARO))
    """

    def __init__(self, store: OrderStore, notifier: BaseChangeNotifier):
        self.store = store
        self.notifier = notifier

    async def transition(self, order_id: str, request: TransitionRequest) -> Order:
        order = await self.store.get_by_id(order_id)
        if order is None:
            raise OrderNotFound(order_id)

        current = OrderStatus(order.status)
        if request.expected_status is not None and current != request.expected_status:
            logger.warning(
                f"Order {order.code}: terminal expected {request.expected_status.value}, "
                f"found {current.value}"
            )
            raise ConflictingTransition(request.expected_status.value, current.value)

        plan = plan_transition(order, request, utcnow())

        actor = request.operator
        audit = [
            audit_entry(
                order,
                AuditAction.TRANSITION,
                actor_id=actor.id if actor else None,
                actor_name=actor.name if actor else None,
                to_status=plan.to_status,
            )
        ]
        if plan.payment_override:
            audit.append(
                audit_entry(
                    order,
                    AuditAction.PAYMENT_OVERRIDE,
                    actor_id=actor.id,
                    actor_name=actor.name,
                    to_status=plan.to_status,
                    reason=f"Payment collected by hand (was {order.payment_status or 'unset'})",
                )
            )
        code = order.code

        applied = await self.store.conditional_update(
            order_id, plan.from_status, plan.patch, audit=audit
        )
        if not applied:
            latest = await self.store.get_by_id(order_id)
            if latest is None:
                raise OrderNotFound(order_id)
            logger.warning(
                f"Order {code}: {plan.from_status.value} -> {plan.to_status.value} lost the race "
                f"(now {latest.status.value})"
            )
            raise ConflictingTransition(plan.from_status.value, latest.status.value)

        logger.info(f"Order {code}: {plan.from_status.value} -> {plan.to_status.value}")
        if plan.payment_override:
            logger.warning(f"Order {code}: payment confirmed by hand by {actor.name} ({actor.id})")

        await notify_changed(self.notifier, order_id)
        return await self.store.get_by_id(order_id)
