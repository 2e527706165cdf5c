"""
Kitchen Queue Projector

Derives the kitchen display (KDS) columns and the payment-due list from
the current set of active orders.

project_queue() is a pure function of its input: it is recomputed in
full on every change notification and never patched incrementally, so
it cannot accumulate state or keep showing an order that has become
terminal once the next notification arrives.
"""

import logging
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from orderflow.models import OrderStatus, TERMINAL_STATUSES
from orderflow.services.billing.reconciliation import order_is_paid
from orderflow.services.notifications import BaseChangeNotifier
from orderflow.services.pricing import order_total
from orderflow.services.store import OrderStore

logger = logging.getLogger(__name__)

QUEUE_COLUMNS = (
    OrderStatus.PENDENTE,
    OrderStatus.EM_PREPARO,
    OrderStatus.PRONTO,
    OrderStatus.SAIU_ENTREGA,
)

# Columns whose cards show the paid / not paid badge
BADGED_COLUMNS = frozenset({OrderStatus.PRONTO, OrderStatus.SAIU_ENTREGA})


@dataclass
class QueueCard:
    id: str
    code: str
    status: str
    service_type: str
    customer_name: Optional[str]
    table_number: Optional[str]
    items: list[dict[str, Any]]
    notes: Optional[str]
    total: float
    billing_type: Optional[str]
    motoboy_name: Optional[str]
    motoboy_phone: Optional[str]
    created_at: Optional[datetime]
    is_paid: Optional[bool] = None


@dataclass
class KitchenQueue:
    columns: dict[str, list[QueueCard]]
    payment_due: list[QueueCard]
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def active_count(self) -> int:
        return sum(len(cards) for cards in self.columns.values())


def _value(enum_or_str: Any) -> Optional[str]:
    return getattr(enum_or_str, "value", enum_or_str)


def _card(order: Any, status: OrderStatus) -> QueueCard:
    return QueueCard(
        id=order.id,
        code=order.code,
        status=status.value,
        service_type=_value(order.service_type),
        customer_name=order.customer_name,
        table_number=order.table_number,
        items=list(order.items or []),
        notes=order.notes,
        total=order_total(order),
        billing_type=_value(order.billing_type),
        motoboy_name=order.motoboy_name,
        motoboy_phone=order.motoboy_phone,
        created_at=order.created_at,
        is_paid=order_is_paid(order) if status in BADGED_COLUMNS else None,
    )


def project_queue(orders: Iterable[Any]) -> KitchenQueue:
    """
    Group active orders into the four kitchen columns.

    Input order is preserved inside each column. Terminal orders, orders
    with a delivery signature, and statuses outside the columns are
    skipped, whatever the caller passed in.
    """
    columns: dict[str, list[QueueCard]] = {status.value: [] for status in QUEUE_COLUMNS}
    payment_due: list[QueueCard] = []

    for order in orders:
        try:
            status = OrderStatus(order.status)
        except ValueError:
            logger.warning(f"Order {order.id} has unknown status {order.status!r}; skipped")
            continue
        if status in TERMINAL_STATUSES or getattr(order, "delivered_at", None) is not None:
            continue
        if status.value not in columns:
            continue

        card = _card(order, status)
        columns[status.value].append(card)
        if card.is_paid is False:
            payment_due.append(card)

    return KitchenQueue(columns=columns, payment_due=payment_due)


class QueueProjector:
    """
    Keeps a kitchen projection current by re-projecting on every change.

    Args:
        store_factory: Opens a fresh store per refresh, e.g. an
            ``asynccontextmanager`` around a new session
        notifier: Change notification transport to follow
    """

    def __init__(
        self,
        store_factory: Callable[[], AbstractAsyncContextManager[OrderStore]],
        notifier: BaseChangeNotifier,
    ):
        self.store_factory = store_factory
        self.notifier = notifier
        self.latest: Optional[KitchenQueue] = None

    async def refresh(self) -> KitchenQueue:
        async with self.store_factory() as store:
            orders = await store.list_active()
            self.latest = project_queue(orders)
        return self.latest

    async def follow(self) -> AsyncIterator[KitchenQueue]:
        """Yield the current projection, then a fresh one per change event."""
        events = await self.notifier.subscribe()
        try:
            yield await self.refresh()
            async for event in events:
                logger.debug(f"Re-projecting kitchen queue after change to {event.order_id}")
                yield await self.refresh()
        finally:
            await events.aclose()
