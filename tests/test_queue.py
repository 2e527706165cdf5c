"""
Kitchen Queue Projector Tests

Column grouping, badges, payment-due list and push-based refresh.
"""
import asyncio
from contextlib import aclosing, asynccontextmanager
from datetime import datetime, timezone
from types import SimpleNamespace

from orderflow.models import OrderStatus, ServiceType
from orderflow.services.lifecycle import OrderLifecycle, TransitionRequest
from orderflow.services.queue import QueueProjector, project_queue
from orderflow.services.store import OrderStore


def card_source(order_id, status, payment_status=None, delivered_at=None):
    return SimpleNamespace(
        id=order_id,
        code=f"A{order_id}",
        status=status,
        service_type=ServiceType.BALCAO,
        customer_name=None,
        table_number=None,
        items=[{"product_name": "X-Burger", "quantity": 1, "price": 25.0}],
        notes=None,
        total=None,
        billing_type=None,
        motoboy_name=None,
        motoboy_phone=None,
        payment_status=payment_status,
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        delivered_at=delivered_at,
    )


class TestProjectQueue:
    """Pure projection"""

    def test_groups_by_status_preserving_order(self):
        queue = project_queue([
            card_source("1", "PENDENTE"),
            card_source("2", "EM_PREPARO"),
            card_source("3", "PENDENTE"),
        ])
        assert [c.id for c in queue.columns["PENDENTE"]] == ["1", "3"]
        assert [c.id for c in queue.columns["EM_PREPARO"]] == ["2"]
        assert queue.active_count == 3

    def test_terminal_and_delivered_orders_excluded(self):
        queue = project_queue([
            card_source("1", "ENTREGUE"),
            card_source("2", "CANCELADO"),
            card_source("3", "PRONTO", delivered_at=datetime.now(timezone.utc)),
        ])
        assert queue.active_count == 0

    def test_unknown_status_skipped(self):
        queue = project_queue([card_source("1", "ARCHIVED"), card_source("2", "PENDENTE")])
        assert queue.active_count == 1

    def test_badge_only_on_ready_and_out_for_delivery(self):
        queue = project_queue([
            card_source("1", "PENDENTE"),
            card_source("2", "PRONTO", payment_status="PAGO"),
            card_source("3", "SAIU_ENTREGA"),
        ])
        assert queue.columns["PENDENTE"][0].is_paid is None
        assert queue.columns["PRONTO"][0].is_paid is True
        assert queue.columns["SAIU_ENTREGA"][0].is_paid is False

    def test_payment_due_lists_unpaid_badged_cards(self):
        queue = project_queue([
            card_source("1", "PENDENTE"),
            card_source("2", "PRONTO", payment_status="RECEIVED"),
            card_source("3", "PRONTO"),
        ])
        assert [c.id for c in queue.payment_due] == ["3"]
        assert queue.payment_due[0].total == 25.0


class TestQueueProjector:
    """Re-projection on change notifications"""

    async def test_follow_reprojects_after_transition(self, session_maker, notifier, make_order, store):
        order = await make_order()

        @asynccontextmanager
        async def open_store():
            async with session_maker() as session:
                yield OrderStore(session)

        projector = QueueProjector(open_store, notifier)
        async with aclosing(projector.follow()) as updates:
            first = await updates.__anext__()
            assert [c.id for c in first.columns["PENDENTE"]] == [order.id]

            await OrderLifecycle(store, notifier).transition(
                order.id, TransitionRequest(OrderStatus.EM_PREPARO)
            )
            second = await asyncio.wait_for(updates.__anext__(), timeout=2)

        assert second.columns["PENDENTE"] == []
        assert [c.id for c in second.columns["EM_PREPARO"]] == [order.id]
        assert notifier.subscriber_count == 0
