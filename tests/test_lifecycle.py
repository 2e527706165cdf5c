"""
Order Lifecycle Tests

Transition table, delivery and payment rules, and conflict detection
between kitchen terminals.
"""
import asyncio
from types import SimpleNamespace

import pytest

from orderflow.core.exceptions import (
    ConflictingTransition,
    InvalidTransition,
    OrderNotFound,
    PaymentNotConfirmed,
    ValidationError,
)
from orderflow.database import build_engine, build_session_maker, init_db
from orderflow.models import AuditAction, BillingType, OrderStatus, ServiceType
from orderflow.services.lifecycle import (
    TRANSITIONS,
    Operator,
    OrderLifecycle,
    TransitionRequest,
    allowed_targets,
    is_allowed,
)
from orderflow.services.orders import create_order
from orderflow.services.store import OrderStore

CASHIER = Operator(id="42", name="Ana")


@pytest.fixture
def lifecycle(store, notifier):
    return OrderLifecycle(store, notifier)


async def advance(lifecycle, order_id, *targets):
    for target in targets:
        await lifecycle.transition(order_id, TransitionRequest(target))


class TestTransitionTable:
    """Which moves exist"""

    def test_terminal_statuses_have_no_exits(self):
        assert allowed_targets(OrderStatus.ENTREGUE) == []
        assert allowed_targets(OrderStatus.CANCELADO) == []

    def test_ready_order_can_be_delivered_directly(self):
        assert is_allowed(OrderStatus.PRONTO, OrderStatus.ENTREGUE)
        assert is_allowed(OrderStatus.PRONTO, OrderStatus.SAIU_ENTREGA)

    def test_cannot_go_backwards(self):
        assert not is_allowed(OrderStatus.PRONTO, OrderStatus.EM_PREPARO)

    def test_every_active_status_can_cancel(self):
        for status in (OrderStatus.PENDENTE, OrderStatus.EM_PREPARO,
                       OrderStatus.PRONTO, OrderStatus.SAIU_ENTREGA):
            assert is_allowed(status, OrderStatus.CANCELADO)


class TestKitchenFlow:
    """PENDENTE -> EM_PREPARO -> PRONTO"""

    async def test_forward_moves_are_applied(self, lifecycle, make_order, store):
        order = await make_order()
        await advance(lifecycle, order.id, OrderStatus.EM_PREPARO, OrderStatus.PRONTO)

        stored = await store.get_by_id(order.id)
        assert stored.status == OrderStatus.PRONTO

        trail = await store.list_audit(order.id)
        assert [(a.from_status, a.to_status) for a in trail] == [
            ("PENDENTE", "EM_PREPARO"),
            ("EM_PREPARO", "PRONTO"),
        ]

    async def test_skipping_a_step_is_rejected_without_side_effects(self, lifecycle, make_order, store):
        order = await make_order()
        before = (await store.get_by_id(order.id)).updated_at

        with pytest.raises(InvalidTransition) as excinfo:
            await lifecycle.transition(order.id, TransitionRequest(OrderStatus.PRONTO))

        assert excinfo.value.details["allowed"] == ["EM_PREPARO", "CANCELADO"]
        stored = await store.get_by_id(order.id)
        assert stored.status == OrderStatus.PENDENTE
        assert stored.updated_at == before
        assert await store.list_audit(order.id) == []

    async def test_unknown_order(self, lifecycle):
        with pytest.raises(OrderNotFound):
            await lifecycle.transition("nope", TransitionRequest(OrderStatus.EM_PREPARO))

    async def test_change_is_announced(self, lifecycle, make_order, notifier):
        order = await make_order()
        events = await notifier.subscribe()
        await lifecycle.transition(order.id, TransitionRequest(OrderStatus.EM_PREPARO))

        event = await events.__anext__()
        assert event.order_id == order.id
        await events.aclose()


class TestDelivery:
    """ENTREGUE requires an operator and a paid order"""

    async def test_unpaid_delivery_is_refused(self, lifecycle, make_order, store):
        order = await make_order()
        await advance(lifecycle, order.id, OrderStatus.EM_PREPARO, OrderStatus.PRONTO)

        with pytest.raises(PaymentNotConfirmed) as excinfo:
            await lifecycle.transition(
                order.id, TransitionRequest(OrderStatus.ENTREGUE, operator=CASHIER)
            )

        assert excinfo.value.amount_due == 50.0
        assert excinfo.value.details["billing_type"] == "DINHEIRO"
        assert (await store.get_by_id(order.id)).status == OrderStatus.PRONTO

    async def test_paid_delivery_records_operator(self, lifecycle, make_order):
        order = await make_order(payment_status="RECEIVED")
        await advance(lifecycle, order.id, OrderStatus.EM_PREPARO, OrderStatus.PRONTO)

        delivered = await lifecycle.transition(
            order.id, TransitionRequest(OrderStatus.ENTREGUE, operator=CASHIER)
        )

        assert delivered.status == OrderStatus.ENTREGUE
        assert delivered.delivered_by_id == "42"
        assert delivered.delivered_by_name == "Ana"
        assert delivered.delivered_at is not None

    async def test_operator_required(self, lifecycle, make_order):
        order = await make_order(payment_status="PAYMENT_RECEIVED")
        await advance(lifecycle, order.id, OrderStatus.EM_PREPARO, OrderStatus.PRONTO)

        with pytest.raises(ValidationError):
            await lifecycle.transition(order.id, TransitionRequest(OrderStatus.ENTREGUE))
        with pytest.raises(ValidationError):
            await lifecycle.transition(
                order.id,
                TransitionRequest(OrderStatus.ENTREGUE, operator=Operator(id="1", name=" ")),
            )

    async def test_hand_collected_payment_is_audited(self, lifecycle, make_order, store):
        order = await make_order()
        await advance(lifecycle, order.id, OrderStatus.EM_PREPARO, OrderStatus.PRONTO)

        delivered = await lifecycle.transition(
            order.id,
            TransitionRequest(OrderStatus.ENTREGUE, operator=CASHIER, confirm_payment=True),
        )

        assert delivered.payment_status == "PAYMENT_RECEIVED"
        assert delivered.payment_confirmed_by_name == "Ana"
        assert delivered.payment_confirmed_at is not None

        actions = [a.action for a in await store.list_audit(order.id)]
        assert actions[-2:] == [AuditAction.TRANSITION, AuditAction.PAYMENT_OVERRIDE]


class TestDispatch:
    """SAIU_ENTREGA"""

    async def test_courier_is_required(self, lifecycle, make_order):
        order = await make_order(service_type=ServiceType.DELIVERY, billing_type=BillingType.PIX)
        await advance(lifecycle, order.id, OrderStatus.EM_PREPARO, OrderStatus.PRONTO)

        with pytest.raises(ValidationError) as excinfo:
            await lifecycle.transition(
                order.id, TransitionRequest(OrderStatus.SAIU_ENTREGA, motoboy_name="Zé")
            )
        assert excinfo.value.details["fields"] == ["motoboy_phone"]

    async def test_courier_stored(self, lifecycle, make_order):
        order = await make_order(service_type=ServiceType.DELIVERY, billing_type=BillingType.PIX)
        await advance(lifecycle, order.id, OrderStatus.EM_PREPARO, OrderStatus.PRONTO)

        dispatched = await lifecycle.transition(
            order.id,
            TransitionRequest(
                OrderStatus.SAIU_ENTREGA, motoboy_name=" Zé ", motoboy_phone="11999990000"
            ),
        )

        assert dispatched.status == OrderStatus.SAIU_ENTREGA
        assert dispatched.motoboy_name == "Zé"

    async def test_counter_orders_cannot_be_dispatched(self, lifecycle, make_order):
        order = await make_order()
        await advance(lifecycle, order.id, OrderStatus.EM_PREPARO, OrderStatus.PRONTO)

        with pytest.raises(InvalidTransition):
            await lifecycle.transition(
                order.id,
                TransitionRequest(
                    OrderStatus.SAIU_ENTREGA, motoboy_name="Zé", motoboy_phone="11999990000"
                ),
            )


class StaleStore(OrderStore):
    """Hands out one outdated snapshot, as a terminal that read before a concurrent write."""

    def __init__(self, session, stale):
        super().__init__(session)
        self.stale = stale

    async def get_by_id(self, order_id):
        if self.stale is not None:
            stale, self.stale = self.stale, None
            return stale
        return await super().get_by_id(order_id)


class TestConflicts:
    """Two terminals acting on the same order"""

    async def test_expected_status_mismatch(self, lifecycle, make_order, store):
        order = await make_order()
        await advance(lifecycle, order.id, OrderStatus.EM_PREPARO)

        with pytest.raises(ConflictingTransition) as excinfo:
            await lifecycle.transition(
                order.id,
                TransitionRequest(OrderStatus.EM_PREPARO, expected_status=OrderStatus.PENDENTE),
            )

        assert excinfo.value.current_status == "EM_PREPARO"
        assert len(await store.list_audit(order.id)) == 1

    async def test_cancel_between_read_and_write_wins(self, make_order, session, notifier, store):
        """
        Terminal 1 read the order at PRONTO; terminal 2 cancelled it before
        terminal 1 wrote. The delivery must not overwrite the cancellation.
        """
        order = await make_order(payment_status="PAYMENT_RECEIVED")
        lifecycle = OrderLifecycle(store, notifier)
        await advance(lifecycle, order.id, OrderStatus.EM_PREPARO, OrderStatus.PRONTO)
        await lifecycle.transition(order.id, TransitionRequest(OrderStatus.CANCELADO))

        stale = SimpleNamespace(
            id=order.id,
            code=order.code,
            status=OrderStatus.PRONTO,
            service_type=ServiceType.BALCAO,
            billing_type=BillingType.DINHEIRO,
            payment_status="PAYMENT_RECEIVED",
            items=order.items,
            total=None,
        )
        racing = OrderLifecycle(StaleStore(session, stale), notifier)

        with pytest.raises(ConflictingTransition) as excinfo:
            await racing.transition(
                order.id, TransitionRequest(OrderStatus.ENTREGUE, operator=CASHIER)
            )

        assert excinfo.value.expected_status == "PRONTO"
        assert excinfo.value.current_status == "CANCELADO"
        stored = await store.get_by_id(order.id)
        assert stored.status == OrderStatus.CANCELADO
        assert stored.delivered_at is None


ILLEGAL_MOVES = [
    (current, target)
    for current in OrderStatus
    for target in OrderStatus
    if target not in TRANSITIONS[current]
]


class TestIllegalMoves:
    """Every pair outside the table, from a stored order"""

    @pytest.mark.parametrize(
        "current,target", ILLEGAL_MOVES, ids=[f"{c.value}->{t.value}" for c, t in ILLEGAL_MOVES]
    )
    async def test_rejected_without_side_effects(self, lifecycle, make_order, store, current, target):
        order = await make_order(payment_status="PAYMENT_RECEIVED")
        if current != OrderStatus.PENDENTE:
            assert await store.conditional_update(order.id, OrderStatus.PENDENTE, {"status": current})
        before = await store.get_by_id(order.id)
        updated_at = before.updated_at

        with pytest.raises(InvalidTransition):
            await lifecycle.transition(
                order.id,
                TransitionRequest(
                    target,
                    operator=CASHIER,
                    motoboy_name="Zé",
                    motoboy_phone="11999990000",
                ),
            )

        stored = await store.get_by_id(order.id)
        assert stored.status == current
        assert stored.updated_at == updated_at
        assert await store.list_audit(order.id) == []


class TestConcurrentTerminals:
    """Separate connections against one database file"""

    async def test_one_delivery_wins(self, tmp_path, notifier):
        engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
        await init_db(engine)
        session_maker = build_session_maker(engine)

        async with session_maker() as session:
            store = OrderStore(session)
            order = await create_order(
                store,
                items=[{"product_name": "X-Burger", "quantity": 2, "price": 25.0}],
                service_type=ServiceType.BALCAO,
                billing_type=BillingType.DINHEIRO,
            )
            await advance(OrderLifecycle(store, notifier), order.id,
                          OrderStatus.EM_PREPARO, OrderStatus.PRONTO)

        async def deliver(terminal):
            async with session_maker() as session:
                lifecycle = OrderLifecycle(OrderStore(session), notifier)
                return await lifecycle.transition(
                    order.id,
                    TransitionRequest(
                        OrderStatus.ENTREGUE,
                        expected_status=OrderStatus.PRONTO,
                        operator=Operator(id=str(terminal), name=f"Caixa {terminal}"),
                        confirm_payment=True,
                    ),
                )

        try:
            results = await asyncio.gather(*(deliver(n) for n in range(5)), return_exceptions=True)

            winners = [r for r in results if not isinstance(r, Exception)]
            losers = [r for r in results if isinstance(r, Exception)]
            assert len(winners) == 1
            assert all(isinstance(r, (ConflictingTransition, InvalidTransition)) for r in losers)

            async with session_maker() as session:
                store = OrderStore(session)
                stored = await store.get_by_id(order.id)
                trail = await store.list_audit(order.id)
        finally:
            await engine.dispose()

        delivered = [
            a for a in trail
            if a.action == AuditAction.TRANSITION and a.to_status == OrderStatus.ENTREGUE.value
        ]
        assert len(delivered) == 1
        assert [a.action for a in trail].count(AuditAction.PAYMENT_OVERRIDE) == 1
        assert stored.status == OrderStatus.ENTREGUE
        assert stored.delivered_by_name == delivered[0].actor_name == winners[0].delivered_by_name
