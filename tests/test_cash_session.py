"""
Cash Session Tests

Opening the register, and reconciling the drawer when it closes.
"""
from types import SimpleNamespace

import pytest

from orderflow.core.exceptions import CashSessionError, CashSessionNotFound, ValidationError
from orderflow.models import BillingType, CashSessionStatus, OrderStatus
from orderflow.services.cash_session import CashSessionService, summarize_sales


@pytest.fixture
def cash(session):
    return CashSessionService(session)


class TestSummarizeSales:
    def test_cancelled_orders_are_excluded(self):
        orders = [
            SimpleNamespace(status="ENTREGUE", billing_type="DINHEIRO", total=10.0, items=[]),
            SimpleNamespace(status="CANCELADO", billing_type="DINHEIRO", total=99.0, items=[]),
            SimpleNamespace(status="PRONTO", billing_type="MAQUININHA", total=5.5, items=[]),
        ]
        totals = summarize_sales(orders)

        assert totals["order_count"] == 2
        assert totals["total_sales"] == 15.5
        assert totals["total_cash_sales"] == 10.0
        assert totals["total_card"] == 5.5


class TestOpen:
    """One open session at a time"""

    async def test_open(self, cash):
        opened = await cash.open("Ana", initial_balance=100.0, operator_id="42")

        assert opened.status == CashSessionStatus.OPEN
        assert opened.initial_balance == 100.0
        assert (await cash.current()).id == opened.id

    async def test_second_open_is_rejected(self, cash):
        first = await cash.open("Ana")
        with pytest.raises(CashSessionError) as excinfo:
            await cash.open("Bruno")
        assert excinfo.value.details["open_session_id"] == first.id

    async def test_concurrent_open_is_rejected_by_the_database(self, cash, monkeypatch):
        first = await cash.open("Ana")
        lookup = cash.current
        calls = []

        async def stale_current():
            # Racing request read before the first open committed
            calls.append(1)
            return None if len(calls) == 1 else await lookup()

        monkeypatch.setattr(cash, "current", stale_current)

        with pytest.raises(CashSessionError) as excinfo:
            await cash.open("Bruno")

        assert excinfo.value.details["open_session_id"] == first.id
        assert [s.id for s in await cash.list_sessions()] == [first.id]

    async def test_reopen_after_close(self, cash):
        first = await cash.open("Ana")
        await cash.close(first.id, counted_cash=0.0, operator_name="Ana")

        second = await cash.open("Bruno")
        assert second.id != first.id
        assert len(await cash.list_sessions()) == 2

    async def test_negative_float_rejected(self, cash):
        with pytest.raises(ValidationError):
            await cash.open("Ana", initial_balance=-1)

    async def test_no_current_session(self, cash):
        assert await cash.current() is None


class TestClose:
    """Drawer reconciliation"""

    async def test_totals_and_variance(self, cash, make_order, store):
        opened = await cash.open("Ana", initial_balance=100.0)

        await make_order(billing_type=BillingType.DINHEIRO)
        await make_order(
            billing_type=BillingType.PIX,
            items=[{"name": "Combo", "quantity": 1, "price": 30.0}],
        )
        await make_order(
            billing_type=BillingType.MAQUININHA,
            items=[{"name": "Suco", "quantity": 2, "price": 10.0}],
        )
        cancelled = await make_order(billing_type=BillingType.DINHEIRO)
        await store.conditional_update(
            cancelled.id, OrderStatus.PENDENTE, {"status": OrderStatus.CANCELADO}
        )

        closed = await cash.close(opened.id, counted_cash=145.0, operator_name="Bruno")

        assert closed.status == CashSessionStatus.CLOSED
        assert closed.order_count == 3
        assert closed.total_sales == 100.0
        assert closed.total_cash_sales == 50.0
        assert closed.total_pix == 30.0
        assert closed.total_card == 20.0
        assert closed.expected_cash == 150.0
        assert closed.variance == -5.0
        assert closed.closed_by_name == "Bruno"
        assert await cash.current() is None

    async def test_closing_twice_is_rejected(self, cash):
        opened = await cash.open("Ana")
        await cash.close(opened.id, counted_cash=0, operator_name="Ana")

        with pytest.raises(CashSessionError):
            await cash.close(opened.id, counted_cash=0, operator_name="Ana")

    async def test_unknown_session(self, cash):
        with pytest.raises(CashSessionNotFound):
            await cash.close("missing", counted_cash=0, operator_name="Ana")

    async def test_negative_count_rejected(self, cash):
        opened = await cash.open("Ana")
        with pytest.raises(ValidationError):
            await cash.close(opened.id, counted_cash=-10, operator_name="Ana")
