"""
Order Store Tests

Conditional updates, lookups and the audit trail.
"""
import random

import pytest

from orderflow.models import AuditAction, Order, OrderStatus
from orderflow.services.orders import create_order
from orderflow.services.store import audit_entry, snapshot_order, utcnow


class TestConditionalUpdate:
    """Compare-and-set on status"""

    async def test_only_first_of_two_identical_updates_applies(self, store, make_order):
        """Two terminals both saw PRONTO; exactly one CANCELADO/ENTREGUE write may land"""
        order = await make_order()
        await store.conditional_update(order.id, OrderStatus.PENDENTE, {"status": OrderStatus.EM_PREPARO})

        first = await store.conditional_update(
            order.id, OrderStatus.EM_PREPARO, {"status": OrderStatus.PRONTO, "updated_at": utcnow()}
        )
        second = await store.conditional_update(
            order.id, OrderStatus.EM_PREPARO, {"status": OrderStatus.CANCELADO, "updated_at": utcnow()}
        )

        assert first is True
        assert second is False
        assert (await store.get_by_id(order.id)).status == OrderStatus.PRONTO

    async def test_audit_written_with_update(self, store, make_order):
        order = await make_order()
        entry = audit_entry(order, AuditAction.TRANSITION, to_status=OrderStatus.EM_PREPARO)

        await store.conditional_update(
            order.id, OrderStatus.PENDENTE, {"status": OrderStatus.EM_PREPARO}, audit=[entry]
        )

        trail = await store.list_audit(order.id)
        assert [(a.from_status, a.to_status) for a in trail] == [("PENDENTE", "EM_PREPARO")]

    async def test_no_audit_when_update_misses(self, store, make_order):
        order = await make_order()
        entry = audit_entry(order, AuditAction.TRANSITION, to_status=OrderStatus.PRONTO)

        applied = await store.conditional_update(
            order.id, OrderStatus.EM_PREPARO, {"status": OrderStatus.PRONTO}, audit=[entry]
        )

        assert applied is False
        assert await store.list_audit(order.id) == []


class TestLookups:
    """Reads"""

    async def test_get_by_code_case_insensitive(self, store, make_order):
        order = await make_order()
        found = await store.get_by_code(order.code.lower())
        assert found.id == order.id

    async def test_list_active_excludes_terminal(self, store, make_order):
        active = await make_order()
        cancelled = await make_order()
        await store.conditional_update(cancelled.id, OrderStatus.PENDENTE, {"status": OrderStatus.CANCELADO})

        ids = [o.id for o in await store.list_active()]
        assert ids == [active.id]

    async def test_list_orders_filtered_by_status(self, store, make_order):
        await make_order()
        moved = await make_order()
        await store.conditional_update(moved.id, OrderStatus.PENDENTE, {"status": OrderStatus.EM_PREPARO})

        in_prep = await store.list_orders(status=OrderStatus.EM_PREPARO)
        assert [o.id for o in in_prep] == [moved.id]

    async def test_get_by_charge_id(self, store, make_order):
        order = await make_order()
        await store.set_charge(order.id, "pay_123", qr_payload="000201")
        found = await store.get_by_charge_id("pay_123")
        assert found.id == order.id
        assert found.qr_payload == "000201"


class TestAdministrativeWrites:
    """Full replace and delete keep an audit row"""

    async def test_delete_keeps_audit_with_snapshot(self, store, make_order):
        order = await make_order()
        entry = audit_entry(
            order, AuditAction.ADMIN_DELETE, actor_id="7", actor_name="Gerente",
            reason="duplicado", snapshot=snapshot_order(order),
        )

        assert await store.delete(order.id, entry)
        assert await store.get_by_id(order.id) is None

        trail = await store.list_audit(order.id)
        assert trail[0].action == AuditAction.ADMIN_DELETE
        assert trail[0].snapshot["code"] == order.code
        assert trail[0].snapshot["status"] == "PENDENTE"

    async def test_full_replace_of_missing_order(self, store, make_order):
        order = await make_order()
        entry = audit_entry(order, AuditAction.ADMIN_REPLACE, reason="x")
        assert await store.full_replace("missing", {"notes": "x"}, entry) is False


class TestCodeUniqueness:
    """(code, operating_date) is unique"""

    async def test_collision_redraws_code(self, store):
        rng = random.Random()
        codes = iter([500, 500, 501])
        rng.randint = lambda a, b: next(codes)
        items = [{"product_name": "Suco", "quantity": 1, "price": 9.0}]

        first = await create_order(store, items, rng=rng)
        second = await create_order(store, items, rng=rng)

        assert first.code == "A500"
        assert second.code == "A501"
        assert isinstance(second, Order)
