"""
Order Store

Durable store for order records over an async SQLAlchemy session.

Every lifecycle write goes through conditional_update(), which is a
single ``UPDATE ... WHERE id = :id AND status = :expected`` statement:
when two terminals race the same transition, exactly one of them
matches a row. Audit rows are written in the same transaction as the
change they describe.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.models import (
    AuditAction,
    Order,
    OrderAuditLog,
    OrderStatus,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStore:
    """Persistence boundary for orders and their audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # READS
    # =========================================================================

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        return await self.session.get(Order, order_id, populate_existing=True)

    async def get_by_code(self, code: str) -> Optional[Order]:
        """Most recent order carrying ``code`` (codes repeat across periods)."""
        result = await self.session.execute(
            select(Order)
            .where(Order.code == code.upper())
            .order_by(Order.operating_date.desc(), Order.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> list[Order]:
        query = (
            select(Order)
            .order_by(Order.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if status is not None:
            query = query.where(Order.status == status)
        query = query.offset(skip)
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_active(self) -> list[Order]:
        """Non-terminal orders, oldest first."""
        result = await self.session.execute(
            select(Order)
            .where(
                Order.status.not_in(list(TERMINAL_STATUSES)),
                Order.delivered_at.is_(None),
            )
            .order_by(Order.created_at.asc(), Order.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_by_charge_id(self, charge_id: str) -> Optional[Order]:
        result = await self.session.execute(
            select(Order)
            .where(Order.charge_id == charge_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def list_created_since(self, since: datetime) -> list[Order]:
        result = await self.session.execute(
            select(Order)
            .where(Order.created_at >= since)
            .order_by(Order.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_audit(self, order_id: str) -> list[OrderAuditLog]:
        result = await self.session.execute(
            select(OrderAuditLog)
            .where(OrderAuditLog.order_id == order_id)
            .order_by(OrderAuditLog.id.asc())
        )
        return list(result.scalars().all())

    # =========================================================================
    # WRITES
    # =========================================================================

    async def create(self, order: Order) -> Order:
        """
        Insert a new order.

        Raises sqlalchemy IntegrityError on a (code, operating_date)
        collision; the session is rolled back before re-raising.
        """
        now = utcnow()
        order.created_at = order.created_at or now
        order.updated_at = order.updated_at or now
        self.session.add(order)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(order)
        return order

    async def conditional_update(
        self,
        order_id: str,
        expected_status: OrderStatus,
        patch: dict[str, Any],
        audit: Optional[list[OrderAuditLog]] = None,
    ) -> bool:
        """
        Apply ``patch`` only if the order is still in ``expected_status``.

        Returns:
            bool: False when no row matched (order moved or vanished)
        """
        result = await self.session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == expected_status)
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.commit()
            return False

        for entry in audit or []:
            self.session.add(entry)
        await self.session.commit()
        return True

    async def update_fields(self, order_id: str, values: dict[str, Any]) -> bool:
        """Unconditional column update for non-lifecycle fields (billing data)."""
        values = {**values, "updated_at": utcnow()}
        result = await self.session.execute(
            update(Order)
            .where(Order.id == order_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def set_payment_status(self, order_id: str, payment_status: Optional[str]) -> bool:
        """Store a provider status; callers normalize it first."""
        return await self.update_fields(order_id, {"payment_status": payment_status})

    async def set_charge(
        self,
        order_id: str,
        charge_id: str,
        invoice_url: Optional[str] = None,
        qr_payload: Optional[str] = None,
        qr_image: Optional[str] = None,
        payment_status: Optional[str] = None,
    ) -> bool:
        """Attach the billing-provider charge reference to an order."""
        return await self.update_fields(order_id, {
            "charge_id": charge_id,
            "invoice_url": invoice_url,
            "qr_payload": qr_payload,
            "qr_image": qr_image,
            "payment_status": payment_status,
        })

    async def full_replace(
        self,
        order_id: str,
        values: dict[str, Any],
        audit: OrderAuditLog,
    ) -> bool:
        """
        Administrative last-write-wins overwrite. Bypasses the transition
        table; the caller must supply the audit entry.
        """
        values = {**values, "updated_at": utcnow()}
        result = await self.session.execute(
            update(Order)
            .where(Order.id == order_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.commit()
            return False
        self.session.add(audit)
        await self.session.commit()
        return True

    async def delete(self, order_id: str, audit: OrderAuditLog) -> bool:
        result = await self.session.execute(
            delete(Order)
            .where(Order.id == order_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.commit()
            return False
        self.session.add(audit)
        await self.session.commit()
        return True

    async def record_audit(self, entry: OrderAuditLog) -> None:
        self.session.add(entry)
        await self.session.commit()


def audit_entry(
    order: Any,
    action: AuditAction,
    actor_id: Optional[str] = None,
    actor_name: Optional[str] = None,
    to_status: Optional[str] = None,
    reason: Optional[str] = None,
    snapshot: Optional[dict[str, Any]] = None,
) -> OrderAuditLog:
    from_status = getattr(order, "status", None)
    return OrderAuditLog(
        order_id=order.id,
        action=action,
        actor_id=actor_id,
        actor_name=actor_name,
        reason=reason,
        from_status=getattr(from_status, "value", from_status),
        to_status=getattr(to_status, "value", to_status),
        snapshot=snapshot,
        created_at=utcnow(),
    )


def snapshot_order(order: Order) -> dict[str, Any]:
    """JSON-safe copy of every column, taken before an administrative change."""
    data = {}
    for column in Order.__table__.columns:
        value = getattr(order, column.key)
        if hasattr(value, "value"):
            value = value.value
        elif hasattr(value, "isoformat"):
            value = value.isoformat()
        data[column.key] = value
    return data
