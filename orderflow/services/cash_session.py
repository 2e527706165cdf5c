"""
Cash Register Sessions

One register session is open at a time. Closing it reconciles the
drawer: sales since opening are totalled per billing type from the
order store, and the counted cash is compared with what the drawer
should hold.

    expected_cash = initial_balance + cash sales
    variance      = counted_cash - expected_cash
"""

import logging
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.exceptions import CashSessionError, CashSessionNotFound, ValidationError
from orderflow.models import BillingType, CashSession, CashSessionStatus, OrderStatus
from orderflow.services.pricing import order_total
from orderflow.services.store import OrderStore, utcnow

logger = logging.getLogger(__name__)

CARD_TYPES = frozenset({BillingType.CREDIT_CARD, BillingType.MAQUININHA})


def summarize_sales(orders: Iterable[Any]) -> dict[str, Any]:
    """Totals per billing type over non-cancelled orders."""
    totals = {
        "total_sales": 0.0,
        "total_pix": 0.0,
        "total_card": 0.0,
        "total_cash_sales": 0.0,
        "order_count": 0,
    }
    for order in orders:
        if OrderStatus(order.status) == OrderStatus.CANCELADO:
            continue
        amount = order_total(order)
        billing_type = BillingType(order.billing_type) if order.billing_type else None

        totals["order_count"] += 1
        totals["total_sales"] += amount
        if billing_type == BillingType.PIX:
            totals["total_pix"] += amount
        elif billing_type in CARD_TYPES:
            totals["total_card"] += amount
        elif billing_type == BillingType.DINHEIRO:
            totals["total_cash_sales"] += amount

    for key in ("total_sales", "total_pix", "total_card", "total_cash_sales"):
        totals[key] = round(totals[key], 2)
    return totals


class CashSessionService:
    """Open, inspect and close register sessions."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.orders = OrderStore(session)

    async def list_sessions(self, limit: int = 30) -> list[CashSession]:
        result = await self.session.execute(
            select(CashSession).order_by(CashSession.opened_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def get(self, session_id: str) -> CashSession:
        cash_session = await self.session.get(CashSession, session_id, populate_existing=True)
        if cash_session is None:
            raise CashSessionNotFound(session_id)
        return cash_session

    async def current(self) -> Optional[CashSession]:
        result = await self.session.execute(
            select(CashSession)
            .where(CashSession.status == CashSessionStatus.OPEN)
            .order_by(CashSession.opened_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def open(
        self,
        operator_name: str,
        initial_balance: float = 0.0,
        operator_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CashSession:
        if initial_balance < 0:
            raise ValidationError("Initial balance cannot be negative", fields=["initial_balance"])

        existing = await self.current()
        if existing is not None:
            raise CashSessionError(
                "A cash session is already open; close it first",
                open_session_id=existing.id,
            )

        cash_session = CashSession(
            status=CashSessionStatus.OPEN,
            opened_at=utcnow(),
            opened_by_id=operator_id,
            opened_by_name=operator_name,
            initial_balance=round(initial_balance, 2),
            notes=notes,
        )
        self.session.add(cash_session)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.warning(f"Cash session open by {operator_name} lost to a concurrent open")
            existing = await self.current()
            raise CashSessionError(
                "A cash session is already open; close it first",
                open_session_id=existing.id if existing else None,
            )
        await self.session.refresh(cash_session)

        logger.info(
            f"Cash session {cash_session.id} opened by {operator_name} "
            f"with {cash_session.initial_balance:.2f}"
        )
        return cash_session

    async def close(
        self,
        session_id: str,
        counted_cash: float,
        operator_name: str,
        operator_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> CashSession:
        cash_session = await self.get(session_id)
        if cash_session.status == CashSessionStatus.CLOSED:
            raise CashSessionError(
                f"Cash session {session_id} is already closed",
                closed_at=cash_session.closed_at.isoformat() if cash_session.closed_at else None,
            )
        if counted_cash < 0:
            raise ValidationError("Counted cash cannot be negative", fields=["counted_cash"])

        orders = await self.orders.list_created_since(cash_session.opened_at)
        totals = summarize_sales(orders)

        expected = round(cash_session.initial_balance + totals["total_cash_sales"], 2)
        for key, value in totals.items():
            setattr(cash_session, key, value)
        cash_session.expected_cash = expected
        cash_session.counted_cash = round(counted_cash, 2)
        cash_session.variance = round(counted_cash - expected, 2)
        cash_session.status = CashSessionStatus.CLOSED
        cash_session.closed_at = utcnow()
        cash_session.closed_by_id = operator_id
        cash_session.closed_by_name = operator_name
        if notes:
            cash_session.notes = f"{cash_session.notes}\n{notes}" if cash_session.notes else notes

        await self.session.commit()
        await self.session.refresh(cash_session)

        log = logger.warning if cash_session.variance else logger.info
        log(
            f"Cash session {session_id} closed by {operator_name}: "
            f"expected {expected:.2f}, counted {cash_session.counted_cash:.2f}, "
            f"variance {cash_session.variance:+.2f} over {totals['order_count']} orders"
        )
        return cash_session
