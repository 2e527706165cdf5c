"""
Celery Tasks
Background billing work that must not hold up the order API.

    - retry_order_charge: create the provider charge that failed at checkout
    - sync_payment_status: poll the provider for a charge's status

Each task runs its coroutine with asyncio.run() on a fresh event loop,
so it builds its own engine, billing client and notifier and disposes
of them before returning.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from orderflow.celery_worker import celery_app
from orderflow.core.config import get_logger, get_settings
from orderflow.core.exceptions import UpstreamBillingError
from orderflow.database import build_engine, build_session_maker
from orderflow.models import OrderStatus
from orderflow.services.billing import PayerInfo, create_billing_service
from orderflow.services.billing.charges import charge_order, sync_charge_status
from orderflow.services.notifications import create_change_notifier, notify_changed
from orderflow.services.store import OrderStore

logger = get_logger(__name__)


@asynccontextmanager
async def task_services():
    """Engine-bound store plus billing and notifier clients for one task run."""
    settings = get_settings()
    engine = build_engine(settings.database_url)
    billing = create_billing_service()
    notifier = create_change_notifier()
    try:
        async with build_session_maker(engine)() as session:
            yield OrderStore(session), billing, notifier
    finally:
        await billing.close()
        await notifier.close()
        await engine.dispose()


async def _retry_charge(order_id: str, payer: Optional[dict[str, Any]]) -> dict[str, Any]:
    async with task_services() as (store, billing, notifier):
        order = await store.get_by_id(order_id)
        if order is None:
            return {"success": False, "order_id": order_id, "message": "order not found"}
        if order.charge_id:
            return {"success": True, "order_id": order_id, "charge_id": order.charge_id,
                    "message": "charge already attached"}
        if order.status == OrderStatus.CANCELADO:
            return {"success": False, "order_id": order_id, "message": "order cancelled"}

        charge = await charge_order(
            store,
            billing,
            order,
            PayerInfo(**payer) if payer else None,
        )
        await notify_changed(notifier, order_id)
        return {"success": True, "order_id": order_id, "charge_id": charge.charge_id}


async def _sync_status(order_id: str) -> dict[str, Any]:
    async with task_services() as (store, billing, notifier):
        order = await store.get_by_id(order_id)
        if order is None or not order.charge_id:
            return {"success": False, "order_id": order_id, "message": "no charge to sync"}

        status = await sync_charge_status(store, billing, notifier, order)
        return {"success": True, "order_id": order_id, "payment_status": status}


@celery_app.task(
    bind=True,
    max_retries=5,
    default_retry_delay=10,
    autoretry_for=(UpstreamBillingError,),
    retry_backoff=True,
)
def retry_order_charge(self, order_id: str, payer: Optional[dict] = None) -> dict:
    """
    Create the provider charge for an order whose checkout charge failed.

    Args:
        order_id: Order to charge
        payer: PayerInfo fields, when the client sent them at checkout

    Returns:
        dict: Result of the attempt
    """
    task_id = self.request.id
    logger.info(f"Task {task_id}: charging order {order_id} (attempt {self.request.retries + 1})")
    start_time = time.time()

    try:
        result = asyncio.run(_retry_charge(order_id, payer))
    except UpstreamBillingError as e:
        logger.error(f"Task {task_id}: charge for {order_id} failed - {e.message}")
        raise

    result["task_id"] = task_id
    result["processing_time_seconds"] = round(time.time() - start_time, 3)
    logger.info(f"Task {task_id}: order {order_id} - {result}")
    return result


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    autoretry_for=(UpstreamBillingError,),
    retry_backoff=True,
)
def sync_payment_status(self, order_id: str) -> dict:
    """Poll the provider for the order's charge and store what it reports."""
    result = asyncio.run(_sync_status(order_id))
    result["task_id"] = self.request.id
    logger.info(f"Task {self.request.id}: payment sync for {order_id} - {result}")
    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        "status": "healthy",
        "worker": "celery",
        "timestamp": datetime.now().isoformat(),
    }
