"""
Order Creation

Checkout entry point shared by the PDV, the self-service cart and the
public API: normalizes items into snapshots, assigns a ticket code that
is unique within the operating period, and persists the order as
PENDENTE.
"""

import logging
import random
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError

from orderflow.core.config import Settings, get_settings
from orderflow.core.exceptions import OrderCodeUnavailable, ValidationError
from orderflow.models import BillingType, Order, OrderStatus, ServiceType
from orderflow.services.billing.reconciliation import normalize_payment_status
from orderflow.services.store import OrderStore

logger = logging.getLogger(__name__)

NAME_KEYS = ("product_name", "name", "title")


def _get(item: Any, key: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(key)
    return getattr(item, key, None)


def normalize_items(items: Optional[Iterable[Any]]) -> list[dict[str, Any]]:
    """
    Turn raw cart/API items into stored snapshots.

    The name may arrive as ``product_name``, ``name`` or ``title``; a
    missing or non-positive quantity becomes 1.

    Raises:
        ValidationError: no items, or an item without any name
    """
    items = list(items or [])
    if not items:
        raise ValidationError("An order needs at least one item", fields=["items"])

    normalized = []
    for index, item in enumerate(items, start=1):
        product_name = None
        for key in NAME_KEYS:
            value = _get(item, key)
            if value is not None and str(value).strip():
                product_name = str(value).strip()
                break
        if product_name is None:
            raise ValidationError(
                f"Item {index} has no product_name (send product_name, name or title)",
                fields=[f"items[{index - 1}].product_name"],
            )

        try:
            quantity = int(_get(item, "quantity") or 0)
        except (TypeError, ValueError):
            quantity = 0

        price = _get(item, "price")
        total_price = _get(item, "total_price")
        notes = _get(item, "notes")
        normalized.append({
            "product_name": product_name,
            "quantity": quantity if quantity > 0 else 1,
            "notes": str(notes) if notes else None,
            "price": float(price) if price is not None else None,
            "total_price": float(total_price) if total_price is not None else None,
        })
    return normalized


def generate_order_code(prefix: str = "A", rng: random.Random = random) -> str:
    """Ticket code: one letter plus three digits, e.g. ``A123``."""
    return f"{prefix}{rng.randint(100, 999)}"


def current_operating_date(settings: Settings) -> date:
    return datetime.now(ZoneInfo(settings.operating_timezone)).date()


async def create_order(
    store: OrderStore,
    items: Iterable[Any],
    service_type: ServiceType = ServiceType.BALCAO,
    source: Optional[str] = None,
    customer_name: Optional[str] = None,
    customer_phone: Optional[str] = None,
    table_number: Optional[str] = None,
    notes: Optional[str] = None,
    billing_type: Optional[BillingType] = None,
    payment_status: Optional[str] = None,
    total: Optional[float] = None,
    settings: Optional[Settings] = None,
    rng: random.Random = random,
) -> Order:
    """
    Validate and persist a new PENDENTE order.

    Codes are drawn at random; a collision with another order of the same
    operating period violates the (code, operating_date) constraint and
    triggers a redraw, up to ``order_code_max_attempts`` times.
    """
    settings = settings or get_settings()
    snapshot = normalize_items(items)
    operating_date = current_operating_date(settings)

    if total is not None and total < 0:
        raise ValidationError("Total cannot be negative", fields=["total"])

    for attempt in range(1, settings.order_code_max_attempts + 1):
        code = generate_order_code(settings.order_code_prefix, rng)
        order = Order(
            code=code,
            operating_date=operating_date,
            status=OrderStatus.PENDENTE,
            service_type=service_type,
            source=source or "PDV",
            customer_name=customer_name,
            customer_phone=customer_phone,
            table_number=table_number if service_type == ServiceType.MESA else None,
            notes=notes,
            items=snapshot,
            total=total,
            billing_type=billing_type,
            payment_status=normalize_payment_status(payment_status),
        )
        try:
            order = await store.create(order)
        except IntegrityError:
            logger.warning(
                f"Order code {code} already used on {operating_date} "
                f"(attempt {attempt}/{settings.order_code_max_attempts})"
            )
            continue

        logger.info(
            f"Order {order.code} created ({order.service_type.value}, "
            f"{len(snapshot)} items, source={order.source})"
        )
        return order

    raise OrderCodeUnavailable(
        f"Could not assign a free order code for {operating_date}",
        attempts=settings.order_code_max_attempts,
    )
