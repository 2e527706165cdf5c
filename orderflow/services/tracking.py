"""
Customer Tracking Projector

Maps a single order onto the progress bar shown on the customer's
tracking page. The page polls (see TRACKING_POLL_SECONDS); it does not
subscribe to change notifications like the kitchen queue does.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from orderflow.models import OrderStatus
from orderflow.services.pricing import order_total

TRACKING_STEPS = (
    OrderStatus.PENDENTE,
    OrderStatus.EM_PREPARO,
    OrderStatus.PRONTO,
    OrderStatus.ENTREGUE,
)

STEP_LABELS = {
    OrderStatus.PENDENTE: "Pedido recebido",
    OrderStatus.EM_PREPARO: "Em preparo",
    OrderStatus.PRONTO: "Pronto",
    OrderStatus.ENTREGUE: "Entregue",
}

FINAL_STEP = len(TRACKING_STEPS) - 1

# Out for delivery is shown on the final step, not as a step of its own
_STEP_INDEX = {status.value: index for index, status in enumerate(TRACKING_STEPS)}
_STEP_INDEX[OrderStatus.SAIU_ENTREGA.value] = FINAL_STEP


@dataclass
class TrackingStep:
    status: str
    label: str
    reached: bool
    current: bool


@dataclass
class TrackingView:
    code: str
    status: str
    step_index: Optional[int]
    steps: list[TrackingStep]
    is_cancelled: bool
    is_finished: bool
    total: float
    updated_at: Optional[datetime]
    poll_interval_seconds: int


def step_index_for(status: Any) -> Optional[int]:
    """
    Position of ``status`` in the step sequence.

    CANCELADO has no position (None). Anything unrecognised sits on
    step 0.
    """
    value = getattr(status, "value", status)
    if value == OrderStatus.CANCELADO.value:
        return None
    return _STEP_INDEX.get(value, 0)


def project_tracking(order: Any, poll_interval_seconds: int = 15) -> TrackingView:
    status = getattr(order.status, "value", order.status)
    index = step_index_for(status)
    cancelled = index is None

    steps = [
        TrackingStep(
            status=step.value,
            label=STEP_LABELS[step],
            reached=not cancelled and position <= index,
            current=not cancelled and position == index,
        )
        for position, step in enumerate(TRACKING_STEPS)
    ]

    return TrackingView(
        code=order.code,
        status=status,
        step_index=index,
        steps=steps,
        is_cancelled=cancelled,
        is_finished=cancelled or status == OrderStatus.ENTREGUE.value,
        total=order_total(order),
        updated_at=getattr(order, "updated_at", None),
        poll_interval_seconds=poll_interval_seconds,
    )
