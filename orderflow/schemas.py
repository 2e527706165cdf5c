"""
Pydantic Schemas for Request/Response Validation

Covers the order API used by the PDV, the self-service cart and the
kitchen display, plus tracking, billing, catalog and cash sessions.
"""

import re
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from orderflow.models import (
    AuditAction,
    BillingType,
    CashSessionStatus,
    OrderStatus,
    ServiceType,
)
from orderflow.services.billing.reconciliation import order_is_paid
from orderflow.services.lifecycle import allowed_targets
from orderflow.services.pricing import order_total


# =============================================================================
# ORDER REQUEST SCHEMAS
# =============================================================================

class OrderItemIn(BaseModel):
    """
    Single item as sent by a client.

    The name may come as product_name, name or title; a missing or
    non-positive quantity is treated as 1.
    """
    model_config = ConfigDict(extra="ignore")

    product_name: Optional[str] = Field(None, max_length=150, examples=["X-Burger"])
    name: Optional[str] = Field(None, max_length=150)
    title: Optional[str] = Field(None, max_length=150)
    quantity: Optional[int] = Field(None, examples=[2])
    price: Optional[float] = Field(None, ge=0, examples=[25.0])
    total_price: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=500)


class PayerIn(BaseModel):
    """Who pays a provider charge."""
    name: str = Field(..., min_length=2, max_length=100, examples=["Maria Silva"])
    cpf_cnpj: Optional[str] = Field(None, examples=["12345678909"])
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, max_length=120)

    @field_validator("cpf_cnpj")
    @classmethod
    def validate_cpf_cnpj(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        digits = re.sub(r"[^\d]", "", v)
        if len(digits) not in (11, 14):
            raise ValueError("CPF must have 11 digits and CNPJ 14")
        return digits


class OrderCreate(BaseModel):
    """Request schema for creating a new order."""
    items: List[OrderItemIn] = Field(default_factory=list)
    service_type: ServiceType = Field(default=ServiceType.BALCAO, examples=["BALCAO"])
    source: Optional[str] = Field(None, max_length=50, examples=["PDV", "SELF_SERVICE"])

    customer_name: Optional[str] = Field(None, max_length=100)
    customer_phone: Optional[str] = Field(None, max_length=20)
    table_number: Optional[str] = Field(None, max_length=10)
    notes: Optional[str] = Field(None, max_length=500)

    # Payment
    billing_type: Optional[BillingType] = Field(None, examples=["PIX"])
    payment_status: Optional[str] = Field(None, max_length=30)
    total: Optional[float] = Field(None, examples=[50.0])
    request_charge: bool = Field(
        default=True,
        description="Create a provider charge when billing_type is PIX or CREDIT_CARD",
    )
    payer: Optional[PayerIn] = None


class StatusUpdate(BaseModel):
    """Request to move an order to another status."""
    status: OrderStatus = Field(..., examples=["EM_PREPARO"])
    expected_status: Optional[OrderStatus] = Field(
        None,
        description="Status the terminal displayed; a mismatch is a conflict",
    )
    motoboy_name: Optional[str] = Field(None, max_length=100)
    motoboy_phone: Optional[str] = Field(None, max_length=20)
    operator_id: Optional[str] = Field(None, max_length=100)
    operator_name: Optional[str] = Field(None, max_length=100)
    confirm_payment: bool = False


class AdminOrderReplace(BaseModel):
    """Full administrative overwrite of an order. Requires a reason."""
    reason: str = Field(..., min_length=3, max_length=500)
    status: OrderStatus
    service_type: ServiceType
    items: List[OrderItemIn] = Field(default_factory=list)
    source: Optional[str] = Field(None, max_length=50)
    customer_name: Optional[str] = Field(None, max_length=100)
    customer_phone: Optional[str] = Field(None, max_length=20)
    table_number: Optional[str] = Field(None, max_length=10)
    notes: Optional[str] = Field(None, max_length=500)
    total: Optional[float] = None
    billing_type: Optional[BillingType] = None
    payment_status: Optional[str] = Field(None, max_length=30)
    motoboy_name: Optional[str] = Field(None, max_length=100)
    motoboy_phone: Optional[str] = Field(None, max_length=20)


class DiscountPreviewRequest(BaseModel):
    discount_type: Literal["percent", "fixed"] = "percent"
    discount_value: float = Field(..., examples=[10])


class ChargeRequest(BaseModel):
    """Create (or re-create) a provider charge for an existing order."""
    payer: Optional[PayerIn] = None


# =============================================================================
# ORDER RESPONSE SCHEMAS
# =============================================================================

class ChargeResponse(BaseModel):
    charge_id: str
    status: str
    invoice_url: Optional[str] = None
    qr_payload: Optional[str] = None
    qr_image: Optional[str] = None


class OrderResponse(BaseModel):
    """Response schema for a single order."""
    id: str
    code: str
    operating_date: date
    status: str
    service_type: str
    source: Optional[str]
    customer_name: Optional[str]
    customer_phone: Optional[str]
    table_number: Optional[str]
    notes: Optional[str]
    items: List[Dict[str, Any]]
    total: float
    payment_status: Optional[str]
    is_paid: bool
    billing_type: Optional[str]
    charge_id: Optional[str]
    invoice_url: Optional[str]
    qr_payload: Optional[str]
    payment_confirmed_by_name: Optional[str]
    payment_confirmed_at: Optional[datetime]
    motoboy_name: Optional[str]
    motoboy_phone: Optional[str]
    delivered_by_id: Optional[str]
    delivered_by_name: Optional[str]
    delivered_at: Optional[datetime]
    allowed_transitions: List[str]
    created_at: datetime
    updated_at: Optional[datetime]

    @classmethod
    def from_order(cls, order) -> "OrderResponse":
        status = OrderStatus(order.status)
        return cls(
            id=order.id,
            code=order.code,
            operating_date=order.operating_date,
            status=status.value,
            service_type=ServiceType(order.service_type).value,
            source=order.source,
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            table_number=order.table_number,
            notes=order.notes,
            items=list(order.items or []),
            total=order_total(order),
            payment_status=order.payment_status,
            is_paid=order_is_paid(order),
            billing_type=BillingType(order.billing_type).value if order.billing_type else None,
            charge_id=order.charge_id,
            invoice_url=order.invoice_url,
            qr_payload=order.qr_payload,
            payment_confirmed_by_name=order.payment_confirmed_by_name,
            payment_confirmed_at=order.payment_confirmed_at,
            motoboy_name=order.motoboy_name,
            motoboy_phone=order.motoboy_phone,
            delivered_by_id=order.delivered_by_id,
            delivered_by_name=order.delivered_by_name,
            delivered_at=order.delivered_at,
            allowed_transitions=[s.value for s in allowed_targets(status)],
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class OrderCreateResponse(BaseModel):
    """Response after successfully creating an order."""
    success: bool = True
    id: str
    code: str
    status: str
    total: float
    charge: Optional[ChargeResponse] = None
    billing_error: Optional[str] = None
    charge_retry_queued: bool = False


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    total: int
    orders: List[OrderResponse]


class DiscountPreviewResponse(BaseModel):
    order_id: str
    subtotal: float
    discount_type: str
    discount_value: float
    total: float


class AuditLogResponse(BaseModel):
    id: int
    order_id: str
    action: AuditAction
    actor_id: Optional[str]
    actor_name: Optional[str]
    reason: Optional[str]
    from_status: Optional[str]
    to_status: Optional[str]
    snapshot: Optional[Dict[str, Any]]
    created_at: datetime

    class Config:
        from_attributes = True


class AdminActionResponse(BaseModel):
    success: bool = True
    message: str
    order_id: str


# =============================================================================
# KITCHEN / TRACKING SCHEMAS
# =============================================================================

class QueueCardResponse(BaseModel):
    id: str
    code: str
    status: str
    service_type: str
    customer_name: Optional[str]
    table_number: Optional[str]
    items: List[Dict[str, Any]]
    notes: Optional[str]
    total: float
    billing_type: Optional[str]
    motoboy_name: Optional[str]
    motoboy_phone: Optional[str]
    created_at: Optional[datetime]
    is_paid: Optional[bool] = None

    class Config:
        from_attributes = True


class KitchenQueueResponse(BaseModel):
    columns: Dict[str, List[QueueCardResponse]]
    payment_due: List[QueueCardResponse]
    active_count: int
    generated_at: datetime

    class Config:
        from_attributes = True


class TrackingStepResponse(BaseModel):
    status: str
    label: str
    reached: bool
    current: bool

    class Config:
        from_attributes = True


class TrackingResponse(BaseModel):
    code: str
    status: str
    step_index: Optional[int]
    steps: List[TrackingStepResponse]
    is_cancelled: bool
    is_finished: bool
    total: float
    updated_at: Optional[datetime]
    poll_interval_seconds: int

    class Config:
        from_attributes = True


# =============================================================================
# BILLING WEBHOOK SCHEMAS
# =============================================================================

class WebhookPayment(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    status: Optional[str] = None
    external_reference: Optional[str] = Field(None, alias="externalReference")


class BillingWebhook(BaseModel):
    """Asaas payment event, e.g. ``PAYMENT_RECEIVED``."""
    model_config = ConfigDict(extra="ignore")

    event: str
    payment: WebhookPayment


class WebhookAck(BaseModel):
    received: bool = True
    order_id: Optional[str] = None
    payment_status: Optional[str] = None


class PaymentSyncResponse(BaseModel):
    order_id: str
    charge_id: str
    payment_status: Optional[str]
    is_paid: bool


# =============================================================================
# CATALOG / CART SCHEMAS
# =============================================================================

class MenuResponse(BaseModel):
    categories: List[Dict[str, Any]]
    cached: bool


class CartQuoteRequest(BaseModel):
    """Price one configurable line against the current menu."""
    product_id: str
    quantity: int = Field(default=1, ge=1, le=99)
    notes: Optional[str] = Field(None, max_length=300)
    selections: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Option ids picked, per choice group id, in click order",
    )


class CartQuoteResponse(BaseModel):
    product_id: str
    product_name: str
    quantity: int
    unit_price: float
    total_price: float
    is_valid: bool
    missing_groups: List[str]
    item: Optional[Dict[str, Any]] = None


# =============================================================================
# CASH SESSION SCHEMAS
# =============================================================================

class CashSessionOpen(BaseModel):
    operator_name: str = Field(..., min_length=1, max_length=100)
    operator_id: Optional[str] = Field(None, max_length=100)
    initial_balance: float = Field(default=0.0, examples=[100.0])
    notes: Optional[str] = Field(None, max_length=500)


class CashSessionClose(BaseModel):
    operator_name: str = Field(..., min_length=1, max_length=100)
    operator_id: Optional[str] = Field(None, max_length=100)
    counted_cash: float = Field(..., examples=[180.0])
    notes: Optional[str] = Field(None, max_length=500)


class CashSessionResponse(BaseModel):
    id: str
    status: CashSessionStatus
    opened_at: datetime
    opened_by_id: Optional[str]
    opened_by_name: str
    initial_balance: float
    closed_at: Optional[datetime]
    closed_by_id: Optional[str]
    closed_by_name: Optional[str]
    expected_cash: Optional[float]
    counted_cash: Optional[float]
    variance: Optional[float]
    total_sales: float
    total_pix: float
    total_card: float
    total_cash_sales: float
    order_count: int
    notes: Optional[str]

    class Config:
        from_attributes = True


# =============================================================================
# GENERIC
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    change_notifier: str
    billing_service: str
    timestamp: datetime
