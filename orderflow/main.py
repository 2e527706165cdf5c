"""
FastAPI Application Entry Point

Restaurant Order Flow: order intake, kitchen display, delivery and
payment reconciliation for a single restaurant.

Endpoints:
    - POST /api/orders: Create order (PDV, self-service, integrations)
    - GET /api/orders: List orders
    - PATCH /api/orders/{id}/status: Lifecycle transition
    - GET /api/orders/track/{code}: Customer tracking view
    - GET /api/kds/queue, WS /ws/kds: Kitchen display projection
    - PUT/DELETE /api/admin/orders/{id}: Audited administrative override
    - POST /api/orders/{id}/payment/sync: Poll the provider for a charge's status
    - POST /webhooks/billing: Billing provider payment events
    - GET /api/menu, POST /api/cart/quote: Catalog and cart pricing
    - /api/cash-sessions: Register open / close
    - GET /health: System health check
"""

import asyncio
import logging
import sys
from contextlib import aclosing, asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Optional

from fastapi import (
    Depends,
    FastAPI,
    Header,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

# Windows-specific event loop policy (psycopg async needs a selector loop)
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from orderflow.core.config import get_settings, setup_logging
from orderflow.core.exceptions import (
    OrderFlowError,
    OrderNotFound,
    PaymentNotConfirmed,
    UpstreamBillingError,
    ValidationError,
)
from orderflow.database import async_session_maker, engine, get_db, init_db
from orderflow.models import AuditAction, OrderStatus, ServiceType
from orderflow.schemas import (
    AdminActionResponse,
    AdminOrderReplace,
    AuditLogResponse,
    BillingWebhook,
    CartQuoteRequest,
    CartQuoteResponse,
    CashSessionClose,
    CashSessionOpen,
    CashSessionResponse,
    ChargeRequest,
    ChargeResponse,
    DiscountPreviewRequest,
    DiscountPreviewResponse,
    ErrorResponse,
    HealthResponse,
    KitchenQueueResponse,
    MenuResponse,
    OrderCreate,
    OrderCreateResponse,
    OrderListResponse,
    OrderResponse,
    PaymentSyncResponse,
    QueueCardResponse,
    StatusUpdate,
    TrackingResponse,
    WebhookAck,
)
from orderflow.services.billing import (
    PROVIDER_BILLING_TYPES,
    BaseBillingService,
    PayerInfo,
    get_billing_service,
    is_paid,
    normalize_payment_status,
)
from orderflow.services.billing.charges import (
    apply_payment_status,
    charge_order,
    sync_charge_status,
)
from orderflow.services.cart import CartLine
from orderflow.services.cash_session import CashSessionService
from orderflow.services.catalog import CatalogCache, get_catalog_cache
from orderflow.services.lifecycle import Operator, OrderLifecycle, TransitionRequest
from orderflow.services.notifications import (
    BaseChangeNotifier,
    get_change_notifier,
    notify_changed,
)
from orderflow.services.orders import create_order as create_order_record
from orderflow.services.orders import normalize_items
from orderflow.services.pricing import apply_discount, compute_order_total, order_total
from orderflow.services.queue import QueueProjector, project_queue
from orderflow.services.store import OrderStore, audit_entry, snapshot_order, utcnow
from orderflow.services.tracking import project_tracking
from orderflow.tasks import retry_order_charge

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    logger.info("Database initialized")

    billing = get_billing_service()
    notifier = get_change_notifier()
    logger.info(f"Billing Service: {billing.provider_name}")
    logger.info(f"Change Notifier: {notifier.provider_name}")

    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"Missing production config: {missing}")

    logger.info("Application ready")

    yield  # Application runs

    logger.info("Shutting down...")
    await billing.close()
    await notifier.close()
    await engine.dispose()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Order intake, kitchen display and delivery flow for a single "
        "restaurant, with provider-backed PIX and card payments."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

async def get_store(db: AsyncSession = Depends(get_db)) -> OrderStore:
    return OrderStore(db)


def get_notifier() -> BaseChangeNotifier:
    return get_change_notifier()


def get_billing() -> BaseBillingService:
    return get_billing_service()


def get_catalog() -> CatalogCache:
    return get_catalog_cache()


def enqueue_charge_retry(order_id: str, payer: Optional[dict]) -> bool:
    """Queue a background charge; a broker outage is logged, not raised."""
    try:
        retry_order_charge.delay(order_id, payer)
        return True
    except Exception as e:
        logger.error(f"Could not queue charge retry for {order_id}: {e}")
        return False


def get_charge_retry() -> Callable[[str, Optional[dict]], bool]:
    return enqueue_charge_retry


def get_store_factory():
    """Opens a store on its own session; used by long-lived websocket projections."""
    @asynccontextmanager
    async def open_store():
        async with async_session_maker() as session:
            yield OrderStore(session)

    return open_store


async def require_operator(
    x_operator_id: Optional[str] = Header(None),
    x_operator_name: Optional[str] = Header(None),
) -> Operator:
    """Administrative endpoints must say who is acting."""
    missing = [
        header for header, value in (
            ("X-Operator-Id", x_operator_id),
            ("X-Operator-Name", x_operator_name),
        )
        if not value or not value.strip()
    ]
    if missing:
        raise ValidationError("Operator identification headers are required", fields=missing)
    return Operator(id=x_operator_id.strip(), name=x_operator_name.strip())


async def load_order(order_id: str, store: OrderStore):
    order = await store.get_by_id(order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "restaurant": settings.restaurant_name,
        "currency": settings.currency,
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    notifier: BaseChangeNotifier = Depends(get_notifier),
    billing: BaseBillingService = Depends(get_billing),
) -> HealthResponse:
    """Verify all system components are operational."""
    db_status = "healthy"
    try:
        await db.execute(select(1))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    notifier_status = "healthy" if await notifier.health_check() else "unhealthy"
    billing_status = "healthy" if await billing.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, notifier_status, billing_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        change_notifier=notifier_status,
        billing_service=billing_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# ORDER API ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders",
    response_model=OrderCreateResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Create Order",
)
async def create_order(
    order_data: OrderCreate,
    store: OrderStore = Depends(get_store),
    billing: BaseBillingService = Depends(get_billing),
    notifier: BaseChangeNotifier = Depends(get_notifier),
    queue_charge_retry: Callable = Depends(get_charge_retry),
) -> OrderCreateResponse:
    """
    Create a PENDENTE order.

    When the billing type is PIX or CREDIT_CARD a provider charge is
    created right away. A provider failure never fails the order: the
    response carries ``billing_error`` and a background retry is queued.
    """
    order = await create_order_record(
        store,
        items=[item.model_dump() for item in order_data.items],
        service_type=order_data.service_type,
        source=order_data.source,
        customer_name=order_data.customer_name,
        customer_phone=order_data.customer_phone,
        table_number=order_data.table_number,
        notes=order_data.notes,
        billing_type=order_data.billing_type,
        payment_status=order_data.payment_status,
        total=order_data.total,
    )

    response = OrderCreateResponse(
        id=order.id,
        code=order.code,
        status=order.status.value,
        total=order_total(order),
    )

    wants_charge = (
        order_data.request_charge
        and order_data.billing_type is not None
        and order_data.billing_type.value in PROVIDER_BILLING_TYPES
        and not is_paid(order.payment_status)
    )
    if wants_charge:
        payer = PayerInfo(**order_data.payer.model_dump()) if order_data.payer else None
        try:
            charge = await charge_order(store, billing, order, payer)
            response.charge = ChargeResponse(**charge.to_dict())
        except UpstreamBillingError as e:
            logger.error(f"Order {response.code}: charge failed ({e.message}); order kept")
            response.billing_error = e.message
            response.charge_retry_queued = queue_charge_retry(
                response.id,
                order_data.payer.model_dump() if order_data.payer else None,
            )

    await notify_changed(notifier, response.id)
    return response


@app.get(
    "/api/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="List Orders",
)
async def list_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    status: Optional[OrderStatus] = Query(None),
    store: OrderStore = Depends(get_store),
) -> OrderListResponse:
    """List orders, newest first, optionally filtered by status."""
    orders = await store.list_orders(status=status, skip=skip, limit=limit)
    return OrderListResponse(
        total=len(orders),
        orders=[OrderResponse.from_order(o) for o in orders],
    )


@app.get(
    "/api/orders/track/{code}",
    response_model=TrackingResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Tracking"],
    summary="Track Order by Code",
)
async def track_order(code: str, store: OrderStore = Depends(get_store)) -> TrackingResponse:
    """Customer-facing progress view. Clients poll it at ``poll_interval_seconds``."""
    order = await store.get_by_code(code)
    if order is None:
        raise OrderNotFound(code)
    view = project_tracking(order, poll_interval_seconds=settings.tracking_poll_seconds)
    return TrackingResponse.model_validate(view)


@app.get(
    "/api/orders/{order_id}",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Get Order",
)
async def get_order(order_id: str, store: OrderStore = Depends(get_store)) -> OrderResponse:
    return OrderResponse.from_order(await load_order(order_id, store))


@app.patch(
    "/api/orders/{order_id}/status",
    response_model=OrderResponse,
    responses={
        400: {"model": ErrorResponse},
        402: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    tags=["Orders"],
    summary="Change Order Status",
)
async def update_order_status(
    order_id: str,
    update: StatusUpdate,
    store: OrderStore = Depends(get_store),
    notifier: BaseChangeNotifier = Depends(get_notifier),
) -> OrderResponse:
    """
    Move an order along the lifecycle.

    Responses:
        - 409 invalid_transition: target not reachable from current status
        - 409 conflicting_transition: another terminal moved it first
        - 402 payment_not_confirmed: delivery of an unpaid order; resend
          with ``confirm_payment`` once payment was collected by hand
    """
    operator = None
    if update.operator_id or update.operator_name:
        operator = Operator(id=update.operator_id or "", name=update.operator_name or "")

    order = await OrderLifecycle(store, notifier).transition(
        order_id,
        TransitionRequest(
            target=update.status,
            expected_status=update.expected_status,
            motoboy_name=update.motoboy_name,
            motoboy_phone=update.motoboy_phone,
            operator=operator,
            confirm_payment=update.confirm_payment,
        ),
    )
    return OrderResponse.from_order(order)


@app.post(
    "/api/orders/{order_id}/discount-preview",
    response_model=DiscountPreviewResponse,
    tags=["Orders"],
    summary="Preview Discounted Total",
)
async def discount_preview(
    order_id: str,
    body: DiscountPreviewRequest,
    store: OrderStore = Depends(get_store),
) -> DiscountPreviewResponse:
    """Advisory only: the stored order is not changed."""
    order = await load_order(order_id, store)
    subtotal = order_total(order)
    return DiscountPreviewResponse(
        order_id=order.id,
        subtotal=subtotal,
        discount_type=body.discount_type,
        discount_value=body.discount_value,
        total=apply_discount(subtotal, body.discount_type, body.discount_value),
    )


@app.get(
    "/api/orders/{order_id}/audit",
    response_model=list[AuditLogResponse],
    tags=["Admin"],
    summary="Order Audit Trail",
)
async def order_audit(order_id: str, store: OrderStore = Depends(get_store)) -> list[AuditLogResponse]:
    """Audit rows outlive the order, so deleted orders still have a trail."""
    entries = await store.list_audit(order_id)
    if not entries and await store.get_by_id(order_id) is None:
        raise OrderNotFound(order_id)
    return [AuditLogResponse.model_validate(e) for e in entries]


# =============================================================================
# KITCHEN DISPLAY ENDPOINTS
# =============================================================================

@app.get(
    "/api/kds/queue",
    response_model=KitchenQueueResponse,
    tags=["Kitchen"],
    summary="Kitchen Queue Snapshot",
)
async def kitchen_queue(store: OrderStore = Depends(get_store)) -> KitchenQueueResponse:
    queue = project_queue(await store.list_active())
    return KitchenQueueResponse.model_validate(queue)


@app.get(
    "/api/kds/payment-due",
    response_model=list[QueueCardResponse],
    tags=["Kitchen"],
    summary="Ready Orders Awaiting Payment",
)
async def payment_due(store: OrderStore = Depends(get_store)) -> list[QueueCardResponse]:
    queue = project_queue(await store.list_active())
    return [QueueCardResponse.model_validate(card) for card in queue.payment_due]


@app.websocket("/ws/kds")
async def kitchen_socket(
    websocket: WebSocket,
    store_factory=Depends(get_store_factory),
    notifier: BaseChangeNotifier = Depends(get_notifier),
):
    """Pushes a freshly recomputed queue on connect and after every change."""
    await websocket.accept()
    projector = QueueProjector(store_factory, notifier)
    logger.info("Kitchen display connected")
    try:
        async with aclosing(projector.follow()) as updates:
            async for queue in updates:
                payload = KitchenQueueResponse.model_validate(queue).model_dump(mode="json")
                await websocket.send_json(payload)
    except WebSocketDisconnect:
        logger.info("Kitchen display disconnected")


# =============================================================================
# ADMINISTRATIVE OVERRIDE ENDPOINTS
# =============================================================================

@app.put(
    "/api/admin/orders/{order_id}",
    response_model=OrderResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Admin"],
    summary="Replace Order (Audited)",
)
async def admin_replace_order(
    order_id: str,
    body: AdminOrderReplace,
    operator: Operator = Depends(require_operator),
    store: OrderStore = Depends(get_store),
    notifier: BaseChangeNotifier = Depends(get_notifier),
) -> OrderResponse:
    """
    Last-write-wins overwrite that bypasses the transition table.

    Data-model rules still hold: at least one named item, valid enums,
    and courier fields only on delivery orders.
    """
    order = await load_order(order_id, store)

    items = normalize_items([item.model_dump() for item in body.items])
    if body.service_type != ServiceType.DELIVERY and (body.motoboy_name or body.motoboy_phone):
        raise ValidationError(
            "Courier fields are only allowed on delivery orders",
            fields=["motoboy_name", "motoboy_phone"],
        )
    if body.total is not None and body.total < 0:
        raise ValidationError("Total cannot be negative", fields=["total"])

    payment_status = normalize_payment_status(body.payment_status)
    delivered = body.status == OrderStatus.ENTREGUE
    if delivered and not is_paid(payment_status):
        raise PaymentNotConfirmed(
            amount_due=body.total if body.total is not None else compute_order_total(items),
            billing_type=body.billing_type.value if body.billing_type else None,
        )

    values: dict[str, Any] = {
        "status": body.status,
        "service_type": body.service_type,
        "items": items,
        "source": body.source or order.source,
        "customer_name": body.customer_name,
        "customer_phone": body.customer_phone,
        "table_number": body.table_number if body.service_type == ServiceType.MESA else None,
        "notes": body.notes,
        "total": body.total,
        "billing_type": body.billing_type,
        "payment_status": payment_status,
        "motoboy_name": body.motoboy_name,
        "motoboy_phone": body.motoboy_phone,
    }
    if not delivered:
        values.update(delivered_by_id=None, delivered_by_name=None, delivered_at=None)
    elif order.delivered_at is None:
        values.update(
            delivered_by_id=operator.id,
            delivered_by_name=operator.name,
            delivered_at=utcnow(),
        )
    entry = audit_entry(
        order,
        AuditAction.ADMIN_REPLACE,
        actor_id=operator.id,
        actor_name=operator.name,
        to_status=body.status,
        reason=body.reason,
        snapshot=snapshot_order(order),
    )
    code, previous = order.code, order.status.value

    if not await store.full_replace(order_id, values, entry):
        raise OrderNotFound(order_id)

    logger.warning(
        f"ADMIN override: order {code} replaced by {operator.name} ({operator.id}), "
        f"{previous} -> {body.status.value}: {body.reason}"
    )
    await notify_changed(notifier, order_id)
    return OrderResponse.from_order(await load_order(order_id, store))


@app.delete(
    "/api/admin/orders/{order_id}",
    response_model=AdminActionResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Admin"],
    summary="Delete Order (Audited)",
)
async def admin_delete_order(
    order_id: str,
    reason: str = Query(..., min_length=3, max_length=500),
    operator: Operator = Depends(require_operator),
    store: OrderStore = Depends(get_store),
    notifier: BaseChangeNotifier = Depends(get_notifier),
) -> AdminActionResponse:
    order = await load_order(order_id, store)
    entry = audit_entry(
        order,
        AuditAction.ADMIN_DELETE,
        actor_id=operator.id,
        actor_name=operator.name,
        reason=reason,
        snapshot=snapshot_order(order),
    )
    code = order.code

    if not await store.delete(order_id, entry):
        raise OrderNotFound(order_id)

    logger.warning(f"ADMIN override: order {code} deleted by {operator.name} ({operator.id}): {reason}")
    await notify_changed(notifier, order_id)
    return AdminActionResponse(message=f"Order {code} deleted", order_id=order_id)


# =============================================================================
# BILLING ENDPOINTS
# =============================================================================

@app.post(
    "/api/orders/{order_id}/charge",
    response_model=ChargeResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    tags=["Billing"],
    summary="Create Provider Charge",
)
async def create_charge(
    order_id: str,
    body: ChargeRequest,
    store: OrderStore = Depends(get_store),
    billing: BaseBillingService = Depends(get_billing),
    notifier: BaseChangeNotifier = Depends(get_notifier),
) -> ChargeResponse:
    """Charge (or re-charge) an order, e.g. after a checkout billing failure."""
    order = await load_order(order_id, store)
    if is_paid(order.payment_status):
        raise ValidationError(f"Order {order.code} is already paid", fields=["payment_status"])
    if order.status == OrderStatus.CANCELADO:
        raise ValidationError(f"Order {order.code} is cancelled", fields=["status"])

    payer = PayerInfo(**body.payer.model_dump()) if body.payer else None
    charge = await charge_order(store, billing, order, payer)
    await notify_changed(notifier, order_id)
    return ChargeResponse(**charge.to_dict())


@app.post(
    "/api/orders/{order_id}/payment/sync",
    response_model=PaymentSyncResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    tags=["Billing"],
    summary="Poll Provider Payment Status",
)
async def sync_payment(
    order_id: str,
    store: OrderStore = Depends(get_store),
    billing: BaseBillingService = Depends(get_billing),
    notifier: BaseChangeNotifier = Depends(get_notifier),
) -> PaymentSyncResponse:
    """Ask the provider directly when a webhook is late or lost."""
    order = await load_order(order_id, store)
    status = await sync_charge_status(store, billing, notifier, order)
    return PaymentSyncResponse(
        order_id=order_id,
        charge_id=order.charge_id,
        payment_status=status,
        is_paid=is_paid(status),
    )


@app.post(
    "/webhooks/billing",
    response_model=WebhookAck,
    tags=["Billing"],
    summary="Billing Provider Webhook",
)
async def billing_webhook(
    event: BillingWebhook,
    access_token: Optional[str] = Header(None, alias="asaas-access-token"),
    store: OrderStore = Depends(get_store),
    billing: BaseBillingService = Depends(get_billing),
    notifier: BaseChangeNotifier = Depends(get_notifier),
) -> WebhookAck:
    """
    Payment events from the provider. Statuses are normalized before
    they are stored, so every paid synonym lands as PAYMENT_RECEIVED.
    """
    if not billing.verify_webhook(access_token):
        logger.warning(f"Billing webhook rejected: bad token (event {event.event})")
        raise HTTPException(status_code=401, detail="Invalid webhook token")

    payment = event.payment
    order = None
    if payment.external_reference:
        order = await store.get_by_id(payment.external_reference)
    if order is None:
        order = await store.get_by_charge_id(payment.id)
    if order is None:
        # Acknowledge so the provider stops retrying events for charges we never issued
        logger.warning(f"Billing webhook {event.event} for unknown charge {payment.id}")
        return WebhookAck(received=True)

    status = await apply_payment_status(
        store, notifier, order, payment.status or event.event
    )
    return WebhookAck(received=True, order_id=order.id, payment_status=status)


# =============================================================================
# CATALOG & CART ENDPOINTS
# =============================================================================

@app.get("/api/menu", response_model=MenuResponse, tags=["Catalog"], summary="Menu")
async def get_menu(catalog: CatalogCache = Depends(get_catalog)) -> MenuResponse:
    cached = catalog.is_fresh
    return MenuResponse(categories=await catalog.get_menu(), cached=cached)


@app.post("/api/menu/invalidate", tags=["Catalog"], summary="Drop Cached Menu")
async def invalidate_menu(catalog: CatalogCache = Depends(get_catalog)) -> dict[str, bool]:
    catalog.invalidate()
    return {"invalidated": True}


@app.post(
    "/api/cart/quote",
    response_model=CartQuoteResponse,
    responses={400: {"model": ErrorResponse}},
    tags=["Catalog"],
    summary="Price a Cart Line",
)
async def cart_quote(
    body: CartQuoteRequest,
    catalog: CatalogCache = Depends(get_catalog),
) -> CartQuoteResponse:
    """
    Apply the option picks in click order and price the line. ``item``
    is the order snapshot, present only when every required group is met.
    """
    product = await catalog.get_product(body.product_id)
    line = CartLine(product=product, quantity=body.quantity, notes=body.notes or "")
    for group_id, option_ids in body.selections.items():
        for option_id in option_ids:
            line.toggle(group_id, option_id)

    valid = line.is_valid()
    return CartQuoteResponse(
        product_id=product.id,
        product_name=product.name,
        quantity=line.quantity,
        unit_price=round(line.unit_price, 2),
        total_price=line.total_price,
        is_valid=valid,
        missing_groups=line.missing_groups(),
        item=line.to_order_item() if valid else None,
    )


# =============================================================================
# CASH SESSION ENDPOINTS
# =============================================================================

@app.get(
    "/api/cash-sessions",
    response_model=list[CashSessionResponse],
    tags=["Cash"],
    summary="List Cash Sessions",
)
async def list_cash_sessions(
    limit: int = Query(30, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> list[CashSessionResponse]:
    sessions = await CashSessionService(db).list_sessions(limit=limit)
    return [CashSessionResponse.model_validate(s) for s in sessions]


@app.get(
    "/api/cash-sessions/current",
    response_model=Optional[CashSessionResponse],
    tags=["Cash"],
    summary="Open Cash Session",
)
async def current_cash_session(db: AsyncSession = Depends(get_db)) -> Optional[CashSessionResponse]:
    """The open session, or null when the register is closed."""
    current = await CashSessionService(db).current()
    return CashSessionResponse.model_validate(current) if current else None


@app.post(
    "/api/cash-sessions",
    response_model=CashSessionResponse,
    status_code=201,
    responses={409: {"model": ErrorResponse}},
    tags=["Cash"],
    summary="Open Cash Session",
)
async def open_cash_session(
    body: CashSessionOpen,
    db: AsyncSession = Depends(get_db),
) -> CashSessionResponse:
    opened = await CashSessionService(db).open(
        operator_name=body.operator_name,
        operator_id=body.operator_id,
        initial_balance=body.initial_balance,
        notes=body.notes,
    )
    return CashSessionResponse.model_validate(opened)


@app.patch(
    "/api/cash-sessions/{session_id}/close",
    response_model=CashSessionResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Cash"],
    summary="Close Cash Session",
)
async def close_cash_session(
    session_id: str,
    body: CashSessionClose,
    db: AsyncSession = Depends(get_db),
) -> CashSessionResponse:
    closed = await CashSessionService(db).close(
        session_id,
        counted_cash=body.counted_cash,
        operator_name=body.operator_name,
        operator_id=body.operator_id,
        notes=body.notes,
    )
    return CashSessionResponse.model_validate(closed)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderFlowError)
async def order_flow_exception_handler(request: Request, exc: OrderFlowError) -> JSONResponse:
    """Domain errors carry their own status code and payload."""
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "internal_error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "orderflow.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
