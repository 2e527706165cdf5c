"""
SQLAlchemy Database Models

Order records for the restaurant order lifecycle:
- Status workflow (kitchen, counter, delivery)
- Item snapshots taken at checkout time
- Billing-provider charge reference and payment status
- Courier assignment and delivery signature
- Audit trail for transitions and administrative overrides
- Cash register sessions
"""

import enum
import uuid

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.sql import func

from orderflow.database import Base


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDENTE = "PENDENTE"
    EM_PREPARO = "EM_PREPARO"
    PRONTO = "PRONTO"
    SAIU_ENTREGA = "SAIU_ENTREGA"
    ENTREGUE = "ENTREGUE"
    CANCELADO = "CANCELADO"


TERMINAL_STATUSES = frozenset({OrderStatus.ENTREGUE, OrderStatus.CANCELADO})


class ServiceType(str, enum.Enum):
    """Where the order is served: table, counter pickup or delivery."""
    MESA = "MESA"
    BALCAO = "BALCAO"
    DELIVERY = "DELIVERY"


class BillingType(str, enum.Enum):
    """Payment method tag."""
    PIX = "PIX"
    CREDIT_CARD = "CREDIT_CARD"
    MAQUININHA = "MAQUININHA"
    DINHEIRO = "DINHEIRO"


class AuditAction(str, enum.Enum):
    TRANSITION = "TRANSITION"
    PAYMENT_OVERRIDE = "PAYMENT_OVERRIDE"
    ADMIN_REPLACE = "ADMIN_REPLACE"
    ADMIN_DELETE = "ADMIN_DELETE"
    PAYMENT_WEBHOOK = "PAYMENT_WEBHOOK"


class CashSessionStatus(str, enum.Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


def new_id() -> str:
    return str(uuid.uuid4())


class Order(Base):
    """
    Main Order table.

    Mutated only through the lifecycle state machine or the audited
    administrative override. Items are snapshots: catalog edits never
    reach a placed order.
    """
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("code", "operating_date", name="uq_orders_code_operating_date"),
    )

    # Identity
    id = Column(String(36), primary_key=True, default=new_id)
    code = Column(String(8), nullable=False, index=True)
    operating_date = Column(Date, nullable=False, index=True)

    # =========================================================================
    # WORKFLOW
    # =========================================================================
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDENTE,
        nullable=False,
        index=True
    )
    service_type = Column(
        Enum(ServiceType),
        default=ServiceType.BALCAO,
        nullable=False
    )
    source = Column(String(50), nullable=False, default="PDV")

    # =========================================================================
    # CUSTOMER
    # =========================================================================
    customer_name = Column(String(100), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    table_number = Column(String(10), nullable=True)
    notes = Column(Text, nullable=True)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    items = Column(JSON, nullable=False)  # list of item snapshots
    total = Column(Float, nullable=True)

    # =========================================================================
    # PAYMENT
    # =========================================================================
    payment_status = Column(String(30), nullable=True)
    billing_type = Column(Enum(BillingType), nullable=True)
    charge_id = Column(String(100), nullable=True, index=True)
    invoice_url = Column(String(500), nullable=True)
    qr_payload = Column(Text, nullable=True)
    qr_image = Column(Text, nullable=True)
    payment_confirmed_by_id = Column(String(100), nullable=True)
    payment_confirmed_by_name = Column(String(100), nullable=True)
    payment_confirmed_at = Column(DateTime(timezone=True), nullable=True)

    # =========================================================================
    # DELIVERY
    # =========================================================================
    motoboy_name = Column(String(100), nullable=True)
    motoboy_phone = Column(String(20), nullable=True)
    delivered_by_id = Column(String(100), nullable=True)
    delivered_by_name = Column(String(100), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES or self.delivered_at is not None

    def __repr__(self):
        return f"<Order {self.code} - {self.service_type.value} - {self.status.value}>"


class OrderAuditLog(Base):
    """
    Who did what to an order, and when.

    Written in the same transaction as the change it records. Orders
    removed by an administrative delete keep their trail.
    """
    __tablename__ = "order_audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(String(36), nullable=False, index=True)
    action = Column(Enum(AuditAction), nullable=False)
    actor_id = Column(String(100), nullable=True)
    actor_name = Column(String(100), nullable=True)
    reason = Column(Text, nullable=True)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=True)
    snapshot = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self):
        return f"<OrderAuditLog {self.order_id} - {self.action.value}>"


class CashSession(Base):
    """Cash register session: opened at shift start, reconciled at close."""
    __tablename__ = "cash_sessions"
    __table_args__ = (
        # At most one OPEN row
        Index(
            "uq_cash_sessions_single_open",
            "status",
            unique=True,
            postgresql_where=text("status = 'OPEN'"),
            sqlite_where=text("status = 'OPEN'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    status = Column(
        Enum(CashSessionStatus),
        default=CashSessionStatus.OPEN,
        nullable=False,
        index=True
    )

    opened_at = Column(DateTime(timezone=True), nullable=False)
    opened_by_id = Column(String(100), nullable=True)
    opened_by_name = Column(String(100), nullable=False)
    initial_balance = Column(Float, nullable=False, default=0.0)

    closed_at = Column(DateTime(timezone=True), nullable=True)
    closed_by_id = Column(String(100), nullable=True)
    closed_by_name = Column(String(100), nullable=True)

    # Reconciliation
    expected_cash = Column(Float, nullable=True)
    counted_cash = Column(Float, nullable=True)
    variance = Column(Float, nullable=True)
    total_sales = Column(Float, nullable=False, default=0.0)
    total_pix = Column(Float, nullable=False, default=0.0)
    total_card = Column(Float, nullable=False, default=0.0)
    total_cash_sales = Column(Float, nullable=False, default=0.0)
    order_count = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)

    def __repr__(self):
        return f"<CashSession {self.id} - {self.status.value}>"
