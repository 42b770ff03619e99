"""
SQLAlchemy ORM models for the Print Order Service.

Tables:
    orders    — one row per checkout attempt (duplicate-guarded), never deleted
    invoices  — at most one per order, keyed by an id derived from the tracking code

Money is stored in minor units (paise) as integers.
"""
import uuid
from datetime import datetime

from sqlalchemy import (
    Column, Integer, BigInteger, String, Boolean, DateTime, Text, Index,
)

from database import Base
from domain.enums import (
    DeliveryStatus, DocumentKind, FulfillmentStatus, RecordSource, SettlementStatus,
)


def _new_order_id() -> str:
    return uuid.uuid4().hex


class Order(Base):
    """A print order and its three status axes."""
    __tablename__ = "orders"

    id = Column(String(96), primary_key=True, default=_new_order_id)
    tracking_code = Column(String(40), unique=True, nullable=False, index=True)

    # Ownership
    customer_id = Column(String(128), nullable=False, index=True)
    customer_name = Column(String(200), nullable=False)
    customer_email = Column(String(254), nullable=False)

    # Commercial
    product_type = Column(String(50), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price_minor = Column(BigInteger, nullable=False)
    total_minor = Column(BigInteger, nullable=False, index=True)
    currency = Column(String(3), nullable=False, default="INR")
    specifications = Column(Text, nullable=True)
    gst_number = Column(String(15), nullable=True)
    hsn_code = Column(String(8), nullable=False, default="4911")

    # Delivery + artwork
    delivery_address = Column(Text, nullable=False)
    artifact_url = Column(Text, nullable=False)
    artifact_name = Column(String(255), nullable=True)

    # Status axes
    settlement_status = Column(String(20), nullable=False, default=SettlementStatus.UNSETTLED.value)
    fulfillment_status = Column(String(20), nullable=False, default=FulfillmentStatus.PLACED.value)
    execution_progress = Column(Integer, nullable=False, default=20)

    # Settlement detail (folded payment attempt)
    gateway_order_ref = Column(String(64), nullable=True, index=True)
    payment_ref = Column(String(64), nullable=True)
    payment_method = Column(String(64), nullable=True)
    settlement_source = Column(String(20), nullable=True)  # "gateway" | "fallback"
    settled_at = Column(DateTime, nullable=True)

    # Provenance + reconciliation
    record_source = Column(String(20), nullable=False, default=RecordSource.STORE.value)
    needs_reconciliation = Column(Boolean, nullable=False, default=False)
    reconciliation_note = Column(Text, nullable=True)

    # Administrative overrides
    last_override_at = Column(DateTime, nullable=True)
    override_reason = Column(Text, nullable=True)

    invoice_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    last_updated = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        # Duplicate guard: same owner + identical total, newest first
        Index("ix_orders_customer_total_created", "customer_id", "total_minor", "created_at"),
    )


class Invoice(Base):
    """Billing document for a settled order."""
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(String(64), unique=True, nullable=False, index=True)
    order_id = Column(String(96), unique=True, nullable=False, index=True)
    tracking_code = Column(String(40), nullable=False, index=True)
    customer_id = Column(String(128), nullable=False)
    customer_email = Column(String(254), nullable=False)

    subtotal_minor = Column(BigInteger, nullable=False)
    cgst_minor = Column(BigInteger, nullable=False)
    sgst_minor = Column(BigInteger, nullable=False)
    total_minor = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    payment_ref = Column(String(64), nullable=True)
    payment_method = Column(String(64), nullable=True)

    document_url = Column(Text, nullable=False)
    document_kind = Column(String(20), nullable=False, default=DocumentKind.RENDERED.value)

    # Advisory only, never gates the order
    delivery_status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING.value)
    delivery_detail = Column(Text, nullable=True)
    delivered_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
