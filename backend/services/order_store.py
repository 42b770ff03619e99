"""
Order Store Gateway — create/read/update order and invoice records.

Every write advances `last_updated`. SQLAlchemy errors are translated at this
boundary so callers only ever see domain errors:

    readonly / permission failures → PermissionDeniedError (surfaced, never retried)
    unique-constraint violations   → ConflictError
    everything else from the DBAPI → UnavailableError (Supervisor may fall back)

Deadlines are not enforced here; callers wrap store calls in the Supervisor.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from database import async_session
from db_models import Invoice, Order
from domain import state_machine
from domain.constants import DUPLICATE_LOOKBACK_LIMIT
from domain.enums import RecordSource
from domain.errors import (
    ConflictError,
    DomainError,
    NotFoundError,
    PermissionDeniedError,
    UnavailableError,
    VerificationFailedError,
)

logger = logging.getLogger(__name__)

_PERMISSION_MARKERS = ("readonly", "read-only", "permission", "access denied", "not authorized")


@dataclass
class OrderDraft:
    """A validated print job waiting to become an order."""
    customer_id: str
    customer_name: str
    customer_email: str
    product_type: str
    quantity: int
    unit_price_minor: int
    delivery_address: str
    artifact_url: str
    artifact_name: str | None = None
    specifications: str | None = None
    gst_number: str | None = None
    hsn_code: str | None = None
    currency: str = "INR"

    @property
    def total_minor(self) -> int:
        return self.unit_price_minor * self.quantity


def _translate(exc: SQLAlchemyError) -> DomainError:
    if isinstance(exc, IntegrityError):
        return ConflictError("Record conflicts with an existing record", details={"error": exc.__class__.__name__})
    text = str(exc).lower()
    if any(marker in text for marker in _PERMISSION_MARKERS):
        return PermissionDeniedError("Order store refused the operation")
    return UnavailableError("order store", exc.__class__.__name__)


class OrderStore:
    """Async gateway over the orders/invoices tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory or async_session

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as db:
                yield db
        except SQLAlchemyError as e:
            logger.warning(f"Order store error: {e.__class__.__name__}: {e}")
            raise _translate(e) from e

    # ════════════════════════════════════════════════════════════════
    # Orders
    # ════════════════════════════════════════════════════════════════

    async def create(
        self,
        draft: OrderDraft,
        *,
        tracking_code: str,
        order_id: str | None = None,
        record_source: RecordSource = RecordSource.STORE,
    ) -> str:
        """Insert a new order in its initial state and return its id."""
        now = datetime.utcnow()
        order = Order(
            tracking_code=tracking_code,
            customer_id=draft.customer_id,
            customer_name=draft.customer_name,
            customer_email=draft.customer_email,
            product_type=draft.product_type,
            quantity=draft.quantity,
            unit_price_minor=draft.unit_price_minor,
            total_minor=draft.total_minor,
            currency=draft.currency,
            specifications=draft.specifications,
            gst_number=draft.gst_number,
            hsn_code=draft.hsn_code or settings.default_hsn_code,
            delivery_address=draft.delivery_address,
            artifact_url=draft.artifact_url,
            artifact_name=draft.artifact_name,
            settlement_status=state_machine.INITIAL_SETTLEMENT.value,
            fulfillment_status=state_machine.INITIAL_FULFILLMENT.value,
            execution_progress=state_machine.progress_for(state_machine.INITIAL_FULFILLMENT),
            record_source=record_source.value,
            needs_reconciliation=record_source == RecordSource.FALLBACK,
            created_at=now,
            last_updated=now,
        )
        if order_id:
            order.id = order_id

        async with self._session() as db:
            db.add(order)
            await db.commit()
            logger.info(f"  📦 Order created: {order.id} ({tracking_code}, {draft.total_minor} minor units)")
            return order.id

    async def get(self, order_id: str, customer_id: str | None = None) -> Order:
        """Fetch an order; with customer_id, the caller must own it."""
        async with self._session() as db:
            order = await db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        if customer_id is not None and order.customer_id != customer_id:
            raise PermissionDeniedError("Order belongs to a different customer.")
        return order

    async def update(
        self,
        order_id: str,
        fields: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
        verify: bool = False,
    ) -> None:
        """
        Partially update one order.

        Args:
            fields: column → new value
            expected: column → value the row must still hold (compare-and-set)
            verify: read back in a fresh session and raise VerificationFailedError
                if the write is not visible within settings.store_verify_timeout_seconds
        """
        values = {**fields, "last_updated": datetime.utcnow()}
        stmt = update(Order).where(Order.id == order_id)
        for column, value in (expected or {}).items():
            stmt = stmt.where(getattr(Order, column) == value)
        stmt = stmt.values(**values)

        async with self._session() as db:
            result = await db.execute(stmt)
            await db.commit()
            matched = result.rowcount

        if not matched:
            # Distinguish a missing row from a lost compare-and-set race
            current = await self.get(order_id)
            raise ConflictError(
                f"Order {order_id} changed concurrently",
                details={k: getattr(current, k) for k in (expected or {})},
            )

        if verify:
            await self._verify(order_id, fields)

    async def _verify(self, order_id: str, fields: dict[str, Any]) -> None:
        deadline = asyncio.get_running_loop().time() + settings.store_verify_timeout_seconds
        while True:
            order = await self.get(order_id)
            stale = [k for k, v in fields.items() if getattr(order, k) != v]
            if not stale:
                return
            if asyncio.get_running_loop().time() >= deadline:
                logger.error(f"Read-after-write failed for order {order_id}: {stale}")
                raise VerificationFailedError(order_id, stale)
            await asyncio.sleep(0.05)

    async def recent_by_customer_and_total(
        self,
        customer_id: str,
        total_minor: int,
        limit: int = DUPLICATE_LOOKBACK_LIMIT,
    ) -> list[Order]:
        async with self._session() as db:
            res = await db.execute(
                select(Order)
                .where(Order.customer_id == customer_id, Order.total_minor == total_minor)
                .order_by(Order.created_at.desc())
                .limit(limit)
            )
            return list(res.scalars().all())

    async def list_by_customer(self, customer_id: str, *, limit: int = 50, offset: int = 0) -> tuple[list[Order], int]:
        async with self._session() as db:
            res = await db.execute(
                select(Order)
                .where(Order.customer_id == customer_id)
                .order_by(Order.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            orders = list(res.scalars().all())
            total = await db.scalar(
                select(func.count(Order.id)).where(Order.customer_id == customer_id)
            )
        return orders, total or 0

    async def list_needing_reconciliation(self, *, limit: int = 100) -> list[Order]:
        async with self._session() as db:
            res = await db.execute(
                select(Order)
                .where(Order.needs_reconciliation.is_(True))
                .order_by(Order.last_updated.desc())
                .limit(limit)
            )
            return list(res.scalars().all())

    # ════════════════════════════════════════════════════════════════
    # Invoices
    # ════════════════════════════════════════════════════════════════

    async def get_invoice_for_order(self, order_id: str) -> Invoice | None:
        async with self._session() as db:
            res = await db.execute(select(Invoice).where(Invoice.order_id == order_id))
            return res.scalar_one_or_none()

    async def create_invoice(self, fields: dict[str, Any]) -> tuple[Invoice, bool]:
        """
        Insert an invoice row. Returns (invoice, created).

        A concurrent insert for the same order loses on the unique constraint
        and resolves to the existing row.
        """
        invoice = Invoice(**fields)
        try:
            async with self._session_factory() as db:
                db.add(invoice)
                await db.commit()
                return invoice, True
        except IntegrityError:
            existing = await self.get_invoice_for_order(fields["order_id"])
            if existing is None:
                raise ConflictError(f"Invoice id already used: {fields.get('invoice_id')}")
            logger.info(f"Invoice for order {fields['order_id']} already exists: {existing.invoice_id}")
            return existing, False
        except SQLAlchemyError as e:
            raise _translate(e) from e

    async def update_invoice(self, invoice_id: str, fields: dict[str, Any]) -> None:
        async with self._session() as db:
            result = await db.execute(
                update(Invoice).where(Invoice.invoice_id == invoice_id).values(**fields)
            )
            await db.commit()
        if not result.rowcount:
            raise NotFoundError("Invoice", invoice_id)

    async def list_invoices(
        self,
        *,
        order_id: str | None = None,
        tracking_code: str | None = None,
    ) -> list[Invoice]:
        stmt = select(Invoice).order_by(Invoice.created_at.desc())
        if order_id is not None:
            stmt = stmt.where(Invoice.order_id == order_id)
        if tracking_code is not None:
            stmt = stmt.where(Invoice.tracking_code == tracking_code)
        async with self._session() as db:
            res = await db.execute(stmt)
            return list(res.scalars().all())
