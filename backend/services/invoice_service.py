"""
Invoice pipeline — one invoice per settled order, best effort.

Steps for create_and_send():
    1. Load the order (must be settled)
    2. Reuse an existing invoice for the order (idempotent)
    3. Derive the invoice id from the tracking code and build the tax invoice
    4. Render through the Supervisor; substitute a placeholder on timeout,
       unavailability or rejection
    5. Persist the invoice and link it to the order
    6. Deliver by mail in a background task; the outcome is written back to
       the invoice and never affects the order
"""
import asyncio
import html
import logging
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from config import settings
from db_models import Invoice, Order
from domain.enums import DeliveryStatus, SettlementStatus
from domain.errors import AVAILABILITY_ERRORS, PermissionDeniedError, RenderRejectedError, ValidationError
from services.identifiers import make_invoice_id
from services.invoice_renderer import (
    HtmlInvoiceRenderer,
    InvoiceData,
    LineItem,
    RenderedDocument,
    render_placeholder,
)
from services.message_dispatcher import (
    Attachment,
    DispatchResult,
    MailMessage,
    get_dispatcher,
)
from services.order_store import OrderStore
from services.supervisor import Supervisor

logger = logging.getLogger(__name__)


def tax_component(subtotal_minor: int, percent: float) -> int:
    amount = Decimal(subtotal_minor) * Decimal(str(percent)) / Decimal(100)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_invoice_data(order: Order, invoice_id: str, *, now: datetime | None = None) -> InvoiceData:
    """Single line item "<product> Printing" with CGST + SGST on the subtotal."""
    item = LineItem(
        description=f"{order.product_type.replace('_', ' ').title()} Printing",
        hsn_code=order.hsn_code or settings.default_hsn_code,
        quantity=order.quantity,
        unit_price_minor=order.unit_price_minor,
    )
    subtotal = item.amount_minor
    cgst = tax_component(subtotal, settings.cgst_percent)
    sgst = tax_component(subtotal, settings.sgst_percent)
    return InvoiceData(
        invoice_id=invoice_id,
        order_id=order.id,
        tracking_code=order.tracking_code,
        issued_at=now or datetime.utcnow(),
        customer_name=order.customer_name,
        customer_email=order.customer_email,
        customer_address=order.delivery_address,
        customer_gstin=order.gst_number,
        items=[item],
        subtotal_minor=subtotal,
        cgst_minor=cgst,
        sgst_minor=sgst,
        total_minor=subtotal + cgst + sgst,
        currency=order.currency,
        cgst_percent=settings.cgst_percent,
        sgst_percent=settings.sgst_percent,
        payment_ref=order.payment_ref,
        payment_method=order.payment_method,
    )


def _mail_body(data: InvoiceData) -> str:
    name = html.escape(data.customer_name)
    return (
        f"<p>Dear {name},</p>"
        f"<p>Thank you for your order {html.escape(data.tracking_code)}. "
        f"Your invoice {html.escape(data.invoice_id)} is attached.</p>"
        f"<p>{html.escape(settings.merchant_name)}</p>"
    )


class InvoiceService:
    """Creates, stores and delivers invoices for settled orders."""

    def __init__(self, store: OrderStore, renderer=None, dispatcher=None):
        self.store = store
        self.renderer = renderer or HtmlInvoiceRenderer()
        self.dispatcher = dispatcher or get_dispatcher()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()
        self._delivery_tasks: set[asyncio.Task] = set()

    async def create_and_send(self, order_id: str, *, supervisor: Supervisor | None = None) -> Invoice:
        """
        Create the invoice for a settled order and start delivery.

        Calling again for the same order returns the existing invoice.

        Raises:
            NotFoundError: no such order
            ValidationError: the order is not settled
        """
        supervisor = supervisor or Supervisor(session_id=f"invoice-{order_id[:12]}")
        async with self._order_lock(order_id):
            order = await self.store.get(order_id)
            if order.settlement_status != SettlementStatus.SETTLED.value:
                raise ValidationError(
                    f"order {order_id} is {order.settlement_status}, not settled",
                    field="settlement",
                )

            existing = await self.store.get_invoice_for_order(order_id)
            if existing is not None:
                logger.info(f"Invoice already exists for order {order_id}: {existing.invoice_id}")
                return existing

            data = build_invoice_data(order, make_invoice_id(order.tracking_code))
            document = await self._render(data, supervisor)

            invoice, created = await self.store.create_invoice({
                "invoice_id": data.invoice_id,
                "order_id": order.id,
                "tracking_code": order.tracking_code,
                "customer_id": order.customer_id,
                "customer_email": order.customer_email,
                "subtotal_minor": data.subtotal_minor,
                "cgst_minor": data.cgst_minor,
                "sgst_minor": data.sgst_minor,
                "total_minor": data.total_minor,
                "currency": data.currency,
                "payment_ref": data.payment_ref,
                "payment_method": data.payment_method,
                "document_url": document.location,
                "document_kind": document.kind.value,
                "delivery_status": DeliveryStatus.PENDING.value,
                "created_at": data.issued_at,
            })
            if not created:
                return invoice

            try:
                await self.store.update(order.id, {"invoice_id": invoice.invoice_id})
            except AVAILABILITY_ERRORS as e:
                logger.error(f"Invoice {invoice.invoice_id} stored but not linked to order {order.id}: {e.message}")

            logger.info(f"🧾 Invoice {invoice.invoice_id} created for order {order.id} ({document.kind.value})")
            self._schedule_delivery(invoice.invoice_id, data, document)
            return invoice

    @asynccontextmanager
    async def _order_lock(self, order_id: str):
        """Serialize invoice creation per order; the lock is dropped with its last user."""
        lock = self._locks.setdefault(order_id, asyncio.Lock())
        self._lock_users[order_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[order_id] -= 1
            if not self._lock_users[order_id]:
                del self._lock_users[order_id]
                self._locks.pop(order_id, None)

    async def _render(self, data: InvoiceData, supervisor: Supervisor) -> RenderedDocument:
        try:
            result = await supervisor.call(
                "renderer",
                lambda: self.renderer.render(data),
                timeout=settings.invoice_render_timeout_seconds,
                fallback=lambda: render_placeholder(data),
                action="render_invoice",
            )
        except RenderRejectedError as e:
            logger.error(f"Invoice {data.invoice_id} rejected by renderer ({e.message}); using placeholder")
            return render_placeholder(data)

        if result.is_fallback:
            logger.error(f"Invoice {data.invoice_id} rendered as placeholder ({result.reason})")
        return result.value

    # ════════════════════════════════════════════════════════════════
    # Delivery (fire-and-forget)
    # ════════════════════════════════════════════════════════════════

    def _schedule_delivery(self, invoice_id: str, data: InvoiceData, document: RenderedDocument) -> None:
        task = asyncio.create_task(self._deliver(invoice_id, data, document))
        self._delivery_tasks.add(task)
        task.add_done_callback(self._delivery_tasks.discard)

    async def _deliver(self, invoice_id: str, data: InvoiceData, document: RenderedDocument) -> DispatchResult:
        message = MailMessage(
            to=data.customer_email,
            cc=[settings.merchant_copy_email] if settings.merchant_copy_email else None,
            subject=f"Invoice {data.invoice_id} for order {data.tracking_code}",
            html=_mail_body(data),
            attachments=[Attachment(document.filename, document.content, document.media_type)],
        )
        try:
            result = await asyncio.wait_for(self.dispatcher.send(message), timeout=settings.mail_timeout_seconds)
        except asyncio.TimeoutError:
            result = DispatchResult(False, f"timed out after {settings.mail_timeout_seconds:g}s")
        except Exception as e:
            result = DispatchResult(False, f"{e.__class__.__name__}: {e}")

        if not result.success:
            logger.error(f"Invoice {invoice_id} delivery failed: {result.message}")

        try:
            await self.store.update_invoice(invoice_id, {
                "delivery_status": (DeliveryStatus.SENT if result.success else DeliveryStatus.FAILED).value,
                "delivery_detail": result.message,
                "delivered_at": datetime.utcnow() if result.success else None,
            })
        except AVAILABILITY_ERRORS as e:
            logger.error(f"Could not record delivery outcome for invoice {invoice_id}: {e.message}")
        return result

    async def wait_for_deliveries(self) -> None:
        """Wait for in-flight deliveries (shutdown, tests)."""
        if self._delivery_tasks:
            await asyncio.gather(*list(self._delivery_tasks), return_exceptions=True)

    # ════════════════════════════════════════════════════════════════
    # Queries
    # ════════════════════════════════════════════════════════════════

    async def get_invoices_for_order(self, order_id: str, customer_id: str | None = None) -> list[Invoice]:
        await self.store.get(order_id, customer_id)
        return await self.store.list_invoices(order_id=order_id)

    async def get_invoices_by_tracking_code(self, tracking_code: str, customer_id: str | None = None) -> list[Invoice]:
        invoices = await self.store.list_invoices(tracking_code=tracking_code)
        if customer_id is not None and any(inv.customer_id != customer_id for inv in invoices):
            raise PermissionDeniedError("Invoice belongs to a different customer.")
        return invoices


def serialize_invoice(invoice: Invoice) -> dict:
    return {
        "invoiceId": invoice.invoice_id,
        "orderId": invoice.order_id,
        "trackingCode": invoice.tracking_code,
        "customerEmail": invoice.customer_email,
        "subtotalMinor": invoice.subtotal_minor,
        "cgstMinor": invoice.cgst_minor,
        "sgstMinor": invoice.sgst_minor,
        "totalMinor": invoice.total_minor,
        "currency": invoice.currency,
        "paymentRef": invoice.payment_ref,
        "paymentMethod": invoice.payment_method,
        "documentUrl": invoice.document_url,
        "documentKind": invoice.document_kind,
        "deliveryStatus": invoice.delivery_status,
        "deliveryDetail": invoice.delivery_detail,
        "deliveredAt": invoice.delivered_at.isoformat() if invoice.delivered_at else None,
        "createdAt": invoice.created_at.isoformat() if invoice.created_at else None,
    }
