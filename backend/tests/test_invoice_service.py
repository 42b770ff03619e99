"""
Tests for the invoice pipeline: idempotent creation, GST amounts, placeholder
fallback and best-effort mail delivery.
"""
import asyncio
import os

import pytest

from config import settings
from domain.errors import PermissionDeniedError, RenderRejectedError, ValidationError
from services import order_service
from services.invoice_renderer import HtmlInvoiceRenderer, render_placeholder
from services.invoice_service import InvoiceService, build_invoice_data, serialize_invoice, tax_component
from services.message_dispatcher import DispatchResult
from services.payment_orchestrator import Settled
from tests.conftest import RecordingDispatcher, SlowRenderer


@pytest.fixture
async def settled_order_id(store, draft):
    order_id = await store.create(draft, tracking_code="TRK-cust-0-INV00001")
    await order_service.record_settlement(store, order_id, Settled(payment_ref="pay_inv"))
    return order_id


class RejectingRenderer:
    async def render(self, data):
        raise RenderRejectedError("template refused the data")


class ExplodingDispatcher:
    async def send(self, message):
        raise RuntimeError("SMTP relay gone")


class TestTaxes:
    @pytest.mark.unit
    def test_nine_percent_each(self):
        assert tax_component(150000, 9) == 13500

    @pytest.mark.unit
    def test_half_paisa_rounds_up(self):
        # 9% of 50 paise is 4.5 paise
        assert tax_component(50, 9) == 5

    @pytest.mark.asyncio
    async def test_build_invoice_data(self, store, settled_order_id):
        order = await store.get(settled_order_id)
        data = build_invoice_data(order, "INV-TRK-cust-0-INV00001-000001")

        assert data.items[0].description == "Sticker Printing"
        assert data.items[0].hsn_code == "4911"
        assert data.subtotal_minor == 150000
        assert data.cgst_minor == 13500
        assert data.sgst_minor == 13500
        assert data.total_minor == 177000
        assert data.payment_ref == "pay_inv"


@pytest.mark.asyncio
async def test_create_invoice_for_settled_order(store, invoice_service, dispatcher, settled_order_id):
    invoice = await invoice_service.create_and_send(settled_order_id)
    await invoice_service.wait_for_deliveries()

    assert invoice.invoice_id.startswith("INV-TRK-cust-0-INV00001-")
    assert invoice.total_minor == 177000
    assert invoice.document_kind == "rendered"
    assert os.path.exists(invoice.document_url)

    order = await store.get(settled_order_id)
    assert order.invoice_id == invoice.invoice_id

    assert len(dispatcher.messages) == 1
    message = dispatcher.messages[0]
    assert message.to == "asha@example.com"
    assert invoice.invoice_id in message.subject
    assert message.attachments[0].filename == f"{invoice.invoice_id}.html"

    stored = (await store.list_invoices(order_id=settled_order_id))[0]
    assert stored.delivery_status == "sent"
    assert stored.delivered_at is not None


@pytest.mark.asyncio
async def test_second_call_returns_same_invoice(store, invoice_service, dispatcher, settled_order_id):
    first = await invoice_service.create_and_send(settled_order_id)
    second = await invoice_service.create_and_send(settled_order_id)
    await invoice_service.wait_for_deliveries()

    assert first.invoice_id == second.invoice_id
    assert len(await store.list_invoices(order_id=settled_order_id)) == 1
    assert len(dispatcher.messages) == 1


@pytest.mark.asyncio
async def test_concurrent_calls_share_one_invoice_and_release_lock(store, invoice_service, settled_order_id):
    first, second = await asyncio.gather(
        invoice_service.create_and_send(settled_order_id),
        invoice_service.create_and_send(settled_order_id),
    )
    await invoice_service.wait_for_deliveries()

    assert first.invoice_id == second.invoice_id
    assert len(await store.list_invoices(order_id=settled_order_id)) == 1
    assert invoice_service._locks == {}
    assert not invoice_service._lock_users


@pytest.mark.asyncio
async def test_unsettled_order_is_rejected(store, invoice_service, draft):
    order_id = await store.create(draft, tracking_code="TRK-cust-0-INV00002")
    with pytest.raises(ValidationError):
        await invoice_service.create_and_send(order_id)
    assert await store.get_invoice_for_order(order_id) is None


@pytest.mark.asyncio
async def test_slow_renderer_gets_placeholder(store, dispatcher, settled_order_id, monkeypatch):
    monkeypatch.setattr(settings, "invoice_render_timeout_seconds", 0.05)
    service = InvoiceService(store, SlowRenderer(), dispatcher)

    invoice = await service.create_and_send(settled_order_id)
    await service.wait_for_deliveries()

    assert invoice.document_kind == "placeholder"
    assert invoice.document_url == f"placeholder:{invoice.invoice_id}"
    # Delivery still goes out with the placeholder attached
    assert b"error generating the complete invoice" in dispatcher.messages[0].attachments[0].content


@pytest.mark.asyncio
async def test_rejected_render_gets_placeholder(store, dispatcher, settled_order_id):
    service = InvoiceService(store, RejectingRenderer(), dispatcher)
    invoice = await service.create_and_send(settled_order_id)
    await service.wait_for_deliveries()
    assert invoice.document_kind == "placeholder"


@pytest.mark.asyncio
async def test_failed_delivery_is_recorded(store, settled_order_id, tmp_path):
    dispatcher = RecordingDispatcher(DispatchResult(False, "mail API returned HTTP 500"))
    service = InvoiceService(store, HtmlInvoiceRenderer(storage_dir=str(tmp_path), public_base_url=""), dispatcher)

    invoice = await service.create_and_send(settled_order_id)
    await service.wait_for_deliveries()

    stored = (await store.list_invoices(order_id=settled_order_id))[0]
    assert stored.invoice_id == invoice.invoice_id
    assert stored.delivery_status == "failed"
    assert stored.delivery_detail == "mail API returned HTTP 500"
    # The order is untouched by delivery failures
    assert (await store.get(settled_order_id)).settlement_status == "settled"


@pytest.mark.asyncio
async def test_dispatcher_exception_is_contained(store, settled_order_id, tmp_path):
    service = InvoiceService(
        store, HtmlInvoiceRenderer(storage_dir=str(tmp_path), public_base_url=""), ExplodingDispatcher()
    )
    await service.create_and_send(settled_order_id)
    await service.wait_for_deliveries()

    stored = (await store.list_invoices(order_id=settled_order_id))[0]
    assert stored.delivery_status == "failed"
    assert "SMTP relay gone" in stored.delivery_detail


@pytest.mark.asyncio
async def test_public_url_used_when_configured(store, dispatcher, settled_order_id, tmp_path):
    renderer = HtmlInvoiceRenderer(storage_dir=str(tmp_path), public_base_url="https://files.example.com/invoices/")
    service = InvoiceService(store, renderer, dispatcher)

    invoice = await service.create_and_send(settled_order_id)
    await service.wait_for_deliveries()

    assert invoice.document_url == f"https://files.example.com/invoices/{invoice.invoice_id}.html"


@pytest.mark.asyncio
async def test_lookup_by_tracking_code(invoice_service, settled_order_id):
    invoice = await invoice_service.create_and_send(settled_order_id)

    found = await invoice_service.get_invoices_by_tracking_code("TRK-cust-0-INV00001", "cust-001")
    assert [i.invoice_id for i in found] == [invoice.invoice_id]

    with pytest.raises(PermissionDeniedError):
        await invoice_service.get_invoices_by_tracking_code("TRK-cust-0-INV00001", "cust-999")

    assert await invoice_service.get_invoices_by_tracking_code("TRK-cust-0-NOPE0000") == []


@pytest.mark.asyncio
async def test_lookup_by_order_checks_owner(invoice_service, settled_order_id):
    await invoice_service.create_and_send(settled_order_id)

    assert len(await invoice_service.get_invoices_for_order(settled_order_id, "cust-001")) == 1
    with pytest.raises(PermissionDeniedError):
        await invoice_service.get_invoices_for_order(settled_order_id, "cust-999")


@pytest.mark.asyncio
async def test_serialize_invoice(invoice_service, settled_order_id):
    invoice = await invoice_service.create_and_send(settled_order_id)
    data = serialize_invoice(invoice)
    assert data["orderId"] == settled_order_id
    assert data["cgstMinor"] == 13500
    assert data["totalMinor"] == 177000


class TestRenderer:
    @pytest.mark.asyncio
    async def test_incoherent_totals_rejected(self, store, settled_order_id, tmp_path):
        order = await store.get(settled_order_id)
        data = build_invoice_data(order, "INV-X-000001")
        broken = data.__class__(**{**data.__dict__, "total_minor": data.total_minor + 1})

        with pytest.raises(RenderRejectedError):
            await HtmlInvoiceRenderer(storage_dir=str(tmp_path)).render(broken)

    @pytest.mark.asyncio
    async def test_rendered_html_contains_amounts(self, store, settled_order_id, tmp_path):
        order = await store.get(settled_order_id)
        data = build_invoice_data(order, "INV-X-000002")

        document = await HtmlInvoiceRenderer(storage_dir=str(tmp_path), public_base_url="").render(data)

        html = document.content.decode("utf-8")
        assert "TAX INVOICE" in html
        assert "1,770.00" in html
        assert "135.00" in html
        assert "Sticker Printing" in html

    @pytest.mark.unit
    def test_placeholder_not_written_to_disk(self):
        from datetime import datetime
        from services.invoice_renderer import InvoiceData

        data = InvoiceData(
            invoice_id="INV-X-000003", order_id="o", tracking_code="TRK-x-ABCDEFGH",
            issued_at=datetime.utcnow(), customer_name="A", customer_email="a@example.com",
            customer_address="addr", customer_gstin=None, items=[],
            subtotal_minor=0, cgst_minor=0, sgst_minor=0, total_minor=0,
        )
        document = render_placeholder(data)
        assert document.location == "placeholder:INV-X-000003"
        assert document.kind.value == "placeholder"
