"""
Invoice document renderer.

Renders a tax invoice as HTML with Jinja2 and writes it under
settings.invoice_storage_dir. Rendering and the file write run in the thread
pool. Malformed invoice data is rejected with RenderRejectedError; disk
failures surface as UnavailableError so the Supervisor can substitute the
placeholder document.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime

from jinja2 import DictLoader, Environment, StrictUndefined, select_autoescape
from jinja2.exceptions import TemplateError

from config import settings
from domain.enums import DocumentKind
from domain.errors import RenderRejectedError
from services.async_executor import render_pool, write_atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineItem:
    description: str
    hsn_code: str
    quantity: int
    unit_price_minor: int

    @property
    def amount_minor(self) -> int:
        return self.unit_price_minor * self.quantity


@dataclass(frozen=True)
class InvoiceData:
    invoice_id: str
    order_id: str
    tracking_code: str
    issued_at: datetime
    customer_name: str
    customer_email: str
    customer_address: str
    customer_gstin: str | None
    items: list[LineItem]
    subtotal_minor: int
    cgst_minor: int
    sgst_minor: int
    total_minor: int
    currency: str = "INR"
    cgst_percent: float = 9.0
    sgst_percent: float = 9.0
    payment_ref: str | None = None
    payment_method: str | None = None
    seller: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RenderedDocument:
    content: bytes
    location: str
    kind: DocumentKind
    filename: str
    media_type: str = "text/html"


def _money(amount_minor: int) -> str:
    rupees, paise = divmod(int(amount_minor), 100)
    return f"{rupees:,}.{paise:02d}"


INVOICE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Tax Invoice {{ invoice.invoice_id }}</title>
  <style>
    body { font-family: Helvetica, Arial, sans-serif; font-size: 12px; margin: 32px; }
    h1 { text-align: center; font-size: 20px; margin-bottom: 0; }
    .tagline { text-align: center; color: #555; }
    .seller { text-align: right; font-size: 10px; }
    table.items { width: 100%; border-collapse: collapse; margin-top: 16px; }
    table.items th { background: #505050; color: #fff; padding: 4px; }
    table.items td { border: 1px solid #aaa; padding: 4px; }
    .num { text-align: right; }
    .totals { margin-left: auto; margin-top: 12px; }
  </style>
</head>
<body>
  <h1>{{ seller.name }}</h1>
  <div class="tagline">{{ seller.tagline }}</div>
  <div class="seller">
    {{ seller.name }}<br>{{ seller.address }}<br>GSTIN: {{ seller.gstin }}
  </div>
  <h2>TAX INVOICE</h2>
  <p>
    Invoice Number: {{ invoice.invoice_id }}<br>
    Date: {{ invoice.issued_at.strftime("%d %b %Y") }}<br>
    Order Number: {{ invoice.tracking_code }}<br>
    Payment Status: PAID{% if invoice.payment_ref %} ({{ invoice.payment_ref }}){% endif %}
  </p>
  <h3>Bill To:</h3>
  <p>
    {{ invoice.customer_name }}<br>
    {{ invoice.customer_email }}<br>
    {{ invoice.customer_address }}
    {% if invoice.customer_gstin %}<br>GSTIN: {{ invoice.customer_gstin }}{% endif %}
  </p>
  <table class="items">
    <tr><th>#</th><th>Description</th><th>HSN</th><th>Qty</th><th>Price</th><th>Amount</th></tr>
    {% for item in invoice.items %}
    <tr>
      <td>{{ loop.index }}</td>
      <td>{{ item.description }}</td>
      <td>{{ item.hsn_code }}</td>
      <td class="num">{{ item.quantity }}</td>
      <td class="num">{{ item.unit_price_minor | money }}</td>
      <td class="num">{{ item.amount_minor | money }}</td>
    </tr>
    {% endfor %}
  </table>
  <table class="totals">
    <tr><td>Subtotal:</td><td class="num">{{ invoice.subtotal_minor | money }}</td></tr>
    <tr><td>CGST ({{ invoice.cgst_percent }}%):</td><td class="num">{{ invoice.cgst_minor | money }}</td></tr>
    <tr><td>SGST ({{ invoice.sgst_percent }}%):</td><td class="num">{{ invoice.sgst_minor | money }}</td></tr>
    <tr><td><strong>Total ({{ invoice.currency }}):</strong></td><td class="num"><strong>{{ invoice.total_minor | money }}</strong></td></tr>
  </table>
  <p>This is a computer-generated invoice and does not require a signature.</p>
  <p>Thank you for your business! For any queries, please contact: {{ seller.support_email }}</p>
</body>
</html>
"""

PLACEHOLDER_TEMPLATE = """<!DOCTYPE html>
<html><body>
  <p>Invoice #{{ invoice_id }}</p>
  <p>There was an error generating the complete invoice.</p>
  <p>Please contact support.</p>
</body></html>
"""


def _build_environment() -> Environment:
    env = Environment(
        loader=DictLoader({"invoice.html": INVOICE_TEMPLATE, "placeholder.html": PLACEHOLDER_TEMPLATE}),
        autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=True),
        undefined=StrictUndefined,
    )
    env.filters["money"] = _money
    return env


_env = _build_environment()


def validate_invoice_data(data: InvoiceData) -> None:
    """Raise RenderRejectedError when the data cannot make a coherent invoice."""
    problems = []
    if not data.invoice_id:
        problems.append("missing invoice id")
    if not data.items:
        problems.append("no line items")
    if any(item.quantity < 1 or item.unit_price_minor < 0 for item in data.items):
        problems.append("invalid line item")
    if data.subtotal_minor != sum(item.amount_minor for item in data.items):
        problems.append("subtotal does not match line items")
    if data.total_minor != data.subtotal_minor + data.cgst_minor + data.sgst_minor:
        problems.append("total does not match subtotal plus tax")
    if problems:
        raise RenderRejectedError(
            f"Invoice {data.invoice_id or '?'} rejected: {', '.join(problems)}",
            details={"problems": problems},
        )


def render_placeholder(data: InvoiceData) -> RenderedDocument:
    """Minimal stand-in document when full rendering is impossible."""
    content = _env.get_template("placeholder.html").render(invoice_id=data.invoice_id).encode("utf-8")
    return RenderedDocument(
        content=content,
        location=f"placeholder:{data.invoice_id}",
        kind=DocumentKind.PLACEHOLDER,
        filename=f"{data.invoice_id}.html",
    )


class HtmlInvoiceRenderer:
    """Renders invoices to HTML files under the storage directory."""

    def __init__(self, storage_dir: str | None = None, public_base_url: str | None = None):
        self.storage_dir = storage_dir or settings.invoice_storage_dir
        self.public_base_url = (
            public_base_url if public_base_url is not None else settings.invoice_public_base_url
        ).rstrip("/")

    async def render(self, data: InvoiceData) -> RenderedDocument:
        validate_invoice_data(data)
        return await render_pool.run(self._render_to_file, data)

    def _render_to_file(self, data: InvoiceData) -> RenderedDocument:
        seller = data.seller or {
            "name": settings.merchant_name,
            "tagline": settings.merchant_tagline,
            "address": settings.merchant_address,
            "gstin": settings.merchant_gstin,
            "support_email": settings.merchant_support_email,
        }
        try:
            html = _env.get_template("invoice.html").render(invoice=data, seller=seller)
        except TemplateError as e:
            raise RenderRejectedError(f"Invoice {data.invoice_id} could not be rendered: {e}") from e

        content = html.encode("utf-8")
        filename = f"{data.invoice_id}.html"
        path = write_atomic(self.storage_dir, filename, content)

        location = f"{self.public_base_url}/{filename}" if self.public_base_url else path
        logger.info(f"  🧾 Invoice rendered: {data.invoice_id} → {location}")
        return RenderedDocument(content=content, location=location, kind=DocumentKind.RENDERED, filename=filename)
