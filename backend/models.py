"""
Pydantic models for request validation.

Field names are snake_case in Python and camelCase on the wire; both are
accepted on input.
"""
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from services.order_store import OrderDraft
from services.payment_orchestrator import CallbackEvent, WidgetCallback
from services.pricing_service import to_minor


class ApiBase(BaseModel):
    """Shared base — allows construction by Python name or alias."""
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


# ── Orders ──────────────────────────────────────────────────────────

class QuoteRequest(ApiBase):
    """Price estimate for the order form."""
    product_type: str = Field(..., alias="productType", description="sticker | tag | box | medicine_box | custom")
    quantity: int = Field(..., ge=1, le=100_000)


class CheckoutRequest(ApiBase):
    """A print job to order and pay for. The owner is the authenticated caller."""
    customer_name: str = Field(..., alias="customerName", min_length=1, max_length=200)
    customer_email: str = Field(..., alias="customerEmail", min_length=3, max_length=254)
    product_type: str = Field(..., alias="productType", min_length=1, max_length=50)
    quantity: int = Field(..., ge=1, le=100_000)
    unit_price: Decimal = Field(
        ...,
        alias="unitPrice",
        gt=0,
        max_digits=12,
        decimal_places=2,
        description="Price per unit in rupees",
    )
    delivery_address: str = Field(..., alias="deliveryAddress", min_length=1, max_length=1000)
    artifact_url: str = Field(..., alias="artifactUrl", min_length=1, description="Reference to the uploaded design")
    artifact_name: Optional[str] = Field(None, alias="artifactName", max_length=255)
    specifications: Optional[str] = Field(None, max_length=2000)
    gst_number: Optional[str] = Field(None, alias="gstNumber", max_length=15)
    hsn_code: Optional[str] = Field(None, alias="hsnCode", max_length=8)

    def to_draft(self, customer_id: str, currency: str) -> OrderDraft:
        return OrderDraft(
            customer_id=customer_id,
            customer_name=self.customer_name,
            customer_email=self.customer_email,
            product_type=self.product_type,
            quantity=self.quantity,
            unit_price_minor=to_minor(self.unit_price),
            delivery_address=self.delivery_address,
            artifact_url=self.artifact_url,
            artifact_name=self.artifact_name,
            specifications=self.specifications,
            gst_number=self.gst_number,
            hsn_code=self.hsn_code,
            currency=currency,
        )


# ── Payments ────────────────────────────────────────────────────────

class PaymentCallbackRequest(ApiBase):
    """Checkout widget callback (handler, payment.failed or modal dismiss)."""
    gateway_order_id: str = Field(..., alias="gatewayOrderId", min_length=1, max_length=64)
    event: Literal["success", "failure", "dismissed"]
    payment_id: Optional[str] = Field(None, alias="paymentId", max_length=64)
    signature: Optional[str] = Field(None, max_length=256)
    reason: Optional[str] = Field(None, max_length=500)

    def to_callback(self) -> WidgetCallback:
        return WidgetCallback(
            gateway_order_id=self.gateway_order_id,
            event=CallbackEvent(self.event),
            payment_id=self.payment_id,
            signature=self.signature,
            reason=self.reason,
        )


# ── Admin ───────────────────────────────────────────────────────────

class TransitionRequest(ApiBase):
    """Table-enforced status change."""
    fulfillment: str
    settlement: Optional[str] = None


class OverrideRequest(ApiBase):
    """Explicit administrative override; always needs a reason."""
    fulfillment: Optional[str] = None
    settlement: Optional[str] = None
    reason: str = Field(..., min_length=3, max_length=500)
