"""
Razorpay gateway client.

Handles:
    1. Gateway order creation (server-side reference the checkout widget pays against)
    2. Checkout widget configuration
    3. Callback signature verification

In simulation mode no Razorpay API call is made: order references are generated
locally and callbacks are accepted without a signature.
"""
import hashlib
import hmac
import logging
import string
from dataclasses import dataclass

import httpx

from config import settings
from domain.constants import SIMULATED_GATEWAY_PREFIX
from domain.errors import PermissionDeniedError, UnavailableError, ValidationError
from services.identifiers import generate_code

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayOrder:
    id: str
    amount_minor: int
    currency: str
    receipt: str


class RazorpayGateway:
    """Thin async client over the Razorpay Orders API."""

    simulated = False

    def __init__(self, key_id: str | None = None, key_secret: str | None = None, api_base: str | None = None):
        self.key_id = key_id or settings.razorpay_key_id
        self.key_secret = key_secret if key_secret is not None else settings.razorpay_key_secret
        self.api_base = (api_base or settings.razorpay_api_base).rstrip("/")

    def ensure_configured(self) -> None:
        """Raise PermissionDeniedError before any order is created against missing credentials."""
        if not self.key_id or not self.key_secret:
            raise PermissionDeniedError("Razorpay API credentials are not configured")

    async def create_order(
        self,
        *,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: dict | None = None,
    ) -> GatewayOrder:
        """
        Create a Razorpay order.

        Raises:
            PermissionDeniedError: credentials rejected (401/403)
            ValidationError: request rejected (400)
            UnavailableError: 5xx responses
        """
        if not self.key_secret:
            raise PermissionDeniedError("Razorpay key secret is not configured")

        payload = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt[:40],  # Razorpay limit
            "notes": notes or {},
        }
        async with httpx.AsyncClient(timeout=settings.gateway_timeout_seconds) as client:
            response = await client.post(
                f"{self.api_base}/orders",
                json=payload,
                auth=(self.key_id, self.key_secret),
            )

        if response.status_code in (401, 403):
            raise PermissionDeniedError("Razorpay rejected the API credentials")
        if response.status_code == 400:
            description = response.json().get("error", {}).get("description", "bad request")
            raise ValidationError(description, field="payment")
        if response.status_code >= 500:
            raise UnavailableError("payment gateway", f"HTTP {response.status_code}")
        response.raise_for_status()

        data = response.json()
        logger.info(f"  💳 Razorpay order created: {data['id']} ({amount_minor} {currency})")
        return GatewayOrder(
            id=data["id"],
            amount_minor=data.get("amount", amount_minor),
            currency=data.get("currency", currency),
            receipt=data.get("receipt", receipt),
        )

    def verify_callback_signature(self, gateway_order_id: str, payment_id: str, signature: str | None) -> bool:
        """
        Verify the checkout handler signature:
        HMAC-SHA256(key_secret, "<order_id>|<payment_id>").

        FAILS CLOSED when the secret is missing.
        """
        if not self.key_secret:
            logger.error(
                "RAZORPAY_KEY_SECRET not configured — rejecting payment callback. "
                "Set RAZORPAY_KEY_SECRET in .env to accept callbacks."
            )
            return False
        if not signature:
            logger.warning(f"Payment callback for {gateway_order_id} received without signature")
            return False

        expected = hmac.new(
            self.key_secret.encode("utf-8"),
            f"{gateway_order_id}|{payment_id}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)


class SimulatedGateway(RazorpayGateway):
    """Demo-mode gateway: local order refs, unsigned callbacks accepted."""

    simulated = True

    def ensure_configured(self) -> None:
        pass

    async def create_order(
        self,
        *,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: dict | None = None,
    ) -> GatewayOrder:
        order_id = f"{SIMULATED_GATEWAY_PREFIX}_{generate_code(13, string.ascii_lowercase + string.digits)}"
        logger.info(f"  💳 Simulated gateway order: {order_id} ({amount_minor} {currency})")
        return GatewayOrder(id=order_id, amount_minor=amount_minor, currency=currency, receipt=receipt)

    def verify_callback_signature(self, gateway_order_id: str, payment_id: str, signature: str | None) -> bool:
        if signature and self.key_secret:
            return super().verify_callback_signature(gateway_order_id, payment_id, signature)
        return True


def build_widget_config(
    gateway: RazorpayGateway,
    *,
    gateway_order_id: str,
    amount_minor: int,
    currency: str,
    payer_name: str,
    payer_email: str,
    description: str,
    tracking_code: str,
) -> dict:
    """Options object for the Razorpay Checkout widget."""
    return {
        "key": gateway.key_id,
        "amount": amount_minor,  # minor units (paise)
        "currency": currency,
        "name": settings.merchant_name,
        "description": description,
        "order_id": gateway_order_id,
        "prefill": {
            "name": payer_name,
            "email": payer_email,
        },
        "notes": {"tracking_code": tracking_code},
        "theme": {"color": "#3399cc"},
        "simulated": gateway.simulated,
    }


def get_gateway() -> RazorpayGateway:
    """Gateway selected by PAYMENT_SIMULATION_MODE."""
    if settings.payment_simulation_mode:
        return SimulatedGateway()
    return RazorpayGateway()
