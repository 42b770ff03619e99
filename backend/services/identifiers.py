"""
Identifier and tracking-code generation.

Codes are random and human-readable, unique with overwhelming probability but
NOT unguessable — the store-assigned order id remains the authoritative identity.
"""
import random
import string
import time

from domain.constants import (
    EMERGENCY_ORDER_PREFIX,
    FALLBACK_GATEWAY_PREFIX,
    FALLBACK_ORDER_PREFIX,
    FALLBACK_PAYMENT_PREFIX,
    INVOICE_PREFIX,
    TRACKING_PREFIX,
)

ALPHANUMERIC = string.ascii_letters + string.digits
_BASE36 = string.digits + string.ascii_uppercase


def generate_code(length: int = 8, alphabet: str = ALPHANUMERIC) -> str:
    return "".join(random.choice(alphabet) for _ in range(length))


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def make_tracking_code(customer_id: str) -> str:
    """TRK-<first 6 chars of owner id>-<8 random uppercase chars>."""
    owner = (customer_id or "ANON")[:6]
    return f"{TRACKING_PREFIX}-{owner}-{generate_code(8).upper()}"


def make_invoice_id(tracking_code: str, now: float | None = None) -> str:
    """INV-<tracking code>-<last 6 base36 digits of the epoch milliseconds>."""
    millis = int((time.time() if now is None else now) * 1000)
    suffix = _base36(millis)[-6:].rjust(6, "0")
    return f"{INVOICE_PREFIX}-{tracking_code}-{suffix}"


def make_fallback_order_id(tracking_code: str, *, emergency: bool = False) -> str:
    """Locally generated stand-in for a store-assigned order id."""
    prefix = EMERGENCY_ORDER_PREFIX if emergency else FALLBACK_ORDER_PREFIX
    return f"{prefix}_{tracking_code}_{generate_code(6)}"


def is_fallback_order_id(order_id: str) -> bool:
    return order_id.startswith((f"{FALLBACK_ORDER_PREFIX}_", f"{EMERGENCY_ORDER_PREFIX}_"))


def make_fallback_gateway_ref() -> str:
    return f"{FALLBACK_GATEWAY_PREFIX}_{generate_code(12, string.ascii_lowercase + string.digits)}"


def make_fallback_payment_ref() -> str:
    return f"{FALLBACK_PAYMENT_PREFIX}_{generate_code(12, string.ascii_lowercase + string.digits)}"
