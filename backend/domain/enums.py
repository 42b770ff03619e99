"""
Domain enums — one tagged type per status axis plus provenance tags.
"""

from enum import Enum


class SettlementStatus(str, Enum):
    UNSETTLED = "unsettled"
    SETTLED = "settled"
    FAILED = "failed"
    REFUNDED = "refunded"


class FulfillmentStatus(str, Enum):
    PLACED = "placed"
    ACKNOWLEDGED = "acknowledged"
    IN_PRODUCTION = "in_production"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    FAILED = "failed"


class Source(str, Enum):
    """Whether a value came from the collaborator or was synthesized locally."""
    CONFIRMED = "confirmed"
    FALLBACK = "fallback"


class SettlementSource(str, Enum):
    GATEWAY = "gateway"
    FALLBACK = "fallback"


class RecordSource(str, Enum):
    STORE = "store"
    FALLBACK = "fallback"


class AttemptState(str, Enum):
    INITIATED = "initiated"
    AWAITING_USER_ACTION = "awaiting_user_action"
    SETTLED = "settled"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


class DocumentKind(str, Enum):
    RENDERED = "rendered"
    PLACEHOLDER = "placeholder"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class CheckoutPhase(str, Enum):
    DUPLICATE = "duplicate"
    AWAITING_PAYMENT = "awaiting_payment"
    SETTLED = "settled"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    FAILED = "failed"
    COMPLETED = "completed"


TERMINAL_CHECKOUT_PHASES = frozenset({
    CheckoutPhase.DUPLICATE,
    CheckoutPhase.DECLINED,
    CheckoutPhase.CANCELLED,
    CheckoutPhase.FAILED,
    CheckoutPhase.COMPLETED,
})
