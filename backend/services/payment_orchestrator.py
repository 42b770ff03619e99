"""
Payment Orchestrator — drives one payment attempt to exactly one terminal outcome.

Attempt lifecycle:
    initiated → awaiting_user_action → settled | declined | cancelled | timed_out

The checkout widget reports back through deliver() (the /payments/callback
route), but it may never call back at all. await_outcome() therefore selects
between two branches: the callback future and a deadline timer. The deadline
branch yields TimedOut, a separate outcome type from Settled, so invoicing and
revenue reporting can always tell a synthesized settlement from a confirmed one.

Callbacks arriving after their attempt was resolved are reported as LATE. Until
the owner of the attempt has written its outcome to the store (mark_recorded),
late outcomes are queued on the attempt and handed back to that owner; after
that the caller reconciles them directly. The handled-set here is best-effort
re-entrancy protection only, the store remains the source of truth.
"""
import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from config import settings
from domain.enums import AttemptState, Source
from services.identifiers import make_fallback_gateway_ref, make_fallback_payment_ref
from services.payment_gateway import GatewayOrder, RazorpayGateway, build_widget_config, get_gateway
from services.supervisor import Supervisor

logger = logging.getLogger(__name__)

_RESOLVED_MEMORY = 1000
_HANDLED_MEMORY = 4 * _RESOLVED_MEMORY


# ════════════════════════════════════════════════════════════════════
# Outcomes
# ════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Settled:
    """Gateway-confirmed capture."""
    payment_ref: str
    method: str = "Razorpay"
    source: Source = Source.CONFIRMED


@dataclass(frozen=True)
class Declined:
    """Gateway-confirmed failure. Authoritative over any optimistic default."""
    reason: str
    payment_ref: str | None = None
    source: Source = Source.CONFIRMED


@dataclass(frozen=True)
class Cancelled:
    """User dismissed the checkout widget."""
    reason: str = "dismissed by user"
    source: Source = Source.CONFIRMED


@dataclass(frozen=True)
class TimedOut:
    """No callback within the deadline; synthesized locally."""
    assumed_settled: bool
    payment_ref: str
    waited_seconds: float
    method: str = "Razorpay (Timeout Fallback)"
    source: Source = Source.FALLBACK


PaymentOutcome = Settled | Declined | Cancelled | TimedOut

_TERMINAL_STATE = {
    Settled: AttemptState.SETTLED,
    Declined: AttemptState.DECLINED,
    Cancelled: AttemptState.CANCELLED,
    TimedOut: AttemptState.TIMED_OUT,
}


def outcome_label(outcome: PaymentOutcome) -> str:
    return _TERMINAL_STATE[type(outcome)].value


# ════════════════════════════════════════════════════════════════════
# Callbacks
# ════════════════════════════════════════════════════════════════════


class CallbackEvent(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    DISMISSED = "dismissed"


@dataclass(frozen=True)
class WidgetCallback:
    gateway_order_id: str
    event: CallbackEvent
    payment_id: str | None = None
    signature: str | None = None
    reason: str | None = None

    @property
    def dedup_key(self) -> str:
        return f"{self.gateway_order_id}:{self.event.value}:{self.payment_id or ''}"

    def to_outcome(self) -> PaymentOutcome:
        if self.event == CallbackEvent.SUCCESS:
            return Settled(payment_ref=self.payment_id or "")
        if self.event == CallbackEvent.FAILURE:
            return Declined(reason=self.reason or "payment failed", payment_ref=self.payment_id)
        return Cancelled(reason=self.reason or "dismissed by user")


class DeliveryStatus(str, Enum):
    ACCEPTED = "accepted"      # resolved a pending attempt
    DUPLICATE = "duplicate"    # already handled in this process
    LATE = "late"              # attempt already resolved (e.g. timed out)
    UNKNOWN = "unknown"        # no attempt with this gateway reference
    REJECTED = "rejected"      # signature check failed


@dataclass(frozen=True)
class Delivery:
    status: DeliveryStatus
    outcome: PaymentOutcome | None = None
    attempt: "PaymentAttempt | None" = None
    queued: bool = False  # held for the attempt owner, not yet reconcilable


# ════════════════════════════════════════════════════════════════════
# Attempt
# ════════════════════════════════════════════════════════════════════


@dataclass
class PaymentAttempt:
    """Ephemeral; folded into the order once resolved."""
    order_id: str
    tracking_code: str
    amount_minor: int
    currency: str
    payer_name: str
    payer_email: str
    description: str
    state: AttemptState = AttemptState.INITIATED
    gateway_order_ref: str | None = None
    gateway_ref_source: Source = Source.CONFIRMED
    widget_config: dict = field(default_factory=dict)
    outcome: PaymentOutcome | None = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    resolved_at: datetime | None = None
    recorded: bool = False
    late_outcomes: list = field(default_factory=list)
    _callback: asyncio.Future | None = field(default=None, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.outcome is not None


class PaymentOrchestrator:
    """Owns the pending-attempt registry, keyed by gateway order reference."""

    def __init__(self, gateway: RazorpayGateway | None = None, *, optimistic_timeout: bool | None = None):
        self.gateway = gateway or get_gateway()
        self.optimistic_timeout = (
            settings.optimistic_payment_timeout if optimistic_timeout is None else optimistic_timeout
        )
        self._pending: dict[str, PaymentAttempt] = {}
        self._resolved: OrderedDict[str, PaymentAttempt] = OrderedDict()
        self._handled: OrderedDict[str, None] = OrderedDict()

    async def begin(
        self,
        *,
        order_id: str,
        tracking_code: str,
        amount_minor: int,
        currency: str,
        payer_name: str,
        payer_email: str,
        description: str,
        supervisor: Supervisor,
    ) -> PaymentAttempt:
        """Obtain a gateway reference and present the checkout widget."""
        attempt = PaymentAttempt(
            order_id=order_id,
            tracking_code=tracking_code,
            amount_minor=amount_minor,
            currency=currency,
            payer_name=payer_name,
            payer_email=payer_email,
            description=description,
        )

        result = await supervisor.call(
            "gateway",
            lambda: self.gateway.create_order(
                amount_minor=amount_minor,
                currency=currency,
                receipt=tracking_code,
                notes={"order_id": order_id, "tracking_code": tracking_code},
            ),
            timeout=settings.gateway_timeout_seconds,
            fallback=lambda: GatewayOrder(
                id=make_fallback_gateway_ref(),
                amount_minor=amount_minor,
                currency=currency,
                receipt=tracking_code,
            ),
            action="create_order",
        )
        attempt.gateway_order_ref = result.value.id
        attempt.gateway_ref_source = result.source
        attempt.widget_config = build_widget_config(
            self.gateway,
            gateway_order_id=result.value.id,
            amount_minor=amount_minor,
            currency=currency,
            payer_name=payer_name,
            payer_email=payer_email,
            description=description,
            tracking_code=tracking_code,
        )
        attempt._callback = asyncio.get_running_loop().create_future()
        attempt.state = AttemptState.AWAITING_USER_ACTION
        self._pending[attempt.gateway_order_ref] = attempt

        logger.info(
            f"Payment attempt for order {order_id} awaiting user action "
            f"(gateway ref {attempt.gateway_order_ref}, {result.source.value})"
        )
        return attempt

    def deliver(self, callback: WidgetCallback) -> Delivery:
        """Feed a widget callback into its pending attempt."""
        if callback.dedup_key in self._handled:
            logger.info(f"Duplicate payment callback ignored: {callback.dedup_key}")
            return Delivery(DeliveryStatus.DUPLICATE)

        if callback.event == CallbackEvent.SUCCESS and not self.gateway.verify_callback_signature(
            callback.gateway_order_id, callback.payment_id or "", callback.signature
        ):
            logger.warning(f"Payment callback signature rejected for {callback.gateway_order_id}")
            return Delivery(DeliveryStatus.REJECTED)

        outcome = callback.to_outcome()
        attempt = self._pending.get(callback.gateway_order_id) or self._resolved.get(callback.gateway_order_id)
        if attempt is None:
            logger.warning(f"Payment callback for unknown gateway ref {callback.gateway_order_id}")
            return Delivery(DeliveryStatus.UNKNOWN, outcome)

        self._remember(callback.dedup_key)
        if attempt._callback is not None and not attempt._callback.done():
            attempt._callback.set_result(outcome)
            return Delivery(DeliveryStatus.ACCEPTED, outcome, attempt)

        first = attempt._callback.result() if attempt.outcome is None else attempt.outcome
        logger.warning(
            f"Late payment callback for order {attempt.order_id}: "
            f"{outcome_label(outcome)} after {outcome_label(first)}"
        )
        if not attempt.recorded:
            attempt.late_outcomes.append(outcome)
            return Delivery(DeliveryStatus.LATE, outcome, attempt, queued=True)
        return Delivery(DeliveryStatus.LATE, outcome, attempt)

    def mark_recorded(self, attempt: PaymentAttempt) -> list[PaymentOutcome]:
        """
        The attempt's outcome is in the store; later callbacks can be reconciled
        by their caller. Returns the late outcomes queued until now.
        """
        attempt.recorded = True
        queued, attempt.late_outcomes = attempt.late_outcomes, []
        return queued

    def pending_for_order(self, order_id: str) -> PaymentAttempt | None:
        for attempt in self._pending.values():
            if attempt.order_id == order_id:
                return attempt
        return None

    def _remember(self, dedup_key: str) -> None:
        self._handled[dedup_key] = None
        while len(self._handled) > _HANDLED_MEMORY:
            self._handled.popitem(last=False)

    async def await_outcome(self, attempt: PaymentAttempt, deadline: float | None = None) -> PaymentOutcome:
        """
        Wait for the callback or the deadline, whichever comes first.

        Always returns exactly one terminal outcome.
        """
        if attempt.is_terminal:
            return attempt.outcome
        deadline = settings.payment_widget_timeout_seconds if deadline is None else deadline

        callback = attempt._callback
        timer = asyncio.ensure_future(asyncio.sleep(deadline))
        try:
            done, _ = await asyncio.wait({callback, timer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            timer.cancel()

        if callback in done and not callback.cancelled():
            outcome = callback.result()
        else:
            outcome = TimedOut(
                assumed_settled=self.optimistic_timeout,
                payment_ref=make_fallback_payment_ref(),
                waited_seconds=deadline,
            )
            logger.warning(
                f"⏱️  No payment callback for order {attempt.order_id} within {deadline:g}s; "
                f"{'assuming paid' if outcome.assumed_settled else 'assuming failed'} (fallback)"
            )

        self._finish(attempt, outcome)
        return outcome

    def abandon(self, attempt: PaymentAttempt) -> None:
        """Drop a pending attempt without an outcome (session torn down)."""
        self._pending.pop(attempt.gateway_order_ref or "", None)
        if attempt._callback is not None and not attempt._callback.done():
            attempt._callback.cancel()

    def _finish(self, attempt: PaymentAttempt, outcome: PaymentOutcome) -> None:
        attempt.outcome = outcome
        attempt.state = _TERMINAL_STATE[type(outcome)]
        attempt.resolved_at = datetime.utcnow()
        ref = attempt.gateway_order_ref or ""
        self._pending.pop(ref, None)
        self._resolved[ref] = attempt
        while len(self._resolved) > _RESOLVED_MEMORY:
            self._resolved.popitem(last=False)
        logger.info(f"Payment attempt for order {attempt.order_id} resolved: {attempt.state.value}")

    @property
    def pending_count(self) -> int:
        return len(self._pending)
