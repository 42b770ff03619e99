"""
Checkout service — one session per checkout, composed from the pipeline parts.

    start()  : validate → duplicate guard → create order → begin payment
    _run()   : await outcome → record settlement → invoice (settled only)
               → reconcile callbacks that arrived while settling

Each session owns a Supervisor, so fallbacks and degraded collaborators never
leak between checkouts. Every await in the session is bounded, so a session
always ends in a terminal phase. Sessions are kept in memory and evicted
checkout_session_ttl_seconds after they finish.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from config import settings
from domain.enums import TERMINAL_CHECKOUT_PHASES, CheckoutPhase, RecordSource, SettlementStatus
from domain.errors import DomainError, NotFoundError, PermissionDeniedError
from services import order_service
from services.duplicate_guard import check_duplicate
from services.identifiers import make_fallback_order_id, make_tracking_code
from services.invoice_service import InvoiceService
from services.order_store import OrderDraft, OrderStore
from services.payment_orchestrator import (
    Cancelled,
    Declined,
    PaymentAttempt,
    PaymentOrchestrator,
    PaymentOutcome,
    Settled,
    TimedOut,
    outcome_label,
)
from services.supervisor import Supervisor
from utils.validators import validate_order_draft

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSession:
    session_id: str
    draft: OrderDraft
    order_id: str
    tracking_code: str | None
    supervisor: Supervisor
    phase: CheckoutPhase = CheckoutPhase.AWAITING_PAYMENT
    duplicate: bool = False
    record_source: RecordSource = RecordSource.STORE
    persisted: bool = True
    attempt: PaymentAttempt | None = None
    outcome: PaymentOutcome | None = None
    invoice_id: str | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: float | None = None  # monotonic
    task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def customer_id(self) -> str:
        return self.draft.customer_id

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_CHECKOUT_PHASES

    def view(self) -> dict:
        outcome = self.outcome
        return {
            "sessionId": self.session_id,
            "orderId": self.order_id,
            "trackingCode": self.tracking_code,
            "duplicate": self.duplicate,
            "phase": self.phase.value,
            "recordSource": self.record_source.value,
            "gatewayOrderRef": self.attempt.gateway_order_ref if self.attempt else None,
            "widget": self.attempt.widget_config if self.attempt else None,
            "outcome": outcome_label(outcome) if outcome else None,
            "outcomeSource": (
                ("fallback" if isinstance(outcome, TimedOut) else "gateway") if outcome else None
            ),
            "invoiceId": self.invoice_id,
            "error": self.error,
            "degraded": self.supervisor.degraded_collaborators,
            "fallbackEvents": self.supervisor.describe_events(),
            "startedAt": self.started_at.isoformat(),
        }


class CheckoutService:
    """Runs checkout sessions and keeps them for status polling."""

    def __init__(
        self,
        store: OrderStore,
        orchestrator: PaymentOrchestrator,
        invoices: InvoiceService,
        *,
        payment_deadline: float | None = None,
        session_ttl: float | None = None,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.invoices = invoices
        self.payment_deadline = (
            settings.payment_widget_timeout_seconds if payment_deadline is None else payment_deadline
        )
        self.session_ttl = settings.checkout_session_ttl_seconds if session_ttl is None else session_ttl
        self._sessions: dict[str, CheckoutSession] = {}

    # ════════════════════════════════════════════════════════════════
    # Start
    # ════════════════════════════════════════════════════════════════

    async def start(self, draft: OrderDraft) -> CheckoutSession:
        """
        Create the order and present the payment widget.

        A duplicate submission creates nothing and returns the existing order.
        If that order is still unsettled and nobody is paying for it (the
        widget was dismissed), a new payment attempt is started against it.

        Raises:
            ValidationError: the draft is malformed (nothing was created)
            PermissionDeniedError: the store or gateway refused the operation
        """
        validate_order_draft(draft)
        self.orchestrator.gateway.ensure_configured()
        self.evict_expired()

        session_id = uuid.uuid4().hex
        supervisor = Supervisor(session_id=session_id[:8])

        check = await check_duplicate(self.store, draft.customer_id, draft.total_minor)
        if check.duplicate:
            return await self._start_duplicate(session_id, supervisor, draft, check.existing_order_id)

        tracking_code = make_tracking_code(draft.customer_id)
        created = await supervisor.call(
            "store",
            lambda: self.store.create(draft, tracking_code=tracking_code),
            timeout=settings.store_timeout_seconds,
            fallback=lambda: None,
            action="create_order",
        )
        if created.is_fallback:
            order_id = make_fallback_order_id(
                tracking_code, emergency=(created.reason or "").startswith("timeout")
            )
            record_source = RecordSource.FALLBACK
        else:
            order_id = created.value
            record_source = RecordSource.STORE

        session = CheckoutSession(
            session_id=session_id,
            draft=draft,
            order_id=order_id,
            tracking_code=tracking_code,
            supervisor=supervisor,
            record_source=record_source,
            persisted=record_source == RecordSource.STORE,
        )
        await self._begin_payment(session)
        logger.info(
            f"[{session_id[:8]}] 🛒 checkout started: order {order_id} ({tracking_code}, "
            f"{draft.total_minor} {draft.currency}, record {record_source.value})"
        )
        return session

    async def _start_duplicate(
        self,
        session_id: str,
        supervisor: Supervisor,
        draft: OrderDraft,
        existing_order_id: str,
    ) -> CheckoutSession:
        loaded = await supervisor.call(
            "store",
            lambda: self.store.get(existing_order_id),
            timeout=settings.store_timeout_seconds,
            fallback=lambda: None,
            action="load_duplicate",
        )
        existing = loaded.value
        session = CheckoutSession(
            session_id=session_id,
            draft=draft,
            order_id=existing_order_id,
            tracking_code=existing.tracking_code if existing else None,
            supervisor=supervisor,
            phase=CheckoutPhase.DUPLICATE,
            duplicate=True,
        )
        if (
            existing is not None
            and existing.settlement_status == SettlementStatus.UNSETTLED.value
            and self.orchestrator.pending_for_order(existing.id) is None
        ):
            session.record_source = RecordSource(existing.record_source)
            session.phase = CheckoutPhase.AWAITING_PAYMENT
            await self._begin_payment(session)
            logger.info(f"[{session_id[:8]}] resuming payment for unsettled order {existing.id}")
            return session

        session.finished_at = time.monotonic()
        self._sessions[session_id] = session
        logger.info(f"[{session_id[:8]}] duplicate checkout, returning order {existing_order_id}")
        return session

    async def _begin_payment(self, session: CheckoutSession) -> None:
        draft = session.draft
        session.attempt = await self.orchestrator.begin(
            order_id=session.order_id,
            tracking_code=session.tracking_code,
            amount_minor=draft.total_minor,
            currency=draft.currency,
            payer_name=draft.customer_name,
            payer_email=draft.customer_email,
            description=f"{draft.quantity} x {draft.product_type}",
            supervisor=session.supervisor,
        )
        self._sessions[session.session_id] = session
        session.task = asyncio.create_task(self._run(session))

    # ════════════════════════════════════════════════════════════════
    # Session flow
    # ════════════════════════════════════════════════════════════════

    async def _run(self, session: CheckoutSession) -> None:
        try:
            try:
                await self._settle(session)
            except DomainError as e:
                session.phase = CheckoutPhase.FAILED
                session.error = e.message
                logger.error(f"[{session.session_id[:8]}] checkout failed for order {session.order_id}: {e.message}")
            await self._reconcile_late_callbacks(session)
        finally:
            session.finished_at = time.monotonic()
            logger.info(f"[{session.session_id[:8]}] checkout finished: {session.phase.value}")

    async def _settle(self, session: CheckoutSession) -> None:
        outcome = await self.orchestrator.await_outcome(session.attempt, deadline=self.payment_deadline)
        session.outcome = outcome

        if isinstance(outcome, Cancelled):
            session.phase = CheckoutPhase.CANCELLED
            return

        if not session.persisted:
            await self._persist_fallback_order(session)

        if session.persisted:
            await self._record_settlement(session, outcome)
        else:
            logger.error(
                f"[{session.session_id[:8]}] order {session.order_id} exists only in this session; "
                f"settlement {outcome_label(outcome)} not persisted"
            )

        if isinstance(outcome, Declined) or (isinstance(outcome, TimedOut) and not outcome.assumed_settled):
            session.phase = CheckoutPhase.DECLINED if isinstance(outcome, Declined) else CheckoutPhase.FAILED
            return

        session.phase = CheckoutPhase.SETTLED
        if session.persisted:
            await self._issue_invoice(session)
        session.phase = CheckoutPhase.COMPLETED

    async def _reconcile_late_callbacks(self, session: CheckoutSession) -> None:
        """Apply callbacks that arrived while this session was still settling."""
        for outcome in self.orchestrator.mark_recorded(session.attempt):
            if not session.persisted:
                logger.error(
                    f"[{session.session_id[:8]}] late {outcome_label(outcome)} callback for unpersisted "
                    f"order {session.order_id} dropped"
                )
                continue
            try:
                result = await session.supervisor.call(
                    "store",
                    lambda: order_service.reconcile_late_callback(self.store, session.order_id, outcome),
                    timeout=settings.settlement_write_timeout_seconds,
                    fallback=lambda: None,
                    action="reconcile_late_callback",
                )
            except DomainError as e:
                logger.error(
                    f"[{session.session_id[:8]}] late {outcome_label(outcome)} callback for order "
                    f"{session.order_id} not applied: {e.message}"
                )
                continue
            if result.is_fallback:
                logger.error(
                    f"[{session.session_id[:8]}] late {outcome_label(outcome)} callback for order "
                    f"{session.order_id} not applied: {result.reason}"
                )
            elif result.value == "recorded" and isinstance(outcome, Settled):
                await self._issue_invoice(session)

    async def _persist_fallback_order(self, session: CheckoutSession) -> None:
        """Give a locally identified order a store record before settling it."""
        result = await session.supervisor.call(
            "store",
            lambda: self.store.create(
                session.draft,
                tracking_code=session.tracking_code,
                order_id=session.order_id,
                record_source=RecordSource.FALLBACK,
            ),
            timeout=settings.store_timeout_seconds,
            fallback=lambda: None,
            action="persist_fallback_order",
        )
        session.persisted = not result.is_fallback

    async def _record_settlement(self, session: CheckoutSession, outcome: PaymentOutcome) -> None:
        result = await session.supervisor.call(
            "store",
            lambda: order_service.record_settlement(self.store, session.order_id, outcome, session.attempt),
            timeout=settings.settlement_write_timeout_seconds,
            fallback=lambda: None,
            action="record_settlement",
        )
        if result.is_fallback:
            session.error = f"settlement not recorded ({result.reason})"
            logger.error(
                f"[{session.session_id[:8]}] settlement {outcome_label(outcome)} for order "
                f"{session.order_id} not recorded: {result.reason}"
            )

    async def _issue_invoice(self, session: CheckoutSession) -> None:
        """Invoice once per session; failures never fail the checkout."""
        if session.invoice_id is not None:
            return
        deadline = (
            settings.store_timeout_seconds * 3
            + settings.invoice_render_timeout_seconds
        )
        try:
            result = await session.supervisor.call(
                "invoice",
                lambda: self.invoices.create_and_send(session.order_id, supervisor=session.supervisor),
                timeout=deadline,
                fallback=lambda: None,
                action="create_and_send",
            )
        except DomainError as e:
            logger.error(f"[{session.session_id[:8]}] invoice for order {session.order_id} failed: {e.message}")
            return
        if result.value is not None:
            session.invoice_id = result.value.invoice_id

    # ════════════════════════════════════════════════════════════════
    # Queries / lifecycle
    # ════════════════════════════════════════════════════════════════

    def get_session(self, session_id: str, customer_id: str | None = None) -> CheckoutSession:
        self.evict_expired()
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError("Checkout session", session_id)
        if customer_id is not None and session.customer_id != customer_id:
            raise PermissionDeniedError("Checkout session belongs to a different customer.")
        return session

    async def wait(self, session_id: str) -> CheckoutSession:
        """Wait for a session to reach a terminal phase."""
        session = self.get_session(session_id)
        if session.task is not None:
            await session.task
        return session

    def evict_expired(self, now: float | None = None) -> int:
        now = time.monotonic() if now is None else now
        expired = [
            sid for sid, s in self._sessions.items()
            if s.finished_at is not None and now - s.finished_at > self.session_ttl
        ]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug(f"Evicted {len(expired)} checkout sessions")
        return len(expired)

    async def shutdown(self) -> None:
        """Abandon running sessions (app shutdown)."""
        running = [s for s in self._sessions.values() if s.task is not None and not s.task.done()]
        for session in running:
            if session.attempt is not None:
                self.orchestrator.abandon(session.attempt)
            session.task.cancel()
        if running:
            await asyncio.gather(*(s.task for s in running), return_exceptions=True)
            logger.info(f"Abandoned {len(running)} running checkout sessions")
        await self.invoices.wait_for_deliveries()

    @property
    def active_sessions(self) -> int:
        return sum(1 for s in self._sessions.values() if not s.is_terminal)
