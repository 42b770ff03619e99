"""
Order service — applies the status model to stored orders.

All status writes go through here so execution progress is always derived from
fulfillment and every transition is checked against the tables in
domain.state_machine. Writes are compare-and-set on the statuses read, so two
concurrent writers cannot both move the same order.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from db_models import Order
from domain import state_machine
from domain.enums import FulfillmentStatus, SettlementSource, SettlementStatus, Source
from domain.errors import ValidationError
from services.order_store import OrderStore
from services.payment_orchestrator import (
    Cancelled,
    Declined,
    PaymentAttempt,
    PaymentOutcome,
    Settled,
    TimedOut,
    outcome_label,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    order_id: str
    changed: bool
    fulfillment: FulfillmentStatus
    settlement: SettlementStatus
    progress: int


def _result(order_id: str, changed: bool, fulfillment, settlement) -> TransitionResult:
    fulfillment = FulfillmentStatus(fulfillment)
    return TransitionResult(
        order_id=order_id,
        changed=changed,
        fulfillment=fulfillment,
        settlement=SettlementStatus(settlement),
        progress=state_machine.progress_for(fulfillment),
    )


def _status_fields(fulfillment: FulfillmentStatus, settlement: SettlementStatus) -> dict:
    return {
        "fulfillment_status": fulfillment.value,
        "settlement_status": settlement.value,
        "execution_progress": state_machine.progress_for(fulfillment),
    }


def _expected(order: Order) -> dict:
    return {
        "fulfillment_status": order.fulfillment_status,
        "settlement_status": order.settlement_status,
    }


async def transition(
    store: OrderStore,
    order_id: str,
    new_fulfillment: FulfillmentStatus | str,
    new_settlement: SettlementStatus | str | None = None,
) -> TransitionResult:
    """
    Move an order along the transition tables.

    Re-applying the current state is an idempotent success without a write.

    Raises:
        TransitionRejectedError: the table does not allow the move
        NotFoundError: no such order
    """
    order = await store.get(order_id)
    fulfillment = state_machine.check_fulfillment(order.fulfillment_status, new_fulfillment)
    settlement = (
        state_machine.check_settlement(order.settlement_status, new_settlement)
        if new_settlement is not None
        else SettlementStatus(order.settlement_status)
    )

    if fulfillment.value == order.fulfillment_status and settlement.value == order.settlement_status:
        return _result(order_id, False, fulfillment, settlement)

    await store.update(order_id, _status_fields(fulfillment, settlement), expected=_expected(order))
    logger.info(
        f"Order {order_id}: {order.fulfillment_status}/{order.settlement_status} "
        f"→ {fulfillment.value}/{settlement.value}"
    )
    return _result(order_id, True, fulfillment, settlement)


async def record_settlement(
    store: OrderStore,
    order_id: str,
    outcome: PaymentOutcome,
    attempt: PaymentAttempt | None = None,
) -> TransitionResult:
    """
    Fold a payment outcome into the order.

        Settled                  → settled, acknowledged (source gateway)
        TimedOut (optimistic)    → settled, acknowledged (source fallback, flagged)
        TimedOut (pessimistic)   → failed, fulfillment unchanged (flagged)
        Declined                 → failed, fulfillment unchanged
        Cancelled                → unchanged; a new attempt may follow

    The write is read back before returning (VerificationFailedError otherwise).
    """
    order = await store.get(order_id)

    if isinstance(outcome, Cancelled):
        logger.info(f"Order {order_id}: payment cancelled by user, settlement stays {order.settlement_status}")
        return _result(order_id, False, order.fulfillment_status, order.settlement_status)

    now = datetime.utcnow()
    fields: dict = {}
    if attempt is not None and attempt.gateway_order_ref:
        fields["gateway_order_ref"] = attempt.gateway_order_ref

    if isinstance(outcome, Settled) or (isinstance(outcome, TimedOut) and outcome.assumed_settled):
        settlement = SettlementStatus.SETTLED
        fulfillment = FulfillmentStatus(order.fulfillment_status)
        if fulfillment == FulfillmentStatus.PLACED:
            fulfillment = FulfillmentStatus.ACKNOWLEDGED
        fields.update(
            payment_ref=outcome.payment_ref,
            payment_method=outcome.method,
            settled_at=now,
        )
        if isinstance(outcome, TimedOut):
            fields.update(
                settlement_source=SettlementSource.FALLBACK.value,
                needs_reconciliation=True,
                reconciliation_note=f"assumed paid after {outcome.waited_seconds:g}s without callback",
            )
        else:
            fields["settlement_source"] = SettlementSource.GATEWAY.value
    else:
        settlement = SettlementStatus.FAILED
        fulfillment = FulfillmentStatus(order.fulfillment_status)
        if isinstance(outcome, TimedOut):
            fields.update(
                settlement_source=SettlementSource.FALLBACK.value,
                needs_reconciliation=True,
                reconciliation_note=f"assumed failed after {outcome.waited_seconds:g}s without callback",
            )
        else:
            fields["settlement_source"] = SettlementSource.GATEWAY.value
            if outcome.payment_ref:
                fields["payment_ref"] = outcome.payment_ref

    state_machine.check_settlement(order.settlement_status, settlement)
    state_machine.check_fulfillment(order.fulfillment_status, fulfillment)
    if order.settlement_status == settlement.value:
        return _result(order_id, False, order.fulfillment_status, order.settlement_status)

    fields.update(_status_fields(fulfillment, settlement))
    await store.update(order_id, fields, expected=_expected(order), verify=True)

    label = outcome_label(outcome)
    if outcome.source == Source.FALLBACK:
        logger.warning(f"⚠️  Order {order_id}: settlement {settlement.value} from fallback ({label})")
    else:
        logger.info(f"✅ Order {order_id}: settlement {settlement.value} ({label})")
    return _result(order_id, True, fulfillment, settlement)


async def flag_reconciliation(store: OrderStore, order_id: str, note: str) -> None:
    await store.update(order_id, {"needs_reconciliation": True, "reconciliation_note": note})
    logger.warning(f"Order {order_id} flagged for reconciliation: {note}")


async def reconcile_late_callback(store: OrderStore, order_id: str, outcome: PaymentOutcome) -> str:
    """
    Apply a gateway callback that arrived after the attempt was resolved.

    Settlement never moves backward, so contradictions are flagged rather than
    applied. Returns a short description of what was done.
    """
    order = await store.get(order_id)
    current = SettlementStatus(order.settlement_status)

    if isinstance(outcome, Cancelled):
        return "ignored"

    if current == SettlementStatus.UNSETTLED:
        await record_settlement(store, order_id, outcome)
        return "recorded"

    if isinstance(outcome, Settled):
        if current == SettlementStatus.SETTLED:
            if order.settlement_source == SettlementSource.FALLBACK.value:
                await store.update(
                    order_id,
                    {
                        "payment_ref": outcome.payment_ref,
                        "payment_method": outcome.method,
                        "settlement_source": SettlementSource.GATEWAY.value,
                        "needs_reconciliation": False,
                        "reconciliation_note": "confirmed by late gateway callback",
                    },
                    expected={"settlement_status": current.value},
                )
                logger.info(f"Order {order_id}: fallback settlement confirmed by gateway")
                return "confirmed"
            return "ignored"
        await flag_reconciliation(
            store, order_id, f"gateway captured {outcome.payment_ref} after order was marked {current.value}"
        )
        return "flagged"

    if isinstance(outcome, Declined) and current == SettlementStatus.SETTLED:
        # Authoritative decline after an optimistic timeout
        await flag_reconciliation(store, order_id, f"gateway declined after assumed settlement: {outcome.reason}")
        return "flagged"
    return "ignored"


async def admin_override(
    store: OrderStore,
    order_id: str,
    *,
    fulfillment: FulfillmentStatus | str | None = None,
    settlement: SettlementStatus | str | None = None,
    reason: str,
    actor: str = "admin",
) -> TransitionResult:
    """
    Administrative status override.

    Fulfillment may skip forward past the adjacency table but never moves
    backward or out of a terminal state; settlement still follows its table.
    """
    if not reason or not reason.strip():
        raise ValidationError("an override needs a reason", field="reason")
    if fulfillment is None and settlement is None:
        raise ValidationError("nothing to change", field="fulfillment")

    order = await store.get(order_id)
    target_f = (
        state_machine.check_fulfillment(order.fulfillment_status, fulfillment, override=True)
        if fulfillment is not None
        else FulfillmentStatus(order.fulfillment_status)
    )
    target_s = (
        state_machine.check_settlement(order.settlement_status, settlement)
        if settlement is not None
        else SettlementStatus(order.settlement_status)
    )
    if target_f.value == order.fulfillment_status and target_s.value == order.settlement_status:
        return _result(order_id, False, target_f, target_s)

    fields = _status_fields(target_f, target_s)
    fields.update(last_override_at=datetime.utcnow(), override_reason=f"{actor}: {reason.strip()}")
    await store.update(order_id, fields, expected=_expected(order))
    logger.warning(
        f"🛠️  Override on order {order_id} by {actor}: "
        f"{order.fulfillment_status}/{order.settlement_status} → {target_f.value}/{target_s.value} ({reason.strip()})"
    )
    return _result(order_id, True, target_f, target_s)


def serialize_order(order: Order) -> dict:
    return {
        "orderId": order.id,
        "trackingCode": order.tracking_code,
        "customerId": order.customer_id,
        "customerName": order.customer_name,
        "customerEmail": order.customer_email,
        "productType": order.product_type,
        "quantity": order.quantity,
        "unitPriceMinor": order.unit_price_minor,
        "totalMinor": order.total_minor,
        "currency": order.currency,
        "specifications": order.specifications,
        "gstNumber": order.gst_number,
        "hsnCode": order.hsn_code,
        "deliveryAddress": order.delivery_address,
        "artifactUrl": order.artifact_url,
        "artifactName": order.artifact_name,
        "settlementStatus": order.settlement_status,
        "fulfillmentStatus": order.fulfillment_status,
        "executionProgress": order.execution_progress,
        "gatewayOrderRef": order.gateway_order_ref,
        "paymentRef": order.payment_ref,
        "paymentMethod": order.payment_method,
        "settlementSource": order.settlement_source,
        "settledAt": order.settled_at.isoformat() if order.settled_at else None,
        "recordSource": order.record_source,
        "needsReconciliation": order.needs_reconciliation,
        "reconciliationNote": order.reconciliation_note,
        "invoiceId": order.invoice_id,
        "createdAt": order.created_at.isoformat() if order.created_at else None,
        "lastUpdated": order.last_updated.isoformat() if order.last_updated else None,
    }
