"""
Payment callback endpoint — the checkout widget reports back here.

Success callbacks must carry a valid gateway signature. Failure and dismissal
callbacks only ever move an attempt to a non-paid outcome.
"""

import logging

from fastapi import APIRouter, Depends

from deps import get_order_store, get_orchestrator
from domain.errors import NotFoundError, PermissionDeniedError
from domain.responses import success_response
from models import PaymentCallbackRequest
from services import order_service
from services.order_store import OrderStore
from services.payment_orchestrator import DeliveryStatus, PaymentOrchestrator, outcome_label

logger = logging.getLogger(__name__)
router = APIRouter(tags=["payments"])


@router.post("/payments/callback")
async def payment_callback(
    request: PaymentCallbackRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
    store: OrderStore = Depends(get_order_store),
):
    delivery = orchestrator.deliver(request.to_callback())

    if delivery.status == DeliveryStatus.REJECTED:
        raise PermissionDeniedError("Payment callback signature is invalid.")
    if delivery.status == DeliveryStatus.UNKNOWN:
        raise NotFoundError("Payment attempt", request.gateway_order_id)

    data = {
        "status": delivery.status.value,
        "outcome": outcome_label(delivery.outcome) if delivery.outcome else None,
        "orderId": delivery.attempt.order_id if delivery.attempt else None,
    }
    if delivery.queued:
        # the checkout session applies it once its own outcome is stored
        data["reconciliation"] = "queued"
    elif delivery.status == DeliveryStatus.LATE:
        data["reconciliation"] = await order_service.reconcile_late_callback(
            store, delivery.attempt.order_id, delivery.outcome
        )
    return success_response(data)
