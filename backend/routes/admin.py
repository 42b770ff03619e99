"""
Admin endpoints — order status changes and the reconciliation queue.

/transition follows the transition tables. /override is the explicit,
logged escape hatch: it may skip fulfillment steps but never moves an order
backward or out of a terminal state.
"""

import logging

from fastapi import APIRouter, Depends, Query

from deps import get_order_store
from domain.responses import paginated_response, success_response
from domain.state_machine import parse_fulfillment, parse_settlement
from middleware.auth import require_admin
from models import OverrideRequest, TransitionRequest
from services import order_service
from services.order_service import TransitionResult, serialize_order
from services.order_store import OrderStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


def _result_body(result: TransitionResult) -> dict:
    return {
        "orderId": result.order_id,
        "changed": result.changed,
        "fulfillmentStatus": result.fulfillment.value,
        "settlementStatus": result.settlement.value,
        "executionProgress": result.progress,
    }


@router.post("/orders/{order_id}/transition")
async def transition_order(
    order_id: str,
    request: TransitionRequest,
    actor: str = Depends(require_admin),
    store: OrderStore = Depends(get_order_store),
):
    result = await order_service.transition(
        store,
        order_id,
        parse_fulfillment(request.fulfillment),
        parse_settlement(request.settlement) if request.settlement else None,
    )
    logger.info(f"Admin {actor} moved order {order_id} to {result.fulfillment.value}")
    return success_response(_result_body(result))


@router.post("/orders/{order_id}/override")
async def override_order(
    order_id: str,
    request: OverrideRequest,
    actor: str = Depends(require_admin),
    store: OrderStore = Depends(get_order_store),
):
    result = await order_service.admin_override(
        store,
        order_id,
        fulfillment=parse_fulfillment(request.fulfillment) if request.fulfillment else None,
        settlement=parse_settlement(request.settlement) if request.settlement else None,
        reason=request.reason,
        actor=actor,
    )
    return success_response(_result_body(result))


@router.get("/orders/reconciliation")
async def reconciliation_queue(
    limit: int = Query(100, ge=1, le=500),
    actor: str = Depends(require_admin),
    store: OrderStore = Depends(get_order_store),
):
    """Orders carrying fallback data or contradicting gateway callbacks."""
    orders = await store.list_needing_reconciliation(limit=limit)
    return paginated_response([serialize_order(o) for o in orders], limit=limit)
