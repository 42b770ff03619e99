"""
Order endpoints — price quote, checkout sessions, order and invoice lookup.
"""

import logging

from fastapi import APIRouter, Depends, status

from config import settings
from deps import Pagination, get_checkout_service, get_invoice_service, get_order_store, pagination_params
from domain.responses import paginated_response, success_response
from middleware.auth import require_customer, require_customer_path
from models import CheckoutRequest, QuoteRequest
from services.checkout_service import CheckoutService
from services.invoice_service import InvoiceService, serialize_invoice
from services.order_service import serialize_order
from services.order_store import OrderStore
from services.pricing_service import estimate_total
from utils.validators import validated_tracking_code

logger = logging.getLogger(__name__)
router = APIRouter(tags=["orders"])


@router.post("/orders/quote")
async def quote(request: QuoteRequest):
    q = estimate_total(request.product_type, request.quantity)
    return success_response({
        "productType": q.product_type,
        "quantity": q.quantity,
        "basePriceMinor": q.base_price_minor,
        "multiplier": q.multiplier,
        "totalMinor": q.total_minor,
        "unitPriceMinor": q.unit_price_minor,
        "currency": settings.currency,
    })


@router.post("/checkout", status_code=status.HTTP_201_CREATED)
async def start_checkout(
    request: CheckoutRequest,
    customer_id: str = Depends(require_customer),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    """Create the order (duplicate-guarded) and return the payment widget config."""
    session = await checkout.start(request.to_draft(customer_id, settings.currency))
    return success_response(session.view())


@router.get("/checkout/{session_id}")
async def get_checkout(
    session_id: str,
    customer_id: str = Depends(require_customer),
    checkout: CheckoutService = Depends(get_checkout_service),
):
    return success_response(checkout.get_session(session_id, customer_id).view())


@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    customer_id: str = Depends(require_customer),
    store: OrderStore = Depends(get_order_store),
):
    order = await store.get(order_id, customer_id)
    return success_response(serialize_order(order))


@router.get("/customers/{customer_id}/orders")
async def list_customer_orders(
    customer_id: str = Depends(require_customer_path),
    page: Pagination = Depends(pagination_params),
    store: OrderStore = Depends(get_order_store),
):
    orders, total = await store.list_by_customer(customer_id, limit=page["limit"], offset=page["offset"])
    return paginated_response(
        [serialize_order(o) for o in orders],
        limit=page["limit"],
        offset=page["offset"],
        total=total,
    )


@router.get("/orders/{order_id}/invoices")
async def list_order_invoices(
    order_id: str,
    customer_id: str = Depends(require_customer),
    invoices: InvoiceService = Depends(get_invoice_service),
):
    items = await invoices.get_invoices_for_order(order_id, customer_id)
    return success_response([serialize_invoice(i) for i in items])


@router.get("/invoices/tracking/{tracking_code}")
async def list_tracking_invoices(
    tracking_code: str = Depends(validated_tracking_code),
    customer_id: str = Depends(require_customer),
    invoices: InvoiceService = Depends(get_invoice_service),
):
    items = await invoices.get_invoices_by_tracking_code(tracking_code, customer_id)
    return success_response([serialize_invoice(i) for i in items])
