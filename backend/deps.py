"""
Shared FastAPI dependencies.

Routers import services from here so there is exactly one pending-payment
registry and one session table per process (auth guards live in
middleware.auth). Tests replace these via app.dependency_overrides.
"""

from __future__ import annotations

from typing import TypedDict

from fastapi import Query

from services.checkout_service import CheckoutService
from services.invoice_service import InvoiceService
from services.order_store import OrderStore
from services.payment_orchestrator import PaymentOrchestrator

_store: OrderStore | None = None
_orchestrator: PaymentOrchestrator | None = None
_invoices: InvoiceService | None = None
_checkout: CheckoutService | None = None


class Pagination(TypedDict):
    limit: int
    offset: int


def pagination_params(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=100_000),
) -> Pagination:
    return {"limit": limit, "offset": offset}


def get_order_store() -> OrderStore:
    global _store
    if _store is None:
        _store = OrderStore()
    return _store


def get_orchestrator() -> PaymentOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = PaymentOrchestrator()
    return _orchestrator


def get_invoice_service() -> InvoiceService:
    global _invoices
    if _invoices is None:
        _invoices = InvoiceService(get_order_store())
    return _invoices


def get_checkout_service() -> CheckoutService:
    global _checkout
    if _checkout is None:
        _checkout = CheckoutService(get_order_store(), get_orchestrator(), get_invoice_service())
    return _checkout


async def shutdown_services() -> None:
    """Abandon running checkouts and flush invoice deliveries."""
    if _checkout is not None:
        await _checkout.shutdown()
    elif _invoices is not None:
        await _invoices.wait_for_deliveries()
