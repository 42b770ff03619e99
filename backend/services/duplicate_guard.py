"""
Duplicate Order Guard — suppresses resubmission of the same checkout.

A new order is a duplicate when one of the owner's most recent orders carries
the identical total and was created inside the window. False negatives are
acceptable, false positives are not. When the lookup itself is unavailable the
guard fails OPEN: checkout availability wins over suppression.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from config import settings
from domain.enums import SettlementStatus
from domain.errors import AVAILABILITY_ERRORS
from services.order_store import OrderStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DuplicateCheck:
    duplicate: bool
    existing_order_id: str | None = None


async def check_duplicate(
    store: OrderStore,
    customer_id: str,
    total_minor: int,
    within_minutes: int | None = None,
    *,
    now: datetime | None = None,
    timeout: float | None = None,
) -> DuplicateCheck:
    window = timedelta(minutes=settings.duplicate_window_minutes if within_minutes is None else within_minutes)
    cutoff = (now or datetime.utcnow()) - window
    timeout = settings.store_query_timeout_seconds if timeout is None else timeout

    try:
        recent = await asyncio.wait_for(
            store.recent_by_customer_and_total(customer_id, total_minor),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Duplicate check timed out for {customer_id[:8]}; allowing checkout")
        return DuplicateCheck(duplicate=False)
    except AVAILABILITY_ERRORS as e:
        logger.warning(f"Duplicate check unavailable for {customer_id[:8]} ({e.message}); allowing checkout")
        return DuplicateCheck(duplicate=False)

    for order in recent:
        if order.created_at is None:
            continue
        # A declined checkout may be retried right away
        if order.settlement_status == SettlementStatus.FAILED.value:
            continue
        if order.created_at > cutoff:
            logger.info(f"Recent duplicate order found for {customer_id[:8]}: {order.id}")
            return DuplicateCheck(duplicate=True, existing_order_id=order.id)

    return DuplicateCheck(duplicate=False)
