"""
Tests for the duplicate order guard.
"""
import asyncio
from datetime import timedelta

import pytest

from domain.errors import PermissionDeniedError, UnavailableError
from services.duplicate_guard import check_duplicate
from tests.conftest import CUSTOMER_ID, make_draft


async def _place(store, tracking_code="TRK-cust-0-DUP00001", **overrides):
    order_id = await store.create(make_draft(**overrides), tracking_code=tracking_code)
    return await store.get(order_id)


@pytest.mark.asyncio
async def test_same_total_three_minutes_later_is_duplicate(store):
    """₹1500 for 500 stickers, resubmitted after 3 minutes."""
    first = await _place(store)

    check = await check_duplicate(store, CUSTOMER_ID, 150000, now=first.created_at + timedelta(minutes=3))

    assert check.duplicate is True
    assert check.existing_order_id == first.id


@pytest.mark.asyncio
async def test_same_total_six_minutes_later_is_not_duplicate(store):
    first = await _place(store)

    check = await check_duplicate(store, CUSTOMER_ID, 150000, now=first.created_at + timedelta(minutes=6))

    assert check.duplicate is False
    assert check.existing_order_id is None


@pytest.mark.asyncio
async def test_custom_window(store):
    first = await _place(store)
    check = await check_duplicate(
        store, CUSTOMER_ID, 150000, within_minutes=10, now=first.created_at + timedelta(minutes=6)
    )
    assert check.duplicate is True


@pytest.mark.asyncio
async def test_different_total_is_not_duplicate(store):
    first = await _place(store)
    check = await check_duplicate(store, CUSTOMER_ID, 150001, now=first.created_at + timedelta(minutes=1))
    assert check.duplicate is False


@pytest.mark.asyncio
async def test_other_customer_is_not_duplicate(store):
    first = await _place(store)
    check = await check_duplicate(store, "cust-999", 150000, now=first.created_at + timedelta(minutes=1))
    assert check.duplicate is False


@pytest.mark.asyncio
async def test_failed_settlement_can_be_retried(store):
    first = await _place(store)
    await store.update(first.id, {"settlement_status": "failed"})

    check = await check_duplicate(store, CUSTOMER_ID, 150000, now=first.created_at + timedelta(minutes=1))
    assert check.duplicate is False


class _UnavailableStore:
    async def recent_by_customer_and_total(self, customer_id, total_minor):
        raise UnavailableError("order store", "connection refused")


class _HangingStore:
    async def recent_by_customer_and_total(self, customer_id, total_minor):
        await asyncio.sleep(10)


class _ReadonlyStore:
    async def recent_by_customer_and_total(self, customer_id, total_minor):
        raise PermissionDeniedError("Order store refused the operation")


@pytest.mark.asyncio
async def test_unavailable_store_fails_open():
    check = await check_duplicate(_UnavailableStore(), CUSTOMER_ID, 150000)
    assert check.duplicate is False


@pytest.mark.asyncio
async def test_slow_store_fails_open():
    check = await check_duplicate(_HangingStore(), CUSTOMER_ID, 150000, timeout=0.05)
    assert check.duplicate is False


@pytest.mark.asyncio
async def test_permission_denied_propagates():
    with pytest.raises(PermissionDeniedError):
        await check_duplicate(_ReadonlyStore(), CUSTOMER_ID, 150000)
