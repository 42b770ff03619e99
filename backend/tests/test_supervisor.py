"""
Tests for the timeout/fallback supervisor.
"""
import asyncio

import httpx
import pytest

from domain.enums import Source
from domain.errors import NotFoundError, PermissionDeniedError, UnavailableError, ValidationError
from services.supervisor import Supervisor


async def _value(v="ok"):
    return v


async def _hang():
    await asyncio.sleep(10)


async def _unavailable():
    raise UnavailableError("order store")


@pytest.mark.asyncio
async def test_confirmed_result():
    sup = Supervisor(session_id="t1")
    result = await sup.call("store", lambda: _value("order-1"), timeout=1, fallback=lambda: "fb")

    assert result.value == "order-1"
    assert result.source == Source.CONFIRMED
    assert not result.is_fallback
    assert sup.events == []


@pytest.mark.asyncio
async def test_timeout_uses_fallback():
    sup = Supervisor(session_id="t2")
    result = await sup.call("gateway", _hang, timeout=0.05, fallback=lambda: "fallback_ref", action="create_order")

    assert result.value == "fallback_ref"
    assert result.is_fallback
    assert result.reason.startswith("timeout")
    assert sup.events[0].collaborator == "gateway"
    assert sup.events[0].action == "create_order"


@pytest.mark.asyncio
async def test_unavailable_uses_fallback():
    sup = Supervisor(session_id="t3")
    result = await sup.call("store", _unavailable, timeout=1, fallback=lambda: None)
    assert result.is_fallback
    assert "unavailable" in result.reason


@pytest.mark.asyncio
async def test_transport_error_uses_fallback():
    async def refused():
        raise httpx.ConnectError("connection refused")

    sup = Supervisor(session_id="t4")
    result = await sup.call("mailer", refused, timeout=1, fallback=lambda: False)
    assert result.is_fallback


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    ValidationError("bad quantity", field="quantity"),
    NotFoundError("Order", "x"),
    PermissionDeniedError("readonly"),
])
async def test_non_availability_errors_propagate(error):
    async def failing():
        raise error

    sup = Supervisor(session_id="t5")
    with pytest.raises(type(error)):
        await sup.call("store", failing, timeout=1, fallback=lambda: None)
    assert sup.events == []


@pytest.mark.asyncio
async def test_degraded_after_threshold_skips_collaborator():
    sup = Supervisor(session_id="t6", degrade_threshold=2)
    calls = 0

    async def counted():
        nonlocal calls
        calls += 1
        raise UnavailableError("order store")

    await sup.call("store", counted, timeout=1, fallback=lambda: None)
    assert not sup.is_degraded("store")
    await sup.call("store", counted, timeout=1, fallback=lambda: None)
    assert sup.is_degraded("store")

    result = await sup.call("store", counted, timeout=1, fallback=lambda: "skipped")
    assert calls == 2
    assert result.value == "skipped"
    assert result.reason == "degraded"
    assert sup.degraded_collaborators == ["store"]


@pytest.mark.asyncio
async def test_degradation_is_per_collaborator():
    sup = Supervisor(session_id="t7", degrade_threshold=1)
    await sup.call("renderer", _unavailable, timeout=1, fallback=lambda: None)

    result = await sup.call("store", lambda: _value("fine"), timeout=1, fallback=lambda: None)
    assert result.source == Source.CONFIRMED


@pytest.mark.asyncio
async def test_sessions_do_not_share_degradation():
    first = Supervisor(session_id="a", degrade_threshold=1)
    await first.call("store", _unavailable, timeout=1, fallback=lambda: None)

    second = Supervisor(session_id="b", degrade_threshold=1)
    result = await second.call("store", lambda: _value(), timeout=1, fallback=lambda: None)
    assert first.is_degraded("store")
    assert not second.is_degraded("store")
    assert result.source == Source.CONFIRMED


@pytest.mark.asyncio
async def test_describe_events():
    sup = Supervisor(session_id="t8")
    await sup.call("store", _unavailable, timeout=1, fallback=lambda: None, action="create_order")
    events = sup.describe_events()
    assert events[0]["collaborator"] == "store"
    assert events[0]["action"] == "create_order"
    assert "at" in events[0]
