"""
Tests for the Razorpay gateway client (HTTP calls mocked at httpx.AsyncClient.post).
"""
import hashlib
import hmac
from unittest.mock import AsyncMock

import httpx
import pytest

from config import settings
from domain.errors import PermissionDeniedError, UnavailableError, ValidationError
from services.payment_gateway import (
    RazorpayGateway,
    SimulatedGateway,
    build_widget_config,
    get_gateway,
)


def _mock_post(monkeypatch, status_code, payload) -> AsyncMock:
    response = httpx.Response(status_code, json=payload, request=httpx.Request("POST", "https://razorpay.test/v1/orders"))
    mock = AsyncMock(return_value=response)
    monkeypatch.setattr(httpx.AsyncClient, "post", mock)
    return mock


def _gateway(secret="rzp_secret"):
    return RazorpayGateway(key_id="rzp_test_key", key_secret=secret, api_base="https://razorpay.test/v1/")


class TestCreateOrder:
    @pytest.mark.asyncio
    async def test_success(self, monkeypatch):
        post = _mock_post(
            monkeypatch,
            200,
            {"id": "order_N1", "amount": 150000, "currency": "INR", "receipt": "TRK-cust-0-ABCDEFGH"},
        )

        order = await _gateway().create_order(amount_minor=150000, currency="INR", receipt="TRK-cust-0-ABCDEFGH")

        assert order.id == "order_N1"
        assert order.amount_minor == 150000
        url = post.call_args.args[0]
        kwargs = post.call_args.kwargs
        assert url == "https://razorpay.test/v1/orders"
        assert kwargs["json"]["amount"] == 150000
        assert kwargs["auth"] == ("rzp_test_key", "rzp_secret")

    @pytest.mark.asyncio
    async def test_long_receipt_is_truncated(self, monkeypatch):
        post = _mock_post(monkeypatch, 200, {"id": "order_N2"})

        await _gateway().create_order(amount_minor=100, currency="INR", receipt="R" * 60)

        assert len(post.call_args.kwargs["json"]["receipt"]) == 40

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_rejected_credentials(self, monkeypatch, status_code):
        _mock_post(monkeypatch, status_code, {"error": {"description": "Authentication failed"}})
        with pytest.raises(PermissionDeniedError):
            await _gateway().create_order(amount_minor=100, currency="INR", receipt="r")

    @pytest.mark.asyncio
    async def test_bad_request(self, monkeypatch):
        _mock_post(monkeypatch, 400, {"error": {"description": "amount must be at least 100"}})
        with pytest.raises(ValidationError) as exc:
            await _gateway().create_order(amount_minor=1, currency="INR", receipt="r")
        assert "amount must be at least 100" in exc.value.message

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self, monkeypatch):
        _mock_post(monkeypatch, 503, {})
        with pytest.raises(UnavailableError):
            await _gateway().create_order(amount_minor=100, currency="INR", receipt="r")

    @pytest.mark.asyncio
    async def test_missing_secret(self):
        with pytest.raises(PermissionDeniedError):
            await _gateway(secret="").create_order(amount_minor=100, currency="INR", receipt="r")

    @pytest.mark.asyncio
    async def test_simulated_makes_no_http_call(self, monkeypatch):
        post = AsyncMock()
        monkeypatch.setattr(httpx.AsyncClient, "post", post)
        order = await SimulatedGateway(key_secret="").create_order(amount_minor=100, currency="INR", receipt="r")
        assert order.id.startswith("rzp_order_")
        post.assert_not_called()


class TestSignature:
    def _sig(self, secret, order_id, payment_id):
        return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()

    @pytest.mark.unit
    def test_valid_signature(self):
        sig = self._sig("rzp_secret", "order_N1", "pay_1")
        assert _gateway().verify_callback_signature("order_N1", "pay_1", sig)

    @pytest.mark.unit
    def test_tampered_payment_id(self):
        sig = self._sig("rzp_secret", "order_N1", "pay_1")
        assert not _gateway().verify_callback_signature("order_N1", "pay_2", sig)

    @pytest.mark.unit
    def test_missing_signature(self):
        assert not _gateway().verify_callback_signature("order_N1", "pay_1", None)

    @pytest.mark.unit
    def test_fails_closed_without_secret(self):
        sig = self._sig("", "order_N1", "pay_1")
        assert not _gateway(secret="").verify_callback_signature("order_N1", "pay_1", sig)

    @pytest.mark.unit
    def test_simulated_accepts_unsigned(self):
        assert SimulatedGateway(key_secret="").verify_callback_signature("order_N1", "pay_1", None)

    @pytest.mark.unit
    def test_simulated_checks_signature_when_it_can(self):
        gateway = SimulatedGateway(key_secret="rzp_secret")
        assert not gateway.verify_callback_signature("order_N1", "pay_1", "forged")
        assert gateway.verify_callback_signature("order_N1", "pay_1", self._sig("rzp_secret", "order_N1", "pay_1"))


class TestWidgetConfig:
    @pytest.mark.unit
    def test_widget_options(self):
        config = build_widget_config(
            _gateway(),
            gateway_order_id="order_N1",
            amount_minor=150000,
            currency="INR",
            payer_name="Asha Verma",
            payer_email="asha@example.com",
            description="500 x sticker",
            tracking_code="TRK-cust-0-ABCDEFGH",
        )
        assert config["key"] == "rzp_test_key"
        assert config["order_id"] == "order_N1"
        assert config["amount"] == 150000
        assert config["prefill"] == {"name": "Asha Verma", "email": "asha@example.com"}
        assert config["notes"]["tracking_code"] == "TRK-cust-0-ABCDEFGH"
        assert config["name"] == settings.merchant_name
        assert config["simulated"] is False

    @pytest.mark.unit
    def test_get_gateway_follows_simulation_mode(self, monkeypatch):
        monkeypatch.setattr(settings, "payment_simulation_mode", True)
        assert isinstance(get_gateway(), SimulatedGateway)
        monkeypatch.setattr(settings, "payment_simulation_mode", False)
        gateway = get_gateway()
        assert type(gateway) is RazorpayGateway
