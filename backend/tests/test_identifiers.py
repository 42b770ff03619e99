"""
Tests for identifier and tracking-code generation.
"""
import re

import pytest

from services import identifiers


class TestGenerateCode:
    @pytest.mark.unit
    def test_length_and_alphabet(self):
        code = identifiers.generate_code(12)
        assert len(code) == 12
        assert all(c in identifiers.ALPHANUMERIC for c in code)

    @pytest.mark.unit
    def test_custom_alphabet(self):
        assert set(identifiers.generate_code(50, "ab")) <= {"a", "b"}

    @pytest.mark.unit
    def test_codes_vary(self):
        assert len({identifiers.generate_code(8) for _ in range(50)}) > 1


class TestTrackingCode:
    @pytest.mark.unit
    def test_format(self):
        code = identifiers.make_tracking_code("abcdef123456")
        assert re.fullmatch(r"TRK-abcdef-[A-Z0-9]{8}", code)

    @pytest.mark.unit
    def test_short_owner_id(self):
        code = identifiers.make_tracking_code("ab")
        assert code.startswith("TRK-ab-")

    @pytest.mark.unit
    def test_empty_owner_id(self):
        assert identifiers.make_tracking_code("").startswith("TRK-ANON-")


class TestInvoiceId:
    @pytest.mark.unit
    def test_derived_from_tracking_code(self):
        invoice_id = identifiers.make_invoice_id("TRK-abcdef-ABCDEFGH", now=1_700_000_000.0)
        assert invoice_id.startswith("INV-TRK-abcdef-ABCDEFGH-")
        assert re.fullmatch(r"[0-9A-Z]{6}", invoice_id.rsplit("-", 1)[1])

    @pytest.mark.unit
    def test_same_instant_same_id(self):
        a = identifiers.make_invoice_id("TRK-x-ABCDEFGH", now=1_700_000_000.5)
        b = identifiers.make_invoice_id("TRK-x-ABCDEFGH", now=1_700_000_000.5)
        assert a == b

    @pytest.mark.unit
    def test_different_instants_differ(self):
        a = identifiers.make_invoice_id("TRK-x-ABCDEFGH", now=1_700_000_000.0)
        b = identifiers.make_invoice_id("TRK-x-ABCDEFGH", now=1_700_000_001.0)
        assert a != b


class TestFallbackIds:
    @pytest.mark.unit
    def test_fallback_order_id(self):
        order_id = identifiers.make_fallback_order_id("TRK-abc-ABCDEFGH")
        assert re.fullmatch(r"order_TRK-abc-ABCDEFGH_[A-Za-z0-9]{6}", order_id)
        assert identifiers.is_fallback_order_id(order_id)

    @pytest.mark.unit
    def test_emergency_order_id(self):
        order_id = identifiers.make_fallback_order_id("TRK-abc-ABCDEFGH", emergency=True)
        assert order_id.startswith("emergency_TRK-abc-ABCDEFGH_")
        assert identifiers.is_fallback_order_id(order_id)

    @pytest.mark.unit
    def test_store_ids_are_not_fallback(self):
        assert not identifiers.is_fallback_order_id("3f2a9c0d4e5b6a7f8091a2b3c4d5e6f7")

    @pytest.mark.unit
    def test_fallback_refs(self):
        assert re.fullmatch(r"fallback_[a-z0-9]{12}", identifiers.make_fallback_gateway_ref())
        assert re.fullmatch(r"pay_fallback_[a-z0-9]{12}", identifiers.make_fallback_payment_ref())
