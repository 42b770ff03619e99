"""
Tests for the order-form price estimate and money conversion.
"""
from decimal import Decimal

import pytest

from domain.errors import ValidationError
from services.pricing_service import estimate_total, from_minor, quantity_multiplier, to_minor


class TestMoney:
    @pytest.mark.unit
    def test_to_minor(self):
        assert to_minor(1500) == 150000
        assert to_minor("3.00") == 300
        assert to_minor(Decimal("0.005")) == 1

    @pytest.mark.unit
    def test_from_minor(self):
        assert from_minor(150000) == Decimal("1500.00")
        assert from_minor(5) == Decimal("0.05")


class TestQuantityTiers:
    @pytest.mark.unit
    @pytest.mark.parametrize("quantity,multiplier", [
        (1, 1.0),
        (100, 1.0),
        (101, 1.5),
        (500, 1.5),
        (1000, 2.0),
        (1001, 3.0),
    ])
    def test_tiers(self, quantity, multiplier):
        assert quantity_multiplier(quantity) == multiplier


class TestEstimate:
    @pytest.mark.unit
    def test_hundred_stickers(self):
        quote = estimate_total("sticker", 100)
        assert quote.base_price_minor == 50000
        assert quote.total_minor == 50000

    @pytest.mark.unit
    def test_five_hundred_stickers(self):
        quote = estimate_total("sticker", 500)
        assert quote.multiplier == 1.5
        assert quote.total_minor == 75000
        assert quote.unit_price_minor == 150

    @pytest.mark.unit
    def test_custom_bulk(self):
        assert estimate_total("custom", 5000).total_minor == 900000

    @pytest.mark.unit
    def test_unknown_product(self):
        with pytest.raises(ValidationError) as exc:
            estimate_total("poster", 10)
        assert "sticker" in exc.value.message

    @pytest.mark.unit
    def test_zero_quantity(self):
        with pytest.raises(ValidationError):
            estimate_total("tag", 0)
