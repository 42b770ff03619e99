"""
Price estimate shown on the order form.

    estimate = base price for the product × quantity tier multiplier

The estimate is informational; the order total is always unit price × quantity.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from domain.constants import LARGE_ORDER_MULTIPLIER, MINOR_UNITS, PRODUCT_BASE_PRICES, QUANTITY_TIERS
from domain.errors import ValidationError


@dataclass(frozen=True)
class PriceQuote:
    product_type: str
    quantity: int
    base_price_minor: int
    multiplier: float
    total_minor: int

    @property
    def unit_price_minor(self) -> int:
        return int((Decimal(self.total_minor) / self.quantity).to_integral_value(ROUND_HALF_UP))


def to_minor(amount: Decimal | float | int | str) -> int:
    """Rupees → paise, half-up."""
    value = (Decimal(str(amount)) * MINOR_UNITS).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(value)


def from_minor(amount_minor: int) -> Decimal:
    return (Decimal(amount_minor) / MINOR_UNITS).quantize(Decimal("0.01"))


def quantity_multiplier(quantity: int) -> float:
    for limit, multiplier in QUANTITY_TIERS:
        if quantity <= limit:
            return multiplier
    return LARGE_ORDER_MULTIPLIER


def estimate_total(product_type: str, quantity: int) -> PriceQuote:
    if product_type not in PRODUCT_BASE_PRICES:
        allowed = ", ".join(sorted(PRODUCT_BASE_PRICES))
        raise ValidationError(f"unknown product '{product_type}' (allowed: {allowed})", field="productType")
    if quantity < 1:
        raise ValidationError("quantity must be at least 1", field="quantity")

    base_minor = to_minor(PRODUCT_BASE_PRICES[product_type])
    multiplier = quantity_multiplier(quantity)
    return PriceQuote(
        product_type=product_type,
        quantity=quantity,
        base_price_minor=base_minor,
        multiplier=multiplier,
        total_minor=to_minor(from_minor(base_minor) * Decimal(str(multiplier))),
    )
