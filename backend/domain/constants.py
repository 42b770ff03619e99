"""
Domain constants used across services/routers.
"""

# Identifier prefixes
TRACKING_PREFIX = "TRK"
INVOICE_PREFIX = "INV"
FALLBACK_ORDER_PREFIX = "order"
EMERGENCY_ORDER_PREFIX = "emergency"
FALLBACK_GATEWAY_PREFIX = "fallback"
FALLBACK_PAYMENT_PREFIX = "pay_fallback"
SIMULATED_GATEWAY_PREFIX = "rzp_order"

# Base price (rupees) per product for the estimate shown on the order form
PRODUCT_BASE_PRICES = {
    "sticker": 500,
    "tag": 800,
    "box": 1500,
    "medicine_box": 2000,
    "custom": 3000,
}

# (max quantity, multiplier); first matching tier wins, else the last multiplier
QUANTITY_TIERS = [
    (100, 1.0),
    (500, 1.5),
    (1000, 2.0),
]
LARGE_ORDER_MULTIPLIER = 3.0

# Paise per rupee
MINOR_UNITS = 100

DUPLICATE_LOOKBACK_LIMIT = 5
