"""
Input validation utilities for the Print Order Service.

Everything here runs before any external call: a rejected draft never creates
an order or a payment attempt.
"""
import re

from fastapi import Path

from domain.constants import PRODUCT_BASE_PRICES
from domain.errors import ValidationError

GSTIN_PATTERN = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z]{1}[1-9A-Z]{1}Z[0-9A-Z]{1}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
TRACKING_PATTERN = re.compile(r"^TRK-[^\s/]{1,6}-[A-Z0-9]{8}$")

MAX_QUANTITY = 100_000


def validate_gstin(gstin: str | None) -> str | None:
    """
    Validate an Indian GSTIN (15 characters).

    Returns the normalized (upper-case) GSTIN, or None when not given.
    """
    if gstin is None or not gstin.strip():
        return None
    value = gstin.strip().upper()
    if not GSTIN_PATTERN.match(value):
        raise ValidationError(f"invalid GSTIN '{gstin}'", field="gstNumber")
    return value


def validate_email(email: str) -> str:
    if not email or not EMAIL_PATTERN.match(email.strip()):
        raise ValidationError(f"invalid email address '{email}'", field="customerEmail")
    return email.strip()


def require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError("is required", field=field)
    return value.strip()


def validate_order_draft(draft) -> None:
    """Check a draft in place; GSTIN is normalized."""
    require_text(draft.customer_id, "customerId")
    require_text(draft.customer_name, "customerName")
    validate_email(draft.customer_email)
    require_text(draft.delivery_address, "deliveryAddress")
    require_text(draft.artifact_url, "artifactUrl")
    if draft.product_type not in PRODUCT_BASE_PRICES:
        allowed = ", ".join(sorted(PRODUCT_BASE_PRICES))
        raise ValidationError(f"unknown product '{draft.product_type}' (allowed: {allowed})", field="productType")
    if draft.quantity < 1 or draft.quantity > MAX_QUANTITY:
        raise ValidationError(f"must be between 1 and {MAX_QUANTITY}", field="quantity")
    if draft.unit_price_minor <= 0:
        raise ValidationError("must be positive", field="unitPrice")
    draft.gst_number = validate_gstin(draft.gst_number)


def validate_tracking_code(code: str) -> str:
    if not TRACKING_PATTERN.match(code):
        raise ValidationError(f"invalid tracking code '{code}'", field="trackingCode")
    return code


def validated_tracking_code(tracking_code: str = Path(..., description="Order tracking code")) -> str:
    """FastAPI dependency for validating tracking-code path parameters."""
    return validate_tracking_code(tracking_code)
