"""
Caller authentication helpers.

Customers are identified by the external identity provider:
  - Authorization: Bearer <jwt>   (HS256, `sub` = customer id, `role` claim)

Backward compatibility (non-production only, ALLOW_HEADER_AUTH):
  - X-Customer-Id: <customer id>  (not cryptographically secure)

Admin routes accept a JWT with role=admin or the X-Admin-Key header.
"""
import hmac
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt
from fastapi import Header, Path

from config import settings
from domain.errors import PermissionDeniedError, UnauthorizedError

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    token = parts[1].strip()
    return token or None


def decode_access_token(token: str) -> dict:
    if not settings.jwt_secret:
        raise UnauthorizedError("Bearer tokens are not accepted (JWT secret not configured).")
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            issuer=settings.jwt_issuer,
            options={"require": ["exp", "iat", "iss", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Access token expired.")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid access token.")


def issue_access_token(*, customer_id: str, role: str = "customer") -> str:
    """Mint a token the way the identity provider does (dev tooling, tests)."""
    if not settings.jwt_secret:
        raise UnauthorizedError("Cannot issue tokens (JWT secret not configured).")
    now = _now_utc()
    exp = now.replace(microsecond=0) + timedelta(minutes=settings.jwt_access_ttl_minutes)
    payload = {
        "iss": settings.jwt_issuer,
        "sub": customer_id,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def _identify(authorization: Optional[str], x_customer_id: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """(customer id, role) from the request headers."""
    token = _parse_bearer_token(authorization)
    if token:
        payload = decode_access_token(token)
        return payload.get("sub"), payload.get("role")
    if x_customer_id and settings.allow_header_auth:
        return x_customer_id, "customer"
    return None, None


async def require_customer(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    x_customer_id: Optional[str] = Header(None, alias="X-Customer-Id"),
) -> str:
    """Dependency returning the authenticated customer id."""
    customer_id, _ = _identify(authorization, x_customer_id)
    if not customer_id:
        raise UnauthorizedError(
            "Authentication required. Provide Authorization: Bearer <token>"
            + (" or X-Customer-Id." if settings.allow_header_auth else ".")
        )
    return customer_id


async def require_customer_path(
    customer_id: str = Path(..., description="Customer id"),
    authorization: Optional[str] = Header(None, alias="Authorization"),
    x_customer_id: Optional[str] = Header(None, alias="X-Customer-Id"),
) -> str:
    """
    Dependency for routes that act on a `{customer_id}` path parameter.

    The caller must be that customer (or an admin).
    """
    caller, role = _identify(authorization, x_customer_id)
    if not caller:
        raise UnauthorizedError("Authentication required.")
    if caller != customer_id and role != ADMIN_ROLE:
        logger.warning(f"Auth mismatch: path customer={customer_id[:8]}... vs caller={caller[:8]}...")
        raise PermissionDeniedError("Customer mismatch for this resource.")
    return customer_id


async def require_admin(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
) -> str:
    """Dependency returning the admin actor name."""
    if x_admin_key:
        if settings.admin_api_key and hmac.compare_digest(x_admin_key, settings.admin_api_key):
            return "admin-key"
        raise PermissionDeniedError("Invalid admin key.")

    token = _parse_bearer_token(authorization)
    if not token:
        raise UnauthorizedError("Admin authentication required.")
    payload = decode_access_token(token)
    if payload.get("role") != ADMIN_ROLE:
        raise PermissionDeniedError("Admin role required for this endpoint.")
    return payload.get("sub") or "admin"
