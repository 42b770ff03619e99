"""
Custom domain exceptions for consistent error handling.

These exceptions are mapped to HTTP status codes by the global exception handler
in main.py. Availability errors (UnavailableError, CollaboratorTimeoutError) are
the only ones the Supervisor may convert into fallback results; everything else
halts the flow and surfaces to the caller.
"""
from fastapi import HTTPException, status


class DomainError(HTTPException):
    """Base class for all domain-specific errors."""
    def __init__(self, message: str, status_code: int = status.HTTP_400_BAD_REQUEST, details: dict | None = None):
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class NotFoundError(DomainError):
    """Resource not found (404)."""
    def __init__(self, resource_type: str, identifier: str, details: dict | None = None):
        message = f"{resource_type} not found: {identifier}"
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, details=details)


class ValidationError(DomainError):
    """Validation error (400). Raised before any external call."""
    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        if field:
            message = f"Validation error on {field}: {message}"
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, details=details)


class PermissionDeniedError(DomainError):
    """Permission denied (403). Never retried, never replaced by a fallback."""
    def __init__(self, message: str = "Permission denied", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_403_FORBIDDEN, details=details)


class UnauthorizedError(DomainError):
    """Unauthorized access (401)."""
    def __init__(self, message: str = "Unauthorized", details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED, details=details)


class ConflictError(DomainError):
    """Resource conflict (409)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_409_CONFLICT, details=details)


class TransitionRejectedError(ConflictError):
    """A status change that the transition table does not allow (409)."""
    def __init__(self, axis: str, current: str, target: str, details: dict | None = None):
        self.axis = axis
        self.current = current
        self.target = target
        super().__init__(
            f"Illegal {axis} transition: {current} -> {target}",
            details={"axis": axis, "current": current, "target": target, **(details or {})},
        )


class UnavailableError(DomainError):
    """A collaborator (store, gateway, renderer, mailer) is unreachable (503)."""
    def __init__(self, collaborator: str, message: str = "", details: dict | None = None):
        self.collaborator = collaborator
        text = f"{collaborator} unavailable"
        if message:
            text = f"{text}: {message}"
        super().__init__(text, status_code=status.HTTP_503_SERVICE_UNAVAILABLE, details=details)


class CollaboratorTimeoutError(DomainError):
    """A collaborator did not answer within its deadline (504)."""
    def __init__(self, collaborator: str, timeout: float, details: dict | None = None):
        self.collaborator = collaborator
        self.timeout = timeout
        super().__init__(
            f"{collaborator} did not respond within {timeout:g}s",
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            details=details,
        )


class VerificationFailedError(DomainError):
    """A write was acknowledged but not visible on read-back (502)."""
    def __init__(self, order_id: str, fields: list[str], details: dict | None = None):
        self.order_id = order_id
        self.fields = fields
        super().__init__(
            f"Order {order_id}: write not reflected for {', '.join(fields)}",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details,
        )


class RenderRejectedError(DomainError):
    """The document renderer refused the invoice data (422)."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, details=details)


# Errors the Supervisor converts into degraded continuations.
AVAILABILITY_ERRORS = (UnavailableError, CollaboratorTimeoutError)
