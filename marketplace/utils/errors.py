"""Error taxonomy and standardized error responses."""
from typing import Any


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class DomainError(Exception):
    """Base class of every typed failure raised by the order lifecycle."""

    status_code = 400
    code = "DOMAIN_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        return error_response(self.code, self.message, self.details or None)


class ValidationError(DomainError):
    """Malformed or missing input. The caller must correct it."""

    status_code = 422
    code = "VALIDATION_FAILED"

    def __init__(self, message: str, *, fields: list[str] | None = None, code: str | None = None):
        self.fields = list(fields or [])
        super().__init__(message, code=code, details={"fields": self.fields} if self.fields else None)


class AmountMismatchError(ValidationError):
    code = "ESCROW_AMOUNT_MISMATCH"


class AuthorizationError(DomainError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(DomainError):
    status_code = 404
    code = "NOT_FOUND"


class PreconditionError(DomainError):
    """A state machine guard rejected the request; re-fetch before acting again."""

    status_code = 409
    code = "PRECONDITION_FAILED"


class IllegalTransitionError(PreconditionError):
    code = "ILLEGAL_TRANSITION"

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot move order from '{current}' to '{requested}'.",
            details={"current": current, "requested": requested},
        )


class InvalidStateError(PreconditionError):
    code = "INVALID_STATE"


class AlreadyReleasedError(InvalidStateError):
    code = "ESCROW_ALREADY_RELEASED"


class ConflictError(DomainError):
    """Lost a race for a scarce resource. Re-query, never blind-retry."""

    status_code = 409
    code = "CONFLICT"


class EscrowReferenceCollisionError(ConflictError):
    code = "ESCROW_REFERENCE_COLLISION"


class StorageError(DomainError):
    """Transient persistence failure, safe to retry with backoff."""

    status_code = 503
    code = "STORAGE_UNAVAILABLE"


__all__ = [
    "error_response",
    "DomainError",
    "ValidationError",
    "AmountMismatchError",
    "AuthorizationError",
    "NotFoundError",
    "PreconditionError",
    "IllegalTransitionError",
    "InvalidStateError",
    "AlreadyReleasedError",
    "ConflictError",
    "EscrowReferenceCollisionError",
    "StorageError",
]
