"""Error kinds raised across the billing engine and the standard error payload."""
from __future__ import annotations

import enum
from typing import Any


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class ErrorKind(str, enum.Enum):
    """Failure categories that drive retry and HTTP mapping decisions."""

    CREDENTIAL_MISSING = "CREDENTIAL_MISSING"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    GATEWAY_REJECTED = "GATEWAY_REJECTED"
    DUPLICATE_EVENT = "DUPLICATE_EVENT"
    UNRESOLVED_REFERENCE = "UNRESOLVED_REFERENCE"
    TRANSIENT_FAILURE = "TRANSIENT_FAILURE"
    RETRY_EXHAUSTED = "RETRY_EXHAUSTED"
    INVALID_STATE = "INVALID_STATE"


class BillingError(Exception):
    """Base class for typed billing failures."""

    kind: ErrorKind = ErrorKind.TRANSIENT_FAILURE
    code: str = "BILLING_ERROR"
    retryable: bool = False

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_response(self) -> dict[str, Any]:
        return error_response(self.code, self.message, self.details or None)


class CredentialMissing(BillingError):
    """No active gateway credential is configured."""

    kind = ErrorKind.CREDENTIAL_MISSING
    code = "PAYMENT_CREDENTIAL_MISSING"


class InvalidCredentials(BillingError):
    """The gateway refused the access token offered for configuration."""

    kind = ErrorKind.INVALID_CREDENTIALS
    code = "PAYMENT_CREDENTIAL_INVALID"


class GatewayRejected(BillingError):
    """The gateway answered with a non-2xx status."""

    kind = ErrorKind.GATEWAY_REJECTED
    code = "GATEWAY_REJECTED"

    def __init__(self, message: str, *, status_code: int, body: Any = None) -> None:
        super().__init__(message, details={"status_code": status_code, "gateway_body": body})
        self.status_code = status_code
        self.body = body


class TransientFailure(BillingError):
    """A failure that may succeed on a later attempt."""

    kind = ErrorKind.TRANSIENT_FAILURE
    code = "TRANSIENT_FAILURE"
    retryable = True


class GatewayUnavailable(TransientFailure):
    """The gateway timed out or could not be reached."""

    code = "GATEWAY_UNAVAILABLE"


class ChargeNotPayable(TransientFailure):
    """An approval arrived for a charge whose payment link was never stored."""

    code = "CHARGE_NOT_PAYABLE"


class UnresolvedReference(BillingError):
    """The event does not reference a known charge; retrying will not help."""

    kind = ErrorKind.UNRESOLVED_REFERENCE
    code = "UNRESOLVED_REFERENCE"


class RetryExhausted(BillingError):
    """A webhook event used up its retry budget and needs an operator."""

    kind = ErrorKind.RETRY_EXHAUSTED
    code = "WEBHOOK_RETRY_EXHAUSTED"


class ChargeStateError(BillingError):
    """The requested ledger operation is not allowed in the charge's status."""

    kind = ErrorKind.INVALID_STATE
    code = "CHARGE_INVALID_STATE"


def is_retryable(exc: BaseException) -> bool:
    """Return True when the failure should be retried by the scheduler.

    Untyped exceptions (database errors, bugs) count as retryable so they
    consume the bounded retry budget and end up in operator review.
    """

    if isinstance(exc, BillingError):
        return exc.retryable
    return True


__all__ = [
    "error_response",
    "ErrorKind",
    "BillingError",
    "CredentialMissing",
    "InvalidCredentials",
    "GatewayRejected",
    "TransientFailure",
    "GatewayUnavailable",
    "ChargeNotPayable",
    "UnresolvedReference",
    "RetryExhausted",
    "ChargeStateError",
    "is_retryable",
]
