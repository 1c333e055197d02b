"""Error taxonomy for the booking/payment engine.

Domain outcomes (bad window, lost slot race, refund over balance, ...) are
returned as ``Result`` values so callers branch on ``failure.kind``.
Infrastructure problems that no caller can branch around are raised.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    INVALID_WINDOW = "InvalidWindow"
    INVALID_AMOUNT = "InvalidAmount"
    SLOT_UNAVAILABLE = "SlotUnavailable"
    COURT_INACTIVE = "CourtInactive"
    NOT_FOUND = "NotFound"
    FORBIDDEN = "Forbidden"
    INVALID_TRANSITION = "InvalidTransition"
    REFUND_EXCEEDS_BALANCE = "RefundExceedsBalance"
    GATEWAY_UNAVAILABLE = "GatewayUnavailable"


# HTTP status for each failure kind, used by the route layer
HTTP_STATUS = {
    ErrorKind.INVALID_WINDOW: 422,
    ErrorKind.INVALID_AMOUNT: 422,
    ErrorKind.INVALID_TRANSITION: 422,
    ErrorKind.SLOT_UNAVAILABLE: 409,
    ErrorKind.REFUND_EXCEEDS_BALANCE: 409,
    ErrorKind.COURT_INACTIVE: 422,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.GATEWAY_UNAVAILABLE: 502,
}


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind.value, "message": self.message, **self.details}


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    failure: Optional[Failure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str, **details) -> "Result[T]":
        return cls(failure=Failure(kind=kind, message=message, details=details))


class CourtsideError(Exception):
    """Base class for raised (non-domain) errors."""


class GatewayVerificationError(CourtsideError):
    """Webhook signature missing, malformed or wrong. Never retried."""


class GatewayError(CourtsideError):
    """Outbound call to the payment gateway failed."""


class TransientStorageError(CourtsideError):
    """Database unavailable or contended; safe to retry the request."""
