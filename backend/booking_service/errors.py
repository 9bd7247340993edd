"""
Error taxonomy of the booking lifecycle

Every error carries a `kind` discriminator and a `retryable` flag so callers
(HTTP handlers, the webhook endpoint) can branch without parsing messages.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    STORE = "store"
    GATEWAY = "gateway"
    UNVERIFIED_EVENT = "unverified_event"
    ORPHANED_EVENT = "orphaned_event"


class BookingError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION
    retryable: bool = False
    status_code: int = 400

    def __init__(self, message: str, *, booking_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.booking_id = booking_id

    def to_dict(self) -> dict:
        body = {"ok": False, "error": self.kind.value, "message": self.message}
        if self.booking_id:
            body["booking_id"] = self.booking_id
        return body


class ValidationError(BookingError):
    kind = ErrorKind.VALIDATION
    status_code = 400


class BookingNotFoundError(BookingError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class InvalidStateError(BookingError):
    kind = ErrorKind.INVALID_STATE
    status_code = 409


class StoreError(BookingError):
    kind = ErrorKind.STORE
    retryable = True
    status_code = 500


class GatewayError(BookingError):
    kind = ErrorKind.GATEWAY
    retryable = True
    status_code = 502


class UnverifiedEventError(BookingError):
    kind = ErrorKind.UNVERIFIED_EVENT
    status_code = 400


class OrphanedEventError(BookingError):
    """Acknowledged to the event source, kept only for operator follow-up"""
    kind = ErrorKind.ORPHANED_EVENT
    status_code = 200
