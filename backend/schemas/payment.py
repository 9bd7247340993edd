"""
Payment data model: sessions, gateway events, event outcomes
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from enum import Enum
from decimal import Decimal, ROUND_HALF_UP

from schemas.booking import Currency


class PaymentEventType(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    IGNORED = "ignored"  # anything the coordinator does not act on


class SessionState(str, Enum):
    OPEN = "open"
    COMPLETE = "complete"
    EXPIRED = "expired"


class StartPaymentRequest(BaseModel):
    booking_id: str = Field(min_length=1)
    amount: Optional[Decimal] = None
    currency: Optional[Currency] = None

    @field_validator("currency", mode="before")
    @classmethod
    def _upper_currency(cls, value):
        if isinstance(value, str):
            return value.upper()
        return value


class PaymentSession(BaseModel):
    session_id: str
    redirect_url: str
    booking_id: str


class PaymentEvent(BaseModel):
    """Verified gateway event, normalised across gateways"""
    event_id: str
    type: PaymentEventType
    raw_type: Optional[str] = None
    booking_id: Optional[str] = None  # correlation token
    session_id: Optional[str] = None
    confirmation_id: Optional[str] = None
    amount_total: Optional[int] = None  # minor units, as gateways send it
    currency: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value):
        return value.upper() if value else value


class EventOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    ORPHANED = "orphaned"
    STALE = "stale"


class PaymentEventResult(BaseModel):
    outcome: EventOutcome
    event_id: str
    booking_id: Optional[str] = None
    payment_status: Optional[str] = None
    detail: Optional[str] = None


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / Decimal(100)).quantize(Decimal("0.01"))


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
