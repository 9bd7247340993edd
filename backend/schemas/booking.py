"""
Booking data model shared by every service
"""
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import List, Optional
from datetime import datetime
from enum import Enum
from decimal import Decimal


class TripMode(str, Enum):
    ONE_WAY = "one_way"
    HOURLY = "hourly"


class Currency(str, Enum):
    CAD = "CAD"
    USD = "USD"
    EUR = "EUR"


class BookingStatus(str, Enum):
    """Operational status, driven by the admin channel"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELED = "canceled"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    PAYMENT_FAILED = "payment_failed"
    CANCELED = "canceled"


TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.CANCELED})


class BookingDraft(BaseModel):
    """Trip + customer data submitted by the booking form"""
    mode: TripMode = TripMode.ONE_WAY
    pickup: str = Field(min_length=1)
    dropoff: Optional[str] = None
    pickup_at: datetime
    hours: Optional[Decimal] = Field(default=None, gt=0)
    vehicle: str = Field(min_length=1)
    passengers: int = Field(ge=1)
    luggage: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = None

    customer_name: str = Field(min_length=1)
    customer_email: EmailStr
    customer_phone: Optional[str] = None

    price_estimate: Decimal = Field(ge=0)
    currency: Optional[Currency] = None  # the coordinator fills in its default
    source: str = "website"

    @field_validator("currency", mode="before")
    @classmethod
    def _upper_currency(cls, value):
        if isinstance(value, str):
            return value.upper()
        return value

    @model_validator(mode="after")
    def _hours_only_for_hourly(self):
        if self.mode == TripMode.HOURLY and self.hours is None:
            raise ValueError("hours is required for hourly bookings")
        if self.mode != TripMode.HOURLY and self.hours is not None:
            raise ValueError("hours is only allowed for hourly bookings")
        return self


class Booking(BaseModel):
    id: str
    mode: TripMode
    pickup: str
    dropoff: Optional[str] = None
    pickup_at: datetime
    hours: Optional[Decimal] = None
    vehicle: str
    passengers: int
    luggage: Optional[int] = None
    notes: Optional[str] = None

    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None

    price_estimate: Decimal
    currency: Currency
    source: Optional[str] = None

    status: BookingStatus = BookingStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    payment_session_id: Optional[str] = None
    payment_confirmation_id: Optional[str] = None
    payment_event_id: Optional[str] = None
    paid_amount: Optional[Decimal] = None
    paid_currency: Optional[Currency] = None
    paid_at: Optional[datetime] = None

    # admin-only fields
    assigned_driver: Optional[str] = None
    internal_notes: Optional[str] = None
    price_final: Optional[Decimal] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("currency", "paid_currency", mode="before")
    @classmethod
    def _upper_currency(cls, value):
        if isinstance(value, str):
            return value.upper()
        return value


class BookingCreatedResponse(BaseModel):
    ok: bool = True
    id: str
    booking: Booking
    warnings: List[str] = Field(default_factory=list)


class AdminBookingPatch(BaseModel):
    """Fields the admin panel may change; payment fields are never patchable"""
    id: str
    status: Optional[BookingStatus] = None
    assigned_driver: Optional[str] = None
    internal_notes: Optional[str] = None
    price_final: Optional[Decimal] = Field(default=None, ge=0)

    def changes(self) -> dict:
        """Explicitly sent fields other than id and status"""
        return self.model_dump(
            mode="json", exclude_unset=True, exclude={"id", "status"}
        )
