"""
Booking Lifecycle Coordinator

Owns the payment-status state machine:

    unpaid ──start──▶ awaiting_payment ──completed──▶ paid (terminal)
       ▲                    │
       │                    └──failed/expired──▶ payment_failed
       └──────── released before a new session ◀──────┘
    unpaid | awaiting_payment | payment_failed ──cancel──▶ canceled (terminal)

Every payment-state write goes through `store.update_where` guarded on the
current payment status and session id. Webhook deliveries may be duplicated,
reordered or concurrent; a write whose guard no longer matches changes
nothing and the event is classified from a fresh read instead.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union
from uuid import UUID, uuid4

import pydantic

from booking_service.errors import (
    BookingNotFoundError,
    GatewayError,
    InvalidStateError,
    OrphanedEventError,
    StoreError,
    ValidationError,
)
from booking_service.store import DEFAULT_LIST_LIMIT, BookingStore, utcnow_iso
from notification_service import templates
from notification_service.mailer import Mailer
from payment_service.gateways import PaymentGateway
from schemas.booking import (
    AdminBookingPatch,
    Booking,
    BookingCreatedResponse,
    BookingDraft,
    BookingStatus,
    Currency,
    PaymentStatus,
    TERMINAL_PAYMENT_STATUSES,
    TripMode,
)
from schemas.payment import (
    EventOutcome,
    PaymentEvent,
    PaymentEventResult,
    PaymentEventType,
    PaymentSession,
    SessionState,
    from_minor_units,
)

logger = logging.getLogger(__name__)

RESTARTABLE_STATUSES = (PaymentStatus.AWAITING_PAYMENT, PaymentStatus.PAYMENT_FAILED)
CONFIRMABLE_STATUSES = (PaymentStatus.AWAITING_PAYMENT.value, PaymentStatus.PAYMENT_FAILED.value)
CANCELABLE_STATUSES = (
    PaymentStatus.UNPAID,
    PaymentStatus.AWAITING_PAYMENT,
    PaymentStatus.PAYMENT_FAILED,
)


def _to_booking(row: dict) -> Booking:
    try:
        return Booking.model_validate(row)
    except pydantic.ValidationError as e:
        raise StoreError(f"Stored booking is malformed: {e}", booking_id=row.get("id")) from e


def _parse_currency(value: Union[str, Currency]) -> Currency:
    try:
        return Currency(value.upper() if isinstance(value, str) else value)
    except ValueError:
        allowed = ", ".join(c.value for c in Currency)
        raise ValidationError(f"Unsupported currency {value!r}, expected one of {allowed}")


def _is_booking_id(token: Optional[str]) -> bool:
    """Booking ids are UUIDs; other integrations may reuse client_reference_id"""
    if not token:
        return False
    try:
        UUID(token)
    except ValueError:
        return False
    return True


def _check_draft(draft: BookingDraft) -> None:
    """Re-check required fields; drafts may reach here without model validation"""
    missing = [
        name
        for name in ("pickup", "pickup_at", "vehicle", "passengers", "customer_name", "customer_email")
        if not getattr(draft, name, None)
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    price = getattr(draft, "price_estimate", None)
    if price is None or price < 0:
        raise ValidationError("price_estimate must be a non-negative number")
    if (getattr(draft, "mode", None) == TripMode.HOURLY) != (getattr(draft, "hours", None) is not None):
        raise ValidationError("hours must be given for hourly bookings and only for them")


class BookingCoordinator:
    def __init__(
        self,
        store: BookingStore,
        gateway: PaymentGateway,
        mailer: Mailer,
        webhook_secret: str,
        operator_email: Optional[str] = None,
        default_currency: Union[str, Currency] = Currency.CAD,
    ):
        self.store = store
        self.gateway = gateway
        self.mailer = mailer
        self.webhook_secret = webhook_secret
        self.operator_email = operator_email
        self.default_currency = _parse_currency(default_currency)

    # ---------- reads ----------

    def get_booking(self, booking_id: str) -> Booking:
        row = self.store.get(booking_id)
        if row is None:
            raise BookingNotFoundError(f"Booking {booking_id} not found", booking_id=booking_id)
        return _to_booking(row)

    def list_bookings(self, status: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> List[Booking]:
        return [_to_booking(row) for row in self.store.list(status=status, limit=limit)]

    # ---------- create ----------

    def create_booking(self, draft: Union[BookingDraft, dict]) -> BookingCreatedResponse:
        """Persist a new booking as pending/unpaid. Never deduplicated."""
        if isinstance(draft, dict):
            try:
                draft = BookingDraft.model_validate(draft)
            except pydantic.ValidationError as e:
                raise ValidationError(f"Invalid booking: {e}") from e
        _check_draft(draft)

        row = draft.model_dump(mode="json", exclude_none=True)
        row.setdefault("currency", self.default_currency.value)
        row.update(
            {
                "id": str(uuid4()),
                "status": BookingStatus.PENDING.value,
                "payment_status": PaymentStatus.UNPAID.value,
            }
        )
        booking = _to_booking(self.store.insert(row))
        logger.info("Booking %s created for %s", booking.id, booking.customer_email)

        warnings = []
        subject, html = templates.booking_received(booking)
        if not self._send(booking.customer_email, subject, html, booking.id):
            warnings.append("confirmation_email_not_sent")

        return BookingCreatedResponse(id=booking.id, booking=booking, warnings=warnings)

    # ---------- payment session ----------

    def start_payment(
        self,
        booking_id: str,
        amount: Optional[Union[Decimal, int, str]] = None,
        currency: Optional[Union[str, Currency]] = None,
    ) -> PaymentSession:
        booking = self.get_booking(booking_id)

        try:
            amount = Decimal(str(amount)) if amount is not None else booking.price_estimate
        except InvalidOperation:
            raise ValidationError(f"Invalid amount {amount!r}", booking_id=booking_id)
        if amount is None or not amount.is_finite() or amount <= 0:
            raise ValidationError("Amount must be greater than zero", booking_id=booking_id)
        currency = _parse_currency(currency or booking.currency)

        if booking.payment_status in TERMINAL_PAYMENT_STATUSES:
            raise InvalidStateError(
                f"Booking is already {booking.payment_status.value}", booking_id=booking_id
            )
        if booking.payment_status in RESTARTABLE_STATUSES:
            self._release_session(booking)

        session = self.gateway.create_session(booking.id, amount, currency.value, booking.customer_email)

        changed = self.store.update_where(
            booking.id,
            {"payment_status": PaymentStatus.UNPAID.value, "payment_session_id": None},
            {
                "payment_status": PaymentStatus.AWAITING_PAYMENT.value,
                "payment_session_id": session.session_id,
                "updated_at": utcnow_iso(),
            },
        )
        if not changed:
            self._expire_quietly(session.session_id)
            raise InvalidStateError(
                "Booking changed while starting payment, reload and retry", booking_id=booking_id
            )

        logger.info("Payment session %s started for booking %s (%s %s)",
                    session.session_id, booking.id, amount, currency.value)
        return session

    def _release_session(self, booking: Booking) -> None:
        """Return an abandoned or failed checkout to unpaid with no session"""
        session_id = booking.payment_session_id
        if booking.payment_status == PaymentStatus.AWAITING_PAYMENT and session_id:
            state = self.gateway.session_state(session_id)
            if state == SessionState.COMPLETE:
                raise InvalidStateError(
                    "Payment for this booking is already being confirmed", booking_id=booking.id
                )
            if state == SessionState.OPEN:
                self.gateway.expire_session(session_id)

        changed = self.store.update_where(
            booking.id,
            {"payment_status": booking.payment_status.value, "payment_session_id": session_id},
            {
                "payment_status": PaymentStatus.UNPAID.value,
                "payment_session_id": None,
                "updated_at": utcnow_iso(),
            },
        )
        if not changed:
            raise InvalidStateError(
                "Booking changed while restarting payment, reload and retry", booking_id=booking.id
            )
        logger.info("Released payment session %s of booking %s", session_id, booking.id)

    def _expire_quietly(self, session_id: str) -> None:
        try:
            self.gateway.expire_session(session_id)
        except GatewayError as e:
            logger.warning("Could not expire payment session %s: %s", session_id, e)

    # ---------- payment events ----------

    def apply_payment_event(self, payload: bytes, signature: Optional[str]) -> PaymentEventResult:
        """Verify a raw webhook delivery, then apply it. Safe under redelivery."""
        event = self.gateway.verify_event(payload, signature, self.webhook_secret)
        return self.apply_verified_event(event)

    def apply_verified_event(self, event: PaymentEvent) -> PaymentEventResult:
        if event.type == PaymentEventType.IGNORED:
            logger.debug("Ignoring payment event %s (%s)", event.event_id, event.raw_type)
            return PaymentEventResult(outcome=EventOutcome.IGNORED, event_id=event.event_id)

        try:
            booking = self._resolve(event)
        except OrphanedEventError as e:
            logger.warning(
                "Orphaned payment event %s type=%s booking=%s session=%s: %s",
                event.event_id, event.type.value, event.booking_id, event.session_id, e.message,
            )
            return PaymentEventResult(
                outcome=EventOutcome.ORPHANED, event_id=event.event_id, detail=e.message
            )

        if not event.session_id:
            return self._stale(booking, event, "event carries no session id")
        if event.type == PaymentEventType.COMPLETED:
            return self._confirm(booking, event)
        return self._fail(booking, event)

    def _resolve(self, event: PaymentEvent) -> Booking:
        row = None
        if _is_booking_id(event.booking_id):
            row = self.store.get(event.booking_id)
        if row is None and event.session_id:
            row = self.store.find_by_session_id(event.session_id)
        if row is None:
            raise OrphanedEventError("No booking matches the event's correlation token or session")
        return _to_booking(row)

    def _confirm(self, booking: Booking, event: PaymentEvent) -> PaymentEventResult:
        if event.amount_total is not None:
            paid_amount = from_minor_units(event.amount_total)
        else:
            logger.warning("Event %s has no amount, recording the estimate", event.event_id)
            paid_amount = booking.price_estimate
        try:
            paid_currency = _parse_currency(event.currency or booking.currency)
        except ValidationError:
            logger.warning("Event %s has unexpected currency %s", event.event_id, event.currency)
            paid_currency = booking.currency

        now = utcnow_iso()
        changed = self.store.update_where(
            booking.id,
            {"payment_status": CONFIRMABLE_STATUSES, "payment_session_id": event.session_id},
            {
                "payment_status": PaymentStatus.PAID.value,
                "paid_amount": str(paid_amount),
                "paid_currency": paid_currency.value,
                "payment_confirmation_id": event.confirmation_id or event.event_id,
                "payment_event_id": event.event_id,
                "paid_at": now,
                "updated_at": now,
            },
        )
        current = self.get_booking(booking.id)

        if changed:
            logger.info("Booking %s paid: %s %s (event %s)",
                        current.id, paid_amount, paid_currency.value, event.event_id)
            self._notify_paid(current)
            return self._result(EventOutcome.APPLIED, current, event)

        if current.payment_status == PaymentStatus.PAID and current.payment_session_id == event.session_id:
            logger.info("Duplicate confirmation %s for booking %s", event.event_id, current.id)
            return self._result(EventOutcome.DUPLICATE, current, event)
        if current.payment_status == PaymentStatus.UNPAID and current.payment_session_id is None:
            # session not recorded yet; make the gateway redeliver later
            raise StoreError(
                f"Booking {current.id} has not recorded session {event.session_id} yet",
                booking_id=current.id,
            )
        return self._stale(current, event, "payment received for a canceled booking or a superseded session")

    def _fail(self, booking: Booking, event: PaymentEvent) -> PaymentEventResult:
        changed = self.store.update_where(
            booking.id,
            {"payment_status": PaymentStatus.AWAITING_PAYMENT.value, "payment_session_id": event.session_id},
            {
                "payment_status": PaymentStatus.PAYMENT_FAILED.value,
                "payment_event_id": event.event_id,
                "updated_at": utcnow_iso(),
            },
        )
        current = self.get_booking(booking.id)

        if changed:
            logger.info("Payment %s for booking %s (event %s)", event.type.value, current.id, event.event_id)
            return self._result(EventOutcome.APPLIED, current, event)
        if current.payment_status == PaymentStatus.PAID:
            logger.info("Ignoring %s event %s, booking %s is already paid",
                        event.type.value, event.event_id, current.id)
            return self._result(EventOutcome.IGNORED, current, event, "booking already paid")
        if current.payment_status == PaymentStatus.PAYMENT_FAILED and current.payment_session_id == event.session_id:
            return self._result(EventOutcome.DUPLICATE, current, event)
        return self._result(EventOutcome.IGNORED, current, event, "session is not the active one")

    def _stale(self, booking: Booking, event: PaymentEvent, detail: str) -> PaymentEventResult:
        logger.warning(
            "Unapplied %s event %s for booking %s (status=%s, session=%s, event session=%s): %s",
            event.type.value, event.event_id, booking.id, booking.payment_status.value,
            booking.payment_session_id, event.session_id, detail,
        )
        return self._result(EventOutcome.STALE, booking, event, detail)

    @staticmethod
    def _result(
        outcome: EventOutcome, booking: Booking, event: PaymentEvent, detail: Optional[str] = None
    ) -> PaymentEventResult:
        return PaymentEventResult(
            outcome=outcome,
            event_id=event.event_id,
            booking_id=booking.id,
            payment_status=booking.payment_status.value,
            detail=detail,
        )

    # ---------- cancellation / admin ----------

    def cancel_booking(self, booking_id: str) -> Booking:
        booking = self.get_booking(booking_id)
        if booking.payment_status == PaymentStatus.CANCELED:
            return booking
        if booking.payment_status == PaymentStatus.PAID:
            raise InvalidStateError("Paid bookings must be refunded before canceling", booking_id=booking_id)

        if booking.payment_status == PaymentStatus.AWAITING_PAYMENT and booking.payment_session_id:
            self._expire_quietly(booking.payment_session_id)

        changed = self.store.update_where(
            booking.id,
            {
                "payment_status": booking.payment_status.value,
                "payment_session_id": booking.payment_session_id,
            },
            {
                "payment_status": PaymentStatus.CANCELED.value,
                "status": BookingStatus.CANCELED.value,
                "updated_at": utcnow_iso(),
            },
        )
        if not changed:
            raise InvalidStateError("Booking changed while canceling, reload and retry", booking_id=booking_id)
        logger.info("Booking %s canceled", booking_id)
        return self.get_booking(booking_id)

    def admin_update(self, patch: AdminBookingPatch) -> Booking:
        """Admin override of operational fields; payment fields are never written here"""
        booking = self.get_booking(patch.id)
        changes = patch.changes()

        if patch.status is not None and patch.status != booking.status:
            if booking.payment_status == PaymentStatus.CANCELED:
                raise InvalidStateError("Canceled bookings cannot be reopened", booking_id=booking.id)
            if patch.status == BookingStatus.CANCELED and booking.payment_status in CANCELABLE_STATUSES:
                booking = self.cancel_booking(booking.id)
            else:
                if patch.status == BookingStatus.CANCELED:
                    logger.warning("Paid booking %s canceled by admin, refund manually", booking.id)
                changes["status"] = patch.status.value

        if changes:
            changes["updated_at"] = utcnow_iso()
            if not self.store.update_where(booking.id, {}, changes):
                raise BookingNotFoundError(f"Booking {booking.id} not found", booking_id=booking.id)
            logger.info("Booking %s updated by admin: %s", booking.id, sorted(changes))
        return self.get_booking(booking.id)

    # ---------- notifications ----------

    def _notify_paid(self, booking: Booking) -> None:
        subject, html = templates.payment_confirmed(booking)
        self._send(booking.customer_email, subject, html, booking.id)
        if self.operator_email:
            subject, html = templates.operator_paid_booking(booking)
            self._send(self.operator_email, subject, html, booking.id)

    def _send(self, to: str, subject: str, html: str, booking_id: str) -> bool:
        """Best-effort email; failures never reach the caller"""
        try:
            self.mailer.send(to, subject, html)
            return True
        except Exception as e:
            logger.warning("Email %r for booking %s not sent: %s", subject, booking_id, e)
            return False
