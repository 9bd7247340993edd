"""
Payment Gateway Adapter
Stripe Checkout for test/production, an HMAC-signed mock for local runs
"""
import hashlib
import hmac
import json
import logging
import uuid
from decimal import Decimal
from typing import Dict, Optional
from urllib.parse import quote

import stripe

from booking_service.errors import GatewayError, UnverifiedEventError
from config.settings import Environment, Settings
from schemas.payment import (
    PaymentEvent,
    PaymentEventType,
    PaymentSession,
    SessionState,
    to_minor_units,
)

logger = logging.getLogger(__name__)

PRODUCT_NAME = "Mont Tremblant Limo Booking"


def _success_url(site_url: str, booking_id: str) -> str:
    return f"{site_url}/?paid=1&bookingId={quote(booking_id)}"


def _cancel_url(site_url: str, booking_id: str) -> str:
    return f"{site_url}/?canceled=1&bookingId={quote(booking_id)}"


def _parse_json(payload: bytes) -> dict:
    try:
        data = json.loads(payload)
    except ValueError as e:
        raise UnverifiedEventError("Event payload is not valid JSON") from e
    if not isinstance(data, dict):
        raise UnverifiedEventError("Event payload must be a JSON object")
    return data


class PaymentGateway:
    """Base class for payment gateways"""

    def create_session(
        self, booking_id: str, amount: Decimal, currency: str, customer_email: str
    ) -> PaymentSession:
        raise NotImplementedError

    def verify_event(self, payload: bytes, signature: Optional[str], secret: str) -> PaymentEvent:
        """Authenticate a raw webhook body; raises UnverifiedEventError"""
        raise NotImplementedError

    def session_state(self, session_id: str) -> SessionState:
        raise NotImplementedError

    def expire_session(self, session_id: str) -> None:
        raise NotImplementedError


class StripeGateway(PaymentGateway):
    """Stripe Checkout Sessions"""

    STRIPE_EVENT_TYPES = {
        "checkout.session.async_payment_succeeded": PaymentEventType.COMPLETED,
        "checkout.session.async_payment_failed": PaymentEventType.FAILED,
        "checkout.session.expired": PaymentEventType.EXPIRED,
    }

    def __init__(self, api_key: str, site_url: str, tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE):
        self.api_key = api_key
        self.site_url = site_url.rstrip("/")
        self.tolerance = tolerance

    def create_session(
        self, booking_id: str, amount: Decimal, currency: str, customer_email: str
    ) -> PaymentSession:
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                mode="payment",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency.lower(),
                            "product_data": {"name": f"{PRODUCT_NAME} ({booking_id})"},
                            "unit_amount": to_minor_units(amount),
                        },
                        "quantity": 1,
                    }
                ],
                customer_email=customer_email,
                client_reference_id=booking_id,
                metadata={"booking_id": booking_id},
                success_url=_success_url(self.site_url, booking_id),
                cancel_url=_cancel_url(self.site_url, booking_id),
            )
        except stripe.StripeError as e:
            logger.error("Stripe session create failed for booking %s: %s", booking_id, e)
            raise GatewayError(f"Payment session could not be created: {e}", booking_id=booking_id) from e

        return PaymentSession(session_id=session.id, redirect_url=session.url, booking_id=booking_id)

    def verify_event(self, payload: bytes, signature: Optional[str], secret: str) -> PaymentEvent:
        if not signature:
            raise UnverifiedEventError("Missing Stripe-Signature header")
        if not secret:
            raise UnverifiedEventError("Webhook secret is not configured")

        try:
            text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as e:
            raise UnverifiedEventError("Event payload is not valid UTF-8") from e
        try:
            stripe.WebhookSignature.verify_header(text, signature, secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise UnverifiedEventError(f"Invalid webhook signature: {e}") from e

        return self.to_payment_event(_parse_json(text))

    def to_payment_event(self, event: Dict) -> PaymentEvent:
        raw_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}

        if raw_type == "checkout.session.completed":
            # delayed methods complete the session before the money arrives
            paid = obj.get("payment_status") in ("paid", "no_payment_required")
            event_type = PaymentEventType.COMPLETED if paid else PaymentEventType.IGNORED
        else:
            event_type = self.STRIPE_EVENT_TYPES.get(raw_type, PaymentEventType.IGNORED)

        is_session = obj.get("object") == "checkout.session"
        metadata = obj.get("metadata") or {}
        payment_intent = obj.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")

        return PaymentEvent(
            event_id=event.get("id") or "",
            type=event_type,
            raw_type=raw_type,
            booking_id=(metadata.get("booking_id") or obj.get("client_reference_id")) if is_session else None,
            session_id=obj.get("id") if is_session else None,
            confirmation_id=payment_intent,
            amount_total=obj.get("amount_total"),
            currency=obj.get("currency"),
        )

    def session_state(self, session_id: str) -> SessionState:
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        except stripe.StripeError as e:
            raise GatewayError(f"Payment session {session_id} could not be read: {e}") from e
        return SessionState(session.status)

    def expire_session(self, session_id: str) -> None:
        try:
            stripe.checkout.Session.expire(session_id, api_key=self.api_key)
        except stripe.StripeError as e:
            raise GatewayError(f"Payment session {session_id} could not be expired: {e}") from e


def sign_mock_payload(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


class MockGateway(PaymentGateway):
    """Local gateway: in-memory sessions, events signed with HMAC-SHA256 of the body"""

    def __init__(self, site_url: str = "http://localhost:5000"):
        self.site_url = site_url.rstrip("/")
        self.sessions: Dict[str, dict] = {}

    def _new_session_id(self) -> str:
        return f"mock_sess_{uuid.uuid4().hex}"

    def create_session(
        self, booking_id: str, amount: Decimal, currency: str, customer_email: str
    ) -> PaymentSession:
        session_id = self._new_session_id()
        self.sessions[session_id] = {
            "booking_id": booking_id,
            "amount_total": to_minor_units(amount),
            "currency": currency.lower(),
            "customer_email": customer_email,
            "status": SessionState.OPEN,
        }
        return PaymentSession(
            session_id=session_id,
            redirect_url=_success_url(self.site_url, booking_id),
            booking_id=booking_id,
        )

    def verify_event(self, payload: bytes, signature: Optional[str], secret: str) -> PaymentEvent:
        if not signature or not secret:
            raise UnverifiedEventError("Missing event signature")
        expected = sign_mock_payload(payload, secret)
        if not hmac.compare_digest(expected, signature):
            raise UnverifiedEventError("Invalid event signature")

        data = _parse_json(payload)
        try:
            event_type = PaymentEventType(data.get("type"))
        except ValueError:
            event_type = PaymentEventType.IGNORED

        return PaymentEvent(
            event_id=data.get("id") or "",
            type=event_type,
            raw_type=data.get("type"),
            booking_id=data.get("booking_id"),
            session_id=data.get("session_id"),
            confirmation_id=data.get("confirmation_id"),
            amount_total=data.get("amount_total"),
            currency=data.get("currency"),
        )

    def session_state(self, session_id: str) -> SessionState:
        session = self.sessions.get(session_id)
        if session is None:
            raise GatewayError(f"Unknown payment session {session_id}")
        return session["status"]

    def expire_session(self, session_id: str) -> None:
        session = self.sessions.get(session_id)
        if session is None or session["status"] != SessionState.OPEN:
            raise GatewayError(f"Payment session {session_id} is not open")
        session["status"] = SessionState.EXPIRED


def get_gateway(settings: Settings) -> PaymentGateway:
    """Factory for the payment gateway of the configured environment"""
    if settings.environment == Environment.MOCK:
        return MockGateway(settings.site_url)
    settings.require("stripe_secret_key")
    return StripeGateway(settings.stripe_secret_key, settings.site_url)
