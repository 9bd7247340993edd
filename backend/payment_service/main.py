"""
Payment Service handlers

- POST /api/payment-sessions   start a checkout for a booking
- POST /api/payment-webhook    signed events from the payment processor

The webhook answers 2xx once an event is applied, recognised as a duplicate,
ignored or logged as orphaned/stale; 400 when the signature does not verify;
5xx only when the store write failed and the processor should redeliver.
"""
import logging

from flask import Blueprint, request, jsonify

from api_gateway.context import get_coordinator
from booking_service.errors import UnverifiedEventError
from schemas.payment import StartPaymentRequest

logger = logging.getLogger(__name__)

bp = Blueprint("payments", __name__)

SIGNATURE_HEADERS = ("Stripe-Signature", "X-Signature")


def _first_present(data: dict, *keys):
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def _start_payment_request(data: dict) -> StartPaymentRequest:
    """The booking form has sent these under several names over time"""
    return StartPaymentRequest.model_validate(
        {
            "booking_id": _first_present(data, "booking_id", "bookingId", "id", "client_reference_id") or "",
            "amount": _first_present(data, "price_estimate", "amount", "total", "estimated_total"),
            "currency": _first_present(data, "currency"),
        }
    )


@bp.route("/api/payment-sessions", methods=["POST"])
@bp.route("/api/create-checkout-session", methods=["POST"])
def create_payment_session():
    req = _start_payment_request(request.get_json(silent=True) or {})
    session = get_coordinator().start_payment(req.booking_id, req.amount, req.currency)
    return jsonify({"url": session.redirect_url, "id": session.session_id, "booking_id": session.booking_id}), 200


@bp.route("/api/payment-webhook", methods=["POST"])
@bp.route("/api/stripe-webhook", methods=["POST"])
def payment_webhook():
    payload = request.get_data()
    signature = next((request.headers[h] for h in SIGNATURE_HEADERS if h in request.headers), None)

    try:
        result = get_coordinator().apply_payment_event(payload, signature)
    except UnverifiedEventError as e:
        logger.warning("Rejected webhook from %s: %s", request.remote_addr, e.message)
        raise
    return jsonify({"received": True, **result.model_dump(mode="json", exclude_none=True)}), 200
