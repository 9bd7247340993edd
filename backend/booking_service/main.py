"""
Booking Service handlers

- POST /api/bookings           create a booking (pending / unpaid)
- GET  /api/bookings/<id>      public status of a booking, polled after checkout
"""
from flask import Blueprint, request, jsonify

from api_gateway.context import get_coordinator
from schemas.booking import BookingDraft

bp = Blueprint("bookings", __name__)

PUBLIC_FIELDS = {
    "id",
    "mode",
    "pickup_at",
    "vehicle",
    "status",
    "payment_status",
    "price_estimate",
    "currency",
    "paid_amount",
    "paid_currency",
}


@bp.route("/api/bookings", methods=["POST"])
def create_booking():
    """Validate the form payload and persist a new booking"""
    draft = BookingDraft.model_validate(request.get_json(silent=True) or {})
    created = get_coordinator().create_booking(draft)
    return jsonify(created.model_dump(mode="json")), 201


@bp.route("/api/bookings/<booking_id>", methods=["GET"])
def get_booking(booking_id: str):
    booking = get_coordinator().get_booking(booking_id)
    return jsonify({"ok": True, "booking": booking.model_dump(mode="json", include=PUBLIC_FIELDS)}), 200
