"""
Email subjects and bodies
"""
from html import escape
from typing import Tuple

from schemas.booking import Booking, TripMode


def _trip_rows(booking: Booking) -> str:
    rows = [
        ("Booking ID", booking.id),
        ("Pickup", booking.pickup),
        ("Pickup time", booking.pickup_at.strftime("%Y-%m-%d %H:%M")),
    ]
    if booking.mode == TripMode.HOURLY:
        rows.append(("Duration", f"{booking.hours} h"))
    elif booking.dropoff:
        rows.append(("Drop-off", booking.dropoff))
    rows.append(("Vehicle", booking.vehicle))
    rows.append(("Passengers", str(booking.passengers)))
    return "".join(
        f"<tr><td><b>{escape(label)}</b></td><td>{escape(value)}</td></tr>"
        for label, value in rows
    )


def booking_received(booking: Booking) -> Tuple[str, str]:
    subject = "Booking received"
    html = (
        f"<p>Hello {escape(booking.customer_name)},</p>"
        "<p>We received your booking request. You will get a confirmation once payment is complete.</p>"
        f"<table>{_trip_rows(booking)}</table>"
        f"<p>Estimated price: {booking.price_estimate} {booking.currency.value}</p>"
    )
    return subject, html


def payment_confirmed(booking: Booking) -> Tuple[str, str]:
    subject = "Payment confirmed - your ride is booked"
    html = (
        f"<p>Hello {escape(booking.customer_name)},</p>"
        f"<p>We received your payment of {booking.paid_amount} {booking.paid_currency.value}.</p>"
        f"<table>{_trip_rows(booking)}</table>"
        "<p>Thank you for riding with us.</p>"
    )
    return subject, html


def operator_paid_booking(booking: Booking) -> Tuple[str, str]:
    subject = f"New paid booking {booking.id}"
    contact = escape(booking.customer_email)
    if booking.customer_phone:
        contact += f" / {escape(booking.customer_phone)}"
    html = (
        f"<p><b>{escape(booking.customer_name)}</b> ({contact}) paid "
        f"{booking.paid_amount} {booking.paid_currency.value}.</p>"
        f"<table>{_trip_rows(booking)}</table>"
        f"<p>Notes: {escape(booking.notes or '-')}</p>"
    )
    return subject, html
