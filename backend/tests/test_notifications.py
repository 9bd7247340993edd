from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from config.settings import Environment, Settings
from notification_service import templates
from notification_service.mailer import (
    RESEND_API_URL,
    ConsoleMailer,
    NotificationError,
    ResendMailer,
    get_mailer,
)
from schemas.booking import Booking


@pytest.fixture
def booking():
    return Booking(
        id="b1",
        mode="hourly",
        pickup="Hôtel <Quintessence>",
        pickup_at=datetime(2026, 12, 24, 18, 30, tzinfo=timezone.utc),
        hours=Decimal("3"),
        vehicle="sprinter",
        passengers=10,
        customer_name="Jean & Fils",
        customer_email="jean@example.com",
        price_estimate=Decimal("450"),
        currency="CAD",
        status="pending",
        payment_status="paid",
        paid_amount=Decimal("450.00"),
        paid_currency="CAD",
    )


def test_resend_posts_message():
    session = MagicMock()
    session.post.return_value.json.return_value = {"id": "re_123"}
    mailer = ResendMailer("re_key", "Limo <bookings@limo.test>", session=session, timeout=2)

    assert mailer.send("jean@example.com", "Hi", "<p>x</p>") == "re_123"

    args, kwargs = session.post.call_args
    assert args == (RESEND_API_URL,)
    assert kwargs["json"] == {
        "from": "Limo <bookings@limo.test>",
        "to": ["jean@example.com"],
        "subject": "Hi",
        "html": "<p>x</p>",
    }
    assert kwargs["headers"]["Authorization"] == "Bearer re_key"


def test_resend_failure_raises_notification_error():
    session = MagicMock()
    session.post.return_value.raise_for_status.side_effect = requests.HTTPError("422 Client Error")
    mailer = ResendMailer("re_key", "bookings@limo.test", session=session)

    with pytest.raises(NotificationError):
        mailer.send("jean@example.com", "Hi", "<p>x</p>")


def test_get_mailer_falls_back_to_console():
    assert isinstance(get_mailer(Settings(environment=Environment.MOCK)), ConsoleMailer)
    assert isinstance(get_mailer(Settings(environment=Environment.TEST)), ConsoleMailer)
    mailer = get_mailer(Settings(environment=Environment.TEST, resend_api_key="k", resend_from="a@b.c"))
    assert isinstance(mailer, ResendMailer)


def test_templates_escape_customer_input(booking):
    subject, html = templates.booking_received(booking)

    assert subject == "Booking received"
    assert "Jean &amp; Fils" in html
    assert "Hôtel &lt;Quintessence&gt;" in html
    assert "<Quintessence>" not in html
    assert "3 h" in html


def test_operator_template_names_booking(booking):
    subject, html = templates.operator_paid_booking(booking)

    assert subject == "New paid booking b1"
    assert "jean@example.com" in html
