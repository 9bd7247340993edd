import json
from datetime import datetime, timedelta, timezone

import pytest

from api_gateway.main import create_app
from booking_service.coordinator import BookingCoordinator
from booking_service.errors import StoreError
from booking_service.store import InMemoryBookingStore
from config.settings import Environment, Settings
from notification_service.mailer import ConsoleMailer, NotificationError
from payment_service.gateways import MockGateway, sign_mock_payload

WEBHOOK_SECRET = "whsec_test"
ADMIN_PASSWORD = "letmein"
OPERATOR_EMAIL = "dispatch@limo.test"


class SequentialGateway(MockGateway):
    """Mock gateway issuing sess_1, sess_2, ..."""

    def __init__(self):
        super().__init__("https://limo.test")
        self.created = 0

    def _new_session_id(self) -> str:
        self.created += 1
        return f"sess_{self.created}"


class FailingMailer(ConsoleMailer):
    def send(self, to: str, subject: str, html: str) -> str:
        raise NotificationError(f"mail provider down for {to}")


class FlakyStore(InMemoryBookingStore):
    """Conditional updates fail while `down` is set"""

    def __init__(self):
        super().__init__()
        self.down = False

    def update_where(self, booking_id, guard, patch):
        if self.down:
            raise StoreError("connection reset")
        return super().update_where(booking_id, guard, patch)


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def gateway():
    return SequentialGateway()


@pytest.fixture
def mailer():
    return ConsoleMailer()


@pytest.fixture
def coordinator(store, gateway, mailer):
    return BookingCoordinator(
        store=store,
        gateway=gateway,
        mailer=mailer,
        webhook_secret=WEBHOOK_SECRET,
        operator_email=OPERATOR_EMAIL,
    )


@pytest.fixture
def draft():
    pickup_at = (datetime.now(timezone.utc) + timedelta(days=3)).replace(microsecond=0)
    return {
        "mode": "one_way",
        "pickup": "YUL Montreal-Trudeau Airport",
        "dropoff": "Mont Tremblant Village",
        "pickup_at": pickup_at.isoformat(),
        "vehicle": "suv",
        "passengers": 3,
        "luggage": 4,
        "customer_name": "Marie Tremblay",
        "customer_email": "marie@example.com",
        "customer_phone": "+15145550100",
        "price_estimate": "120",
        "currency": "CAD",
    }


@pytest.fixture
def settings():
    return Settings(
        environment=Environment.MOCK,
        secret_key="test-secret",
        admin_password=ADMIN_PASSWORD,
        stripe_webhook_secret=WEBHOOK_SECRET,
        operator_email=OPERATOR_EMAIL,
    )


@pytest.fixture
def app(settings, coordinator):
    app = create_app(settings, coordinator)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def event_payload(**fields) -> bytes:
    body = {"id": "evt_1", "type": "completed", "amount_total": 12000, "currency": "cad"}
    body.update(fields)
    return json.dumps(body).encode()


def sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return sign_mock_payload(payload, secret)
