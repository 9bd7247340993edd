"""
API Gateway - single entry point for the booking backend

Builds one BookingCoordinator from the configured adapters and mounts the
booking, payment, admin and places handlers on it:
- /api/bookings*                      → booking_service
- /api/payment-sessions, /api/payment-webhook → payment_service
- /api/admin/*                        → admin_service
- /api/places-autocomplete, /api/place-details → places_service
"""
import json
import logging
from typing import Optional

import pydantic
from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS

from admin_service.main import bp as admin_bp
from api_gateway.context import COORDINATOR_KEY, SETTINGS_KEY
from booking_service.coordinator import BookingCoordinator
from booking_service.errors import BookingError
from booking_service.main import bp as bookings_bp
from booking_service.store import get_store
from config.settings import ConfigError, Environment, Settings
from notification_service.mailer import get_mailer
from payment_service.gateways import get_gateway
from payment_service.main import bp as payments_bp
from places_service.main import bp as places_bp

logger = logging.getLogger(__name__)


def build_coordinator(settings: Settings) -> BookingCoordinator:
    return BookingCoordinator(
        store=get_store(settings),
        gateway=get_gateway(settings),
        mailer=get_mailer(settings),
        webhook_secret=settings.webhook_secret,
        operator_email=settings.operator_email,
        default_currency=settings.default_currency,
    )


def create_app(settings: Optional[Settings] = None, coordinator: Optional[BookingCoordinator] = None) -> Flask:
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = Flask(__name__)
    CORS(app)
    app.config.update(
        SECRET_KEY=settings.session_secret,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_SECURE=settings.environment != Environment.MOCK,
    )
    app.extensions[SETTINGS_KEY] = settings
    app.extensions[COORDINATOR_KEY] = coordinator or build_coordinator(settings)

    for blueprint in (bookings_bp, payments_bp, admin_bp, places_bp):
        app.register_blueprint(blueprint)

    @app.errorhandler(BookingError)
    def handle_booking_error(e: BookingError):
        if e.retryable:
            logger.error("%s error: %s", e.kind.value, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(pydantic.ValidationError)
    def handle_invalid_body(e: pydantic.ValidationError):
        details = json.loads(e.json(include_url=False))
        return jsonify({"ok": False, "error": "validation", "details": details}), 400

    @app.errorhandler(ConfigError)
    def handle_config_error(e: ConfigError):
        logger.error("Configuration error: %s", e)
        return jsonify({"ok": False, "error": "config", "message": str(e)}), 500

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "healthy", "service": "api-gateway", "env": settings.environment.value}), 200

    logger.info("API Gateway ready (env=%s)", settings.environment.value)
    return app


if __name__ == "__main__":
    load_dotenv()
    settings = Settings.from_env()
    app = create_app(settings)
    print(f"🚀 Starting API Gateway on port {settings.port} ({settings.environment.value})")
    app.run(host="0.0.0.0", port=settings.port, debug=settings.environment == Environment.MOCK)
