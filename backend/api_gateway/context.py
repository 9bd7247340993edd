"""
Accessors for the objects the app factory attaches to the Flask app
"""
from flask import current_app

from booking_service.coordinator import BookingCoordinator
from config.settings import Settings

COORDINATOR_KEY = "booking_coordinator"
SETTINGS_KEY = "settings"


def get_coordinator() -> BookingCoordinator:
    return current_app.extensions[COORDINATOR_KEY]


def get_settings() -> Settings:
    return current_app.extensions[SETTINGS_KEY]
