"""
Environment-driven settings for every service
"""
import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from schemas.booking import Currency


class Environment(str, Enum):
    TEST = "test"
    PRODUCTION = "production"
    MOCK = "mock"  # in-memory store, mock gateway, console mailer


class ConfigError(RuntimeError):
    pass


DEV_SECRET_KEY = "dev-secret-key"


def _currency(value: str) -> str:
    try:
        return Currency(value.strip().upper()).value
    except ValueError:
        allowed = ", ".join(c.value for c in Currency)
        raise ConfigError(f"DEFAULT_CURRENCY must be one of {allowed}, got {value!r}")


@dataclass(frozen=True)
class Settings:
    environment: Environment = Environment.MOCK
    port: int = 5000
    log_level: str = "INFO"
    request_timeout: float = 10.0

    site_url: str = "https://monttremblantlimoservices.com"
    default_currency: str = Currency.CAD.value
    secret_key: Optional[str] = None
    admin_password: Optional[str] = None

    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None

    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    resend_api_key: Optional[str] = None
    resend_from: Optional[str] = None
    operator_email: Optional[str] = None

    google_places_server_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        environment = Environment(os.getenv("PAYMENT_ENV", "mock").lower())
        return cls(
            environment=environment,
            port=int(os.getenv("PORT", 5000)),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", 10)),
            site_url=os.getenv("SITE_URL", cls.site_url).rstrip("/"),
            default_currency=_currency(os.getenv("DEFAULT_CURRENCY") or Currency.CAD.value),
            secret_key=os.getenv("SECRET_KEY") or None,
            admin_password=os.getenv("ADMIN_PASSWORD") or None,
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_service_role_key=(os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip() or None,
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
            resend_api_key=os.getenv("RESEND_API_KEY") or None,
            resend_from=os.getenv("RESEND_FROM") or None,
            operator_email=os.getenv("OPERATOR_EMAIL") or None,
            google_places_server_key=os.getenv("GOOGLE_PLACES_SERVER_KEY") or None,
        )

    def require(self, *names: str) -> None:
        """Fail fast when a setting needed by the selected environment is unset"""
        for name in names:
            if not getattr(self, name):
                raise ConfigError(f"Missing env var: {name.upper()}")

    @property
    def session_secret(self) -> str:
        """Key signing the admin session cookie; only mock mode may use the dev key"""
        if self.environment == Environment.MOCK:
            return self.secret_key or DEV_SECRET_KEY
        self.require("secret_key", "admin_password")
        return self.secret_key

    @property
    def webhook_secret(self) -> str:
        if self.environment == Environment.MOCK:
            return self.stripe_webhook_secret or "whsec_mock"
        self.require("stripe_webhook_secret")
        return self.stripe_webhook_secret
