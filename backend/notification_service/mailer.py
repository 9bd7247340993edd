"""
Notification Adapter - transactional email

Callers treat every failure as non-fatal: the mailer raises NotificationError
and the booking flows catch and log it.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import requests

from config.settings import Environment, Settings

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class NotificationError(Exception):
    pass


class Mailer:
    """Base class for mailers"""

    def send(self, to: str, subject: str, html: str) -> str:
        """Send one email, return the provider message id"""
        raise NotImplementedError


class ResendMailer(Mailer):
    def __init__(
        self,
        api_key: str,
        sender: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        self.api_key = api_key
        self.sender = sender
        self.session = session or requests.Session()
        self.timeout = timeout

    def send(self, to: str, subject: str, html: str) -> str:
        try:
            resp = self.session.post(
                RESEND_API_URL,
                json={"from": self.sender, "to": [to], "subject": subject, "html": html},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise NotificationError(f"Email to {to} failed: {e}") from e

        try:
            return resp.json().get("id", "")
        except ValueError:
            return ""


class ConsoleMailer(Mailer):
    """Logs emails and keeps them in memory"""

    def __init__(self):
        self.outbox: List[dict] = []

    def send(self, to: str, subject: str, html: str) -> str:
        message_id = str(uuid.uuid4())
        self.outbox.append(
            {
                "id": message_id,
                "to": to,
                "subject": subject,
                "html": html,
                "sent_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        logger.info("Email to %s: %s", to, subject)
        return message_id


def get_mailer(settings: Settings) -> Mailer:
    if settings.environment == Environment.MOCK:
        return ConsoleMailer()
    if not (settings.resend_api_key and settings.resend_from):
        logger.warning("RESEND_API_KEY/RESEND_FROM not set, emails are only logged")
        return ConsoleMailer()
    return ResendMailer(settings.resend_api_key, settings.resend_from, timeout=settings.request_timeout)
