"""Outbound email gateways."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from prgrade_core.errors import GatewayError
from prgrade_core.metrics import observe_call

logger = logging.getLogger(__name__)


class BaseMailer(ABC):
    @abstractmethod
    def send(self, to: str, subject: str, text: str) -> str | None:
        """Send one message and return the provider's message id, if any.

        Raises GatewayError on delivery failure.
        """


class NoOpMailer(BaseMailer):
    """Logs instead of sending. The default when no email provider is configured."""

    def send(self, to: str, subject: str, text: str) -> str | None:
        logger.info("Email to %s suppressed (no mailer configured): %s", to, subject)
        return None


class ResendMailer(BaseMailer):
    API_URL = "https://api.resend.com/emails"

    def __init__(self, api_key: str, sender: str, timeout: float = 10.0, client: httpx.Client | None = None):
        self.sender = sender
        self._client = client or httpx.Client(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {api_key}"}

    def send(self, to: str, subject: str, text: str) -> str | None:
        payload = {"from": self.sender, "to": [to], "subject": subject, "text": text}
        try:
            with observe_call("resend", "send"):
                response = self._client.post(self.API_URL, json=payload, headers=self._headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise GatewayError("resend", "send", e) from e
        return response.json().get("id")

    def close(self) -> None:
        self._client.close()


def build_mailer(config: dict) -> BaseMailer:
    if config.get("resend_api_key"):
        return ResendMailer(api_key=config["resend_api_key"], sender=config["email_from"])
    return NoOpMailer()
