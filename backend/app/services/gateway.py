"""
Messaging Gateway - abstraction over the outbound WhatsApp channel
===================================================================

The reminder engine only needs one capability: send a text to a contact and
learn whether it went through. Session lifecycle (QR pairing, reconnects) is
the concern of whatever sits behind the gateway.

USAGE:
    gateway = CloudApiGateway(api_token="EAAx...", phone_number_id="12345")
    result = gateway.send("5511987654321", "Olá!")
    if not result.ok:
        print(result.reason)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests

from ..core.config import Settings
from ..core.contacts import gateway_recipient

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    """Outcome of a single gateway send."""

    ok: bool
    reason: Optional[str] = None
    message_id: Optional[str] = None

    @classmethod
    def success(cls, message_id: Optional[str] = None) -> "SendResult":
        return cls(ok=True, message_id=message_id)

    @classmethod
    def failure(cls, reason: str) -> "SendResult":
        return cls(ok=False, reason=reason)


class MessagingGateway(ABC):
    """Send-text capability. Implementations must not raise for delivery failures."""

    @abstractmethod
    def send(self, contact: str, text: str) -> SendResult:
        """Send ``text`` to ``contact`` and report success or a failure reason."""
        ...

    def close(self) -> None:
        """Release any held resources."""


class CloudApiGateway(MessagingGateway):
    """WhatsApp Cloud API gateway.

    POST {api_url}/{phone_number_id}/messages with a bearer token and a text
    message body. Any non-2xx response or transport error is a failure.
    """

    DEFAULT_API_URL = "https://graph.facebook.com/v18.0"

    def __init__(
        self,
        api_token: str | None,
        phone_number_id: str | None,
        api_url: str = "",
        timeout_seconds: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        self._api_token = api_token or ""
        self._phone_number_id = phone_number_id or ""
        self._api_url = (api_url or self.DEFAULT_API_URL).rstrip("/")
        self._timeout = timeout_seconds
        self._session = session or requests.Session()

    def send(self, contact: str, text: str) -> SendResult:
        if not self._api_token or not self._phone_number_id:
            return SendResult.failure("gateway_not_configured")

        recipient = gateway_recipient(contact)
        try:
            response = self._session.post(
                f"{self._api_url}/{self._phone_number_id}/messages",
                headers={
                    "Authorization": f"Bearer {self._api_token}",
                    "Content-Type": "application/json",
                },
                json={
                    "messaging_product": "whatsapp",
                    "to": recipient,
                    "type": "text",
                    "text": {"body": text},
                },
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            LOGGER.warning("WhatsApp API unreachable for %s: %s", recipient, exc)
            return SendResult.failure(f"unreachable: {exc.__class__.__name__}")

        if not response.ok:
            detail = _error_detail(response)
            LOGGER.warning(
                "WhatsApp API rejected message to %s: status=%s detail=%s",
                recipient,
                response.status_code,
                detail,
            )
            return SendResult.failure(f"http_{response.status_code}: {detail}")

        message_id = None
        try:
            messages = response.json().get("messages") or []
            if messages:
                message_id = messages[0].get("id")
        except ValueError:
            pass
        return SendResult.success(message_id)

    def close(self) -> None:
        self._session.close()


class DryRunGateway(MessagingGateway):
    """Logs messages instead of sending them; every send succeeds."""

    def send(self, contact: str, text: str) -> SendResult:
        LOGGER.info("[dry-run] message to %s: %s", contact, text.replace("\n", " "))
        return SendResult.success(message_id="dry-run")


def build_gateway(settings: Settings) -> MessagingGateway:
    """Return the gateway selected by ``GATEWAY_MODE``."""

    if settings.gateway_mode == "dry_run":
        LOGGER.warning("Messaging gateway running in dry-run mode; no messages will be delivered")
        return DryRunGateway()
    if not settings.whatsapp_api_token or not settings.whatsapp_phone_number_id:
        LOGGER.warning(
            "WHATSAPP_API_TOKEN or WHATSAPP_PHONE_NUMBER_ID not set; sends will fail until configured"
        )
    return CloudApiGateway(
        api_token=settings.whatsapp_api_token,
        phone_number_id=settings.whatsapp_phone_number_id,
        api_url=settings.whatsapp_api_url,
        timeout_seconds=settings.gateway_timeout_seconds,
    )


def _error_detail(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return (response.text or "").strip()[:200]
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("type") or error)[:200]
    return str(payload)[:200]
