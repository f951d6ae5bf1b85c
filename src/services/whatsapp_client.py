"""WhatsApp message provider backed by the Twilio Messages API.

The provider is configured entirely from the environment:
TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_WHATSAPP_FROM enable
sending; APP_URL plus TWILIO_WEBHOOK_SECRET enable status callbacks.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import quote

import httpx

from src.errors import CargoPulseError
from src.utils.redaction import mask_phone

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
DEFAULT_TIMEOUT_SECONDS = 15.0
WHATSAPP_PREFIX = "whatsapp:"


@dataclass
class WhatsAppSendResult:
    """Provider acknowledgement of an accepted message."""

    provider_message_id: str
    status: str


class WhatsAppProvider(Protocol):
    """Contract used by the notification dispatcher."""

    def is_configured(self) -> bool:
        """Return True when credentials for real sends are present."""

    def send(self, to_e164: str, body: str) -> WhatsAppSendResult:
        """Send a message; raise on any provider or transport failure."""


def normalize_e164_phone(value: str | None) -> str | None:
    """Normalize a phone number to E.164 or return None.

    Whitespace and dashes are removed and a ``whatsapp:`` prefix is
    stripped. ``+`` numbers pass through and ``00`` international
    prefixes become ``+``. Anything else is rejected rather than guessing
    a country code.
    """
    raw = re.sub(r"\s+", "", str(value or "").strip()).replace("-", "")
    if not raw:
        return None
    if raw.startswith(WHATSAPP_PREFIX):
        raw = raw[len(WHATSAPP_PREFIX):]
    if raw.startswith("+"):
        return raw
    if raw.startswith("00"):
        return f"+{raw[2:]}"
    return None


def get_status_callback_url() -> str | None:
    """Return the status callback URL, or None when not configured."""
    base = os.environ.get("APP_URL", "").strip().rstrip("/")
    secret = os.environ.get("TWILIO_WEBHOOK_SECRET", "").strip()
    if not base or not secret:
        return None
    return f"{base}/api/v1/webhooks/whatsapp/status?secret={quote(secret, safe='')}"


class TwilioWhatsAppClient:
    """Send WhatsApp messages through Twilio's REST API.

    Example:
        client = TwilioWhatsAppClient.from_env()
        if client.is_configured():
            result = client.send("+447900000000", "Your cargo was collected")
    """

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        status_callback_url: str | None = None,
        base_url: str = TWILIO_API_BASE,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.status_callback_url = status_callback_url
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_env(cls) -> "TwilioWhatsAppClient":
        """Build a client from TWILIO_* environment variables."""
        return cls(
            account_sid=os.environ.get("TWILIO_ACCOUNT_SID", "").strip(),
            auth_token=os.environ.get("TWILIO_AUTH_TOKEN", "").strip(),
            from_number=os.environ.get("TWILIO_WHATSAPP_FROM", "").strip(),
            status_callback_url=get_status_callback_url(),
        )

    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def _from_address(self) -> str:
        if self.from_number.startswith(WHATSAPP_PREFIX):
            return self.from_number
        return f"{WHATSAPP_PREFIX}{self.from_number}"

    def send(self, to_e164: str, body: str) -> WhatsAppSendResult:
        """Send one message.

        Raises:
            CargoPulseError: E-3002 when Twilio rejects the request.
            httpx.HTTPError: On transport failures.
        """
        form = {
            "To": f"{WHATSAPP_PREFIX}{to_e164}",
            "From": self._from_address(),
            "Body": body,
        }
        if self.status_callback_url:
            form["StatusCallback"] = self.status_callback_url

        url = f"{self.base_url}/Accounts/{self.account_sid}/Messages.json"
        with httpx.Client(
            auth=(self.account_sid, self.auth_token),
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = client.post(url, data=form)

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code >= 400:
            message = data.get("message") or f"Twilio error ({response.status_code})"
            raise CargoPulseError.from_code(
                "E-3002", http_status=response.status_code, details=str(message)
            )

        logger.info(
            "WhatsApp message accepted for %s (sid=%s)", mask_phone(to_e164), data.get("sid")
        )
        return WhatsAppSendResult(
            provider_message_id=str(data.get("sid") or ""),
            status=str(data.get("status") or "queued"),
        )


def build_whatsapp_provider() -> WhatsAppProvider:
    """Build the WhatsApp provider from environment configuration."""
    return TwilioWhatsAppClient.from_env()
