from dataclasses import dataclass
from typing import Protocol

import httpx
import structlog

from .config import settings

logger = structlog.get_logger("vetcare.channel")

_disabled_logged = False


@dataclass(frozen=True)
class SendResult:
    sid: str | None
    status: str | None = None


class ChannelError(Exception):
    def __init__(self, message: str, code: str | int | None = None, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status


class MessagingChannel(Protocol):
    originating_address: str

    def address(self, phone_number: str) -> str: ...

    def send(self, from_address: str, to_address: str, body: str) -> SendResult: ...


class TwilioWhatsAppChannel:
    """WhatsApp delivery through the Twilio Messages REST endpoint."""

    prefix = "whatsapp:"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        base_url: str = "https://api.twilio.com/2010-04-01",
        timeout: float = 10,
        client: httpx.Client | None = None,
    ):
        self.account_sid = account_sid
        self.originating_address = self.address(from_number)
        self._url = f"{base_url.rstrip('/')}/Accounts/{account_sid}/Messages.json"
        self._client = client or httpx.Client(auth=(account_sid, auth_token), timeout=timeout)

    def address(self, phone_number: str) -> str:
        return f"{self.prefix}{phone_number}"

    def send(self, from_address: str, to_address: str, body: str) -> SendResult:
        try:
            resp = self._client.post(
                self._url,
                data={"From": from_address, "To": to_address, "Body": body},
            )
        except httpx.HTTPError as exc:
            raise ChannelError(str(exc) or exc.__class__.__name__) from exc

        try:
            payload = resp.json()
        except ValueError:
            payload = {}

        if resp.status_code >= 400:
            raise ChannelError(
                str(payload.get("message") or resp.text or "send failed"),
                code=payload.get("code"),
                status=resp.status_code,
            )
        return SendResult(sid=payload.get("sid"), status=payload.get("status"))

    def close(self) -> None:
        self._client.close()


def build_channel(config=settings) -> TwilioWhatsAppChannel | None:
    """Return the configured channel, or None when credentials are missing.

    A missing configuration disables dispatch; it is logged once per process.
    """
    global _disabled_logged
    account_sid = (config.TWILIO_ACCOUNT_SID or "").strip()
    auth_token = (config.TWILIO_AUTH_TOKEN or "").strip()
    from_number = (config.TWILIO_WHATSAPP_NUMBER or "").strip()

    missing = [
        name
        for name, value in (
            ("TWILIO_ACCOUNT_SID", account_sid),
            ("TWILIO_AUTH_TOKEN", auth_token),
            ("TWILIO_WHATSAPP_NUMBER", from_number),
        )
        if not value
    ]
    if missing:
        if not _disabled_logged:
            logger.error("messaging_channel_disabled", missing=missing)
            _disabled_logged = True
        return None

    channel = TwilioWhatsAppChannel(
        account_sid=account_sid,
        auth_token=auth_token,
        from_number=from_number,
        base_url=config.TWILIO_API_BASE_URL,
        timeout=config.TWILIO_TIMEOUT_SECONDS,
    )
    logger.info("messaging_channel_initialized", provider="twilio_whatsapp")
    return channel
