from urllib.parse import parse_qs

import httpx
import pytest

from vetcare import channels
from vetcare.channels import ChannelError, TwilioWhatsAppChannel, build_channel


def make_channel(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return TwilioWhatsAppChannel(
        account_sid="AC123",
        auth_token="secret",
        from_number="+14155238886",
        base_url="https://api.twilio.test/2010-04-01",
        client=client,
    )


def test_send_posts_form_and_returns_sid():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(201, json={"sid": "SM42", "status": "queued"})

    channel = make_channel(handler)
    result = channel.send(channel.originating_address, channel.address("+9647701234567"), "hello")

    assert result.sid == "SM42"
    assert result.status == "queued"
    assert seen["url"] == "https://api.twilio.test/2010-04-01/Accounts/AC123/Messages.json"
    assert seen["form"]["From"] == ["whatsapp:+14155238886"]
    assert seen["form"]["To"] == ["whatsapp:+9647701234567"]
    assert seen["form"]["Body"] == ["hello"]


def test_provider_error_becomes_channel_error():
    def handler(request):
        return httpx.Response(400, json={"code": 63016, "message": "Outside the allowed window", "status": 400})

    channel = make_channel(handler)
    with pytest.raises(ChannelError) as exc_info:
        channel.send(channel.originating_address, "whatsapp:+1", "hi")

    assert exc_info.value.code == 63016
    assert exc_info.value.status == 400
    assert "allowed window" in exc_info.value.message


def test_transport_error_becomes_channel_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    channel = make_channel(handler)
    with pytest.raises(ChannelError):
        channel.send(channel.originating_address, "whatsapp:+1", "hi")


class _Config:
    TWILIO_ACCOUNT_SID = "AC123"
    TWILIO_AUTH_TOKEN = "secret"
    TWILIO_WHATSAPP_NUMBER = "+14155238886"
    TWILIO_API_BASE_URL = "https://api.twilio.test/2010-04-01"
    TWILIO_TIMEOUT_SECONDS = 5


def test_build_channel_without_credentials_returns_none(monkeypatch):
    monkeypatch.setattr(channels, "_disabled_logged", False)

    class Missing(_Config):
        TWILIO_AUTH_TOKEN = ""

    assert build_channel(Missing) is None
    assert channels._disabled_logged is True
    assert build_channel(Missing) is None


def test_build_channel_with_credentials():
    channel = build_channel(_Config)
    try:
        assert channel is not None
        assert channel.originating_address == "whatsapp:+14155238886"
    finally:
        channel.close()
