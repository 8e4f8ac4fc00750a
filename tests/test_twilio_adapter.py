import pytest

from recallbot.channels import ChannelAdapter, TwilioWhatsAppAdapter
from recallbot.channels.twilio import normalize_phone
from recallbot.errors import UnauthorizedError, ValidationError
from recallbot.intake.models import MessageType
from recallbot.security.signature import compute_signature


def test_parse_text_message():
    adapter = TwilioWhatsAppAdapter("token")
    message = adapter.parse_incoming(
        {
            "MessageSid": "SM1",
            "From": "whatsapp:+15550001111",
            "To": "whatsapp:+15559990000",
            "Body": "hello",
            "NumMedia": "0",
        }
    )
    assert message.provider_message_id == "SM1"
    assert message.body == "hello"
    assert message.media == ()
    assert message.message_type is MessageType.TEXT
    assert message.received_at.tzinfo is not None


def test_parse_media_message_keeps_order():
    adapter = TwilioWhatsAppAdapter("token")
    message = adapter.parse_incoming(
        {
            "MessageSid": "SM2",
            "From": "whatsapp:+15550001111",
            "NumMedia": "2",
            "MediaUrl0": "https://m/0",
            "MediaContentType0": "application/pdf",
            "MediaUrl1": "https://m/1",
            "MediaContentType1": "image/png",
        }
    )
    assert [m.source_url for m in message.media] == ["https://m/0", "https://m/1"]
    assert message.message_type is MessageType.DOCUMENT
    assert message.body is None


@pytest.mark.parametrize(
    "payload, field",
    [
        ({"From": "whatsapp:+1"}, "MessageSid"),
        ({"MessageSid": "SM1"}, "From"),
        ({"MessageSid": "SM1", "From": "whatsapp:+1", "NumMedia": "many"}, "NumMedia"),
        ({"MessageSid": "SM1", "From": "whatsapp:+1", "NumMedia": "11"}, "NumMedia"),
    ],
)
def test_invalid_payloads(payload, field):
    with pytest.raises(ValidationError) as exc_info:
        TwilioWhatsAppAdapter("token").parse_incoming(payload)
    assert exc_info.value.status_code == 422
    assert [d["field"] for d in exc_info.value.details] == [field]


def test_verify_signature_uses_header():
    adapter = TwilioWhatsAppAdapter("token")
    body = b"MessageSid=SM1"
    url = "http://testserver/hook"
    adapter.verify_signature(url, body, {"X-Twilio-Signature": compute_signature("token", url, body)})
    with pytest.raises(UnauthorizedError):
        adapter.verify_signature(url, body, {})


def test_disabled_validation_accepts_anything():
    TwilioWhatsAppAdapter(None, validate=False).verify_signature("u", b"", {})


def test_normalize_phone():
    assert normalize_phone("whatsapp:+15550001111") == "+15550001111"
    assert normalize_phone(" +1555 ") == "+1555"
    assert normalize_phone("whatsapp:") is None
    assert normalize_phone(None) is None


def test_adapter_implements_channel_interface():
    adapter = TwilioWhatsAppAdapter("token")
    assert isinstance(adapter, ChannelAdapter)
    assert adapter.channel_name == "whatsapp"
