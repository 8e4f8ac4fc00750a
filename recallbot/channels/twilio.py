"""Twilio WhatsApp channel adapter."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from ..errors import ValidationError
from ..intake.models import InboundMessage, MediaAttachment
from ..security.signature import SIGNATURE_HEADER, require_valid_signature
from .base import ChannelAdapter

MAX_DECLARED_MEDIA = 10


def normalize_phone(address: str | None) -> str | None:
    """Strip the ``whatsapp:`` prefix from a provider address."""

    if not address:
        return None
    value = address.strip()
    if value.lower().startswith("whatsapp:"):
        value = value[len("whatsapp:"):]
    return value.strip() or None


def _field(payload: Mapping[str, Any], name: str) -> str | None:
    value = payload.get(name)
    if value is None:
        return None
    value = str(value)
    return value or None


class TwilioWhatsAppAdapter(ChannelAdapter):
    channel_name = "whatsapp"

    def __init__(self, auth_token: str | None, *, validate: bool = True) -> None:
        self._auth_token = auth_token
        self._validate = validate

    def verify_signature(
        self, url: str, body: bytes, headers: Mapping[str, str]
    ) -> None:
        if not self._validate:
            return
        require_valid_signature(
            self._auth_token, url, body, headers.get(SIGNATURE_HEADER)
        )

    def parse_incoming(self, payload: Mapping[str, Any]) -> InboundMessage:
        errors = []
        message_sid = _field(payload, "MessageSid")
        sender = _field(payload, "From")
        if not message_sid:
            errors.append({"field": "MessageSid", "message": "MessageSid is required"})
        if not sender:
            errors.append({"field": "From", "message": "From is required"})

        raw_count = _field(payload, "NumMedia") or "0"
        try:
            num_media = int(raw_count)
        except ValueError:
            num_media = -1
        if num_media < 0 or num_media > MAX_DECLARED_MEDIA:
            errors.append(
                {
                    "field": "NumMedia",
                    "message": f"NumMedia must be between 0 and {MAX_DECLARED_MEDIA}",
                }
            )
        if errors:
            raise ValidationError("Invalid webhook payload", details=errors)

        media = []
        for index in range(num_media):
            url = _field(payload, f"MediaUrl{index}")
            if not url:
                continue
            content_type = _field(payload, f"MediaContentType{index}") or ""
            media.append(MediaAttachment(source_url=url, content_type=content_type))

        return InboundMessage(
            provider_message_id=message_sid,
            from_address=sender,
            to_address=_field(payload, "To") or "",
            body=payload.get("Body"),
            media=tuple(media),
            received_at=datetime.now(timezone.utc),
        )
