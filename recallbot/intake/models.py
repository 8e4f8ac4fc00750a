"""Domain types for inbound message intake."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class MessageType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    AUDIO = "AUDIO"
    VIDEO = "VIDEO"
    DOCUMENT = "DOCUMENT"


class MemoryType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    AUDIO = "AUDIO"
    VIDEO = "VIDEO"
    MIXED = "MIXED"


class Intent(str, Enum):
    QUERY = "QUERY"
    MEMORY = "MEMORY"


class IntakeStage(str, Enum):
    RECEIVED = "RECEIVED"
    INTERACTION_CREATED = "INTERACTION_CREATED"
    MEDIA_PROCESSED = "MEDIA_PROCESSED"
    MEMORY_STORED = "MEMORY_STORED"
    FINALIZED = "FINALIZED"
    FAILED = "FAILED"


MEMORY_TYPE_FOR_MESSAGE: dict[MessageType, MemoryType] = {
    MessageType.TEXT: MemoryType.TEXT,
    MessageType.IMAGE: MemoryType.IMAGE,
    MessageType.AUDIO: MemoryType.AUDIO,
    MessageType.VIDEO: MemoryType.MIXED,
    MessageType.DOCUMENT: MemoryType.TEXT,
}

PLACEHOLDER_CONTENT: dict[MessageType, str] = {
    MessageType.TEXT: "Message",
    MessageType.IMAGE: "Image message",
    MessageType.AUDIO: "Audio message",
    MessageType.VIDEO: "Video message",
    MessageType.DOCUMENT: "Document message",
}

for _table in (MEMORY_TYPE_FOR_MESSAGE, PLACEHOLDER_CONTENT):
    _missing = set(MessageType) - set(_table)
    if _missing:  # pragma: no cover - guards edits to the tables above
        raise RuntimeError(f"message types without mapping: {sorted(m.value for m in _missing)}")


def message_type_for(content_type: str | None) -> MessageType:
    """Map a MIME type onto the :class:`MessageType` of its attachment."""

    value = (content_type or "").lower()
    if value.startswith("image/"):
        return MessageType.IMAGE
    if value.startswith("audio/"):
        return MessageType.AUDIO
    if value.startswith("video/"):
        return MessageType.VIDEO
    return MessageType.DOCUMENT


@dataclass(frozen=True)
class MediaAttachment:
    source_url: str
    content_type: str


@dataclass(frozen=True)
class InboundMessage:
    """A single provider delivery, built once per webhook request."""

    provider_message_id: str
    from_address: str
    to_address: str
    body: Optional[str] = None
    media: tuple[MediaAttachment, ...] = ()
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def message_type(self) -> MessageType:
        if not self.media:
            return MessageType.TEXT
        return message_type_for(self.media[0].content_type)

    @property
    def memory_type(self) -> MemoryType:
        return MEMORY_TYPE_FOR_MESSAGE[self.message_type]

    @property
    def text(self) -> str:
        return (self.body or "").strip()


@dataclass(frozen=True)
class ClassificationResult:
    intent: Intent
    trigger: Optional[str] = None

    @property
    def is_query(self) -> bool:
        return self.intent is Intent.QUERY
