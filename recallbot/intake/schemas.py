"""Pydantic schemas for persisted intake records and HTTP payloads."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .models import MemoryType, MessageType


class InteractionStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


class Direction(str, Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class ProcessingStatus(str, Enum):
    PROCESSED = "processed"
    QUERY_PROCESSED = "query_processed"
    ALREADY_PROCESSED = "already_processed"


class User(BaseModel):
    id: UUID
    phone_number: str
    created_at: datetime


class Interaction(BaseModel):
    id: UUID
    user_id: UUID
    provider_message_id: str
    message_type: MessageType
    content: str = ""
    direction: Direction = Direction.INBOUND
    status: InteractionStatus = InteractionStatus.PENDING
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @property
    def reply(self) -> str | None:
        return self.metadata.get("reply")


class MemoryRecord(BaseModel):
    id: UUID
    user_id: UUID
    interaction_id: UUID
    content: str
    external_id: str | None = None
    memory_type: MemoryType
    tags: list[str] = Field(default_factory=list)
    media_urls: list[str] = Field(default_factory=list)
    created_at: datetime


class StoredMedia(BaseModel):
    source_url: str
    content_type: str
    path: str
    size_bytes: int
    sha256: str


class MemorySearchHit(BaseModel):
    id: str
    content: str
    score: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ReplyPayload(BaseModel):
    type: str = "text"
    content: str


class WebhookResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    response: ReplyPayload
    message_sid: str | None = Field(default=None, alias="messageSid")
    user_id: UUID | None = Field(default=None, alias="userId")
    interaction_id: UUID | None = Field(default=None, alias="interactionId")
    memory_id: UUID | None = Field(default=None, alias="memoryId")
    processing_status: ProcessingStatus | None = Field(
        default=None, alias="processingStatus"
    )

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MemorySearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: UUID = Field(alias="userId")
    query: str = Field(min_length=1, max_length=500)
    limit: int = Field(default=5, ge=1, le=20)


class MemorySearchResponse(BaseModel):
    query: str
    results: list[MemorySearchHit]
