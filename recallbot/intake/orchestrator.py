"""Memory creation for a claimed inbound message.

Stages: RECEIVED -> INTERACTION_CREATED -> (MEDIA_PROCESSED) -> MEMORY_STORED
-> FINALIZED, with FAILED reachable from any of them. The interaction only
becomes PROCESSED once the memory is both stored externally and recorded
locally; any failure before that leaves it FAILED so a redelivery retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import MemoryStorageError
from ..memory_store.base import MemoryStore, MemoryStoreError
from . import schemas
from .classifier import extract_tags
from .media import MediaIntake
from .models import PLACEHOLDER_CONTENT, InboundMessage, IntakeStage
from .replies import memory_saved_reply
from .repository import IntakeRepository

logger = logging.getLogger(__name__)


def canonical_content(message: InboundMessage) -> str:
    """The message body, or a placeholder naming the message type."""

    return message.text or PLACEHOLDER_CONTENT[message.message_type]


@dataclass
class MemoryOutcome:
    interaction: schemas.Interaction
    memory: schemas.MemoryRecord
    reply: str
    media: List[schemas.StoredMedia] = field(default_factory=list)
    stage: IntakeStage = IntakeStage.FINALIZED


class MemoryOrchestrator:
    def __init__(
        self,
        repository: IntakeRepository,
        store: MemoryStore,
        media_intake: MediaIntake,
    ) -> None:
        self._repository = repository
        self._store = store
        self._media = media_intake

    def _advance(
        self, interaction: schemas.Interaction, current: IntakeStage, nxt: IntakeStage
    ) -> IntakeStage:
        logger.debug("Interaction %s: %s -> %s", interaction.id, current.value, nxt.value)
        return nxt

    def process(
        self,
        user: schemas.User,
        message: InboundMessage,
        interaction: schemas.Interaction,
    ) -> MemoryOutcome:
        stage = self._advance(interaction, IntakeStage.RECEIVED, IntakeStage.INTERACTION_CREATED)

        media: List[schemas.StoredMedia] = []
        if message.media:
            media = self._media.run(user.id, interaction.id, message.media)
            stage = self._advance(interaction, stage, IntakeStage.MEDIA_PROCESSED)
            if len(media) < len(message.media):
                logger.warning(
                    "Interaction %s kept %d of %d media attachments",
                    interaction.id,
                    len(media),
                    len(message.media),
                )

        content = canonical_content(message)
        media_urls = [item.source_url for item in media]
        tags = extract_tags(message.body)
        metadata: Dict[str, Any] = {
            "userId": str(user.id),
            "interactionId": str(interaction.id),
            "memoryType": message.memory_type.value,
            "tags": tags,
            "mediaUrls": media_urls,
            "createdAt": message.received_at.isoformat(),
        }

        external_id: Optional[str] = None
        try:
            external_id = self._store.create(content, metadata)
            stage = self._advance(interaction, stage, IntakeStage.MEMORY_STORED)
            memory = self._repository.save_memory(
                user_id=user.id,
                interaction_id=interaction.id,
                content=content,
                external_id=external_id,
                memory_type=message.memory_type,
                tags=tags,
                media_urls=media_urls,
            )
        except Exception as exc:
            self._fail(interaction, stage, exc, external_id)
            raise MemoryStorageError(
                f"Could not store memory for {interaction.provider_message_id}"
            ) from exc

        reply = memory_saved_reply(message.message_type, message.body, len(media))
        finalized = self._repository.update_interaction(
            interaction.id,
            status=schemas.InteractionStatus.PROCESSED,
            content=content,
            metadata={
                "reply": reply,
                "memoryId": str(memory.id),
                "media": [item.model_dump() for item in media],
            },
        )
        stage = self._advance(interaction, stage, IntakeStage.FINALIZED)
        logger.info(
            "Stored memory %s for interaction %s (%s, %d media)",
            memory.id,
            interaction.id,
            message.memory_type.value,
            len(media),
        )
        return MemoryOutcome(finalized, memory, reply, media, stage)

    def _fail(
        self,
        interaction: schemas.Interaction,
        stage: IntakeStage,
        exc: Exception,
        external_id: Optional[str],
    ) -> None:
        logger.error(
            "Interaction %s failed at %s: %s", interaction.id, stage.value, exc
        )
        self._advance(interaction, stage, IntakeStage.FAILED)
        if external_id is not None:
            try:
                self._store.delete(external_id)
            except MemoryStoreError:
                logger.warning("Could not remove orphaned memory %s", external_id)
        try:
            self._repository.update_interaction(
                interaction.id,
                status=schemas.InteractionStatus.FAILED,
                metadata={"error": type(exc).__name__, "failedAt": stage.value},
            )
        except Exception:
            logger.exception("Could not mark interaction %s as FAILED", interaction.id)
