"""Composition of the intake pipeline for one inbound message."""

from __future__ import annotations

import logging

from ..channels.twilio import normalize_phone
from ..errors import ValidationError
from . import schemas
from .classifier import classify
from .idempotency import IdempotencyGuard
from .models import InboundMessage
from .orchestrator import MemoryOrchestrator
from .replies import QueryResponder
from .repository import IntakeRepository

logger = logging.getLogger(__name__)

DUPLICATE_REPLY = "This message was already received."


class IntakeService:
    """Turn an admitted :class:`InboundMessage` into a webhook response."""

    def __init__(
        self,
        repository: IntakeRepository,
        orchestrator: MemoryOrchestrator,
        responder: QueryResponder,
    ) -> None:
        self._repository = repository
        self._guard = IdempotencyGuard(repository)
        self._orchestrator = orchestrator
        self._responder = responder

    def handle(self, message: InboundMessage) -> schemas.WebhookResponse:
        phone = normalize_phone(message.from_address)
        if not phone:
            raise ValidationError("Sender address is required", details=[{"field": "From"}])
        user = self._repository.get_or_create_user(phone)

        claim = self._guard.claim(user.id, message)
        if claim.is_duplicate:
            return self._duplicate(message, user, claim.interaction)

        classification = classify(message.body)
        logger.info(
            "Message %s classified as %s (trigger=%r)",
            message.provider_message_id,
            classification.intent.value,
            classification.trigger,
        )
        if classification.is_query:
            return self._query(message, user, claim.interaction)

        outcome = self._orchestrator.process(user, message, claim.interaction)
        return schemas.WebhookResponse(
            message="Webhook processed successfully",
            response=schemas.ReplyPayload(content=outcome.reply),
            message_sid=message.provider_message_id,
            user_id=user.id,
            interaction_id=outcome.interaction.id,
            memory_id=outcome.memory.id,
            processing_status=schemas.ProcessingStatus.PROCESSED,
        )

    def _query(
        self,
        message: InboundMessage,
        user: schemas.User,
        interaction: schemas.Interaction,
    ) -> schemas.WebhookResponse:
        reply, ok = self._responder.respond(user, message.body)
        status = (
            schemas.InteractionStatus.PROCESSED if ok else schemas.InteractionStatus.FAILED
        )
        self._repository.update_interaction(
            interaction.id, status=status, metadata={"reply": reply, "intent": "QUERY"}
        )
        return schemas.WebhookResponse(
            message="Query processed successfully",
            response=schemas.ReplyPayload(content=reply),
            message_sid=message.provider_message_id,
            user_id=user.id,
            interaction_id=interaction.id,
            processing_status=schemas.ProcessingStatus.QUERY_PROCESSED,
        )

    def _duplicate(
        self,
        message: InboundMessage,
        user: schemas.User,
        interaction: schemas.Interaction,
    ) -> schemas.WebhookResponse:
        memory = self._repository.get_memory_for_interaction(interaction.id)
        return schemas.WebhookResponse(
            message="Webhook already processed",
            response=schemas.ReplyPayload(content=interaction.reply or DUPLICATE_REPLY),
            message_sid=message.provider_message_id,
            user_id=user.id,
            interaction_id=interaction.id,
            memory_id=memory.id if memory else None,
            processing_status=schemas.ProcessingStatus.ALREADY_PROCESSED,
        )
