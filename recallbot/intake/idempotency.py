"""Detection of provider redeliveries.

The lookup by provider message id is only advisory. The authoritative
check is the unique constraint enforced when the PENDING interaction is
created: a concurrent delivery that loses that race is reported as a
duplicate of the winner's interaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from ..errors import BadRequestError
from . import schemas
from .models import InboundMessage
from .repository import DuplicateInteractionError, IntakeRepository

logger = logging.getLogger(__name__)


def _require_owner(user_id: UUID, interaction: schemas.Interaction) -> None:
    if interaction.user_id != user_id:
        raise BadRequestError(
            f"Message {interaction.provider_message_id} belongs to another sender",
            code="INTERACTION_USER_MISMATCH",
        )


@dataclass(frozen=True)
class Claim:
    interaction: schemas.Interaction
    is_duplicate: bool


class IdempotencyGuard:
    def __init__(self, repository: IntakeRepository) -> None:
        self._repository = repository

    def claim(self, user_id: UUID, message: InboundMessage) -> Claim:
        """Return the interaction owning ``message`` and whether it is a redelivery."""

        existing = self._repository.get_interaction_by_provider_id(
            message.provider_message_id
        )
        if existing is not None:
            _require_owner(user_id, existing)
            return self._from_existing(existing)

        try:
            created = self._repository.create_interaction(
                user_id,
                message.provider_message_id,
                message.message_type,
                message.text,
                metadata={"from": message.from_address, "to": message.to_address},
            )
        except DuplicateInteractionError:
            winner = self._repository.get_interaction_by_provider_id(
                message.provider_message_id
            )
            if winner is None:  # pragma: no cover - row vanished between calls
                raise
            _require_owner(user_id, winner)
            logger.info(
                "Concurrent delivery of %s lost the insert race; treating as duplicate",
                message.provider_message_id,
            )
            return Claim(winner, is_duplicate=True)

        logger.debug(
            "Created interaction %s for %s", created.id, message.provider_message_id
        )
        return Claim(created, is_duplicate=False)

    def _from_existing(self, existing: schemas.Interaction) -> Claim:
        if existing.status is not schemas.InteractionStatus.FAILED:
            logger.info(
                "Duplicate delivery of %s (interaction %s, status %s)",
                existing.provider_message_id,
                existing.id,
                existing.status.value,
            )
            return Claim(existing, is_duplicate=True)

        reclaimed = self._repository.reclaim_failed_interaction(existing.id)
        if reclaimed is None:
            # Another delivery reclaimed it first.
            current = self._repository.get_interaction_by_provider_id(
                existing.provider_message_id
            )
            return Claim(current or existing, is_duplicate=True)
        logger.info(
            "Retrying failed interaction %s for %s",
            reclaimed.id,
            reclaimed.provider_message_id,
        )
        return Claim(reclaimed, is_duplicate=False)
