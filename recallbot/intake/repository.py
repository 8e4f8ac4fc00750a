"""Storage for users, interactions and memory records."""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence
from uuid import UUID

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from . import schemas
from .models import MemoryType, MessageType

# Written when processing fails; dropped again when the interaction is reclaimed.
FAILURE_METADATA_KEYS = ("error", "failedAt")


class DuplicateInteractionError(RuntimeError):
    """An interaction with the same provider message id already exists."""

    def __init__(self, provider_message_id: str) -> None:
        super().__init__(f"Interaction already exists for {provider_message_id}")
        self.provider_message_id = provider_message_id


class IntakeRepository(Protocol):
    """Abstraction over the relational storage used by intake."""

    def get_or_create_user(self, phone_number: str) -> schemas.User: ...

    def get_user(self, user_id: UUID) -> Optional[schemas.User]: ...

    def get_interaction_by_provider_id(
        self, provider_message_id: str
    ) -> Optional[schemas.Interaction]: ...

    def create_interaction(
        self,
        user_id: UUID,
        provider_message_id: str,
        message_type: MessageType,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> schemas.Interaction: ...

    def reclaim_failed_interaction(
        self, interaction_id: UUID
    ) -> Optional[schemas.Interaction]: ...

    def update_interaction(
        self,
        interaction_id: UUID,
        *,
        status: schemas.InteractionStatus,
        content: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> schemas.Interaction: ...

    def save_memory(
        self,
        *,
        user_id: UUID,
        interaction_id: UUID,
        content: str,
        external_id: Optional[str],
        memory_type: MemoryType,
        tags: Sequence[str],
        media_urls: Sequence[str],
    ) -> schemas.MemoryRecord: ...

    def get_memory_for_interaction(
        self, interaction_id: UUID
    ) -> Optional[schemas.MemoryRecord]: ...

    def list_recent_memories(
        self, user_id: UUID, limit: int = 10
    ) -> List[schemas.MemoryRecord]: ...


class PostgresIntakeRepository:
    """PostgreSQL implementation of :class:`IntakeRepository`.

    The connection is expected to run in autocommit mode: the unique index
    on ``interactions.provider_message_id`` is what serializes concurrent
    deliveries of the same message.
    """

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    # Users ---------------------------------------------------------------------
    def get_or_create_user(self, phone_number: str) -> schemas.User:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO users (phone_number) VALUES (%s)
                ON CONFLICT (phone_number) DO UPDATE SET phone_number = EXCLUDED.phone_number
                RETURNING *
                """,
                (phone_number,),
            )
            row = cur.fetchone()
        return schemas.User(**row)

    def get_user(self, user_id: UUID) -> Optional[schemas.User]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM users WHERE id = %s", (user_id,))
            row = cur.fetchone()
        return schemas.User(**row) if row else None

    # Interactions --------------------------------------------------------------
    def get_interaction_by_provider_id(
        self, provider_message_id: str
    ) -> Optional[schemas.Interaction]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM interactions WHERE provider_message_id = %s",
                (provider_message_id,),
            )
            row = cur.fetchone()
        return schemas.Interaction(**row) if row else None

    def create_interaction(
        self,
        user_id: UUID,
        provider_message_id: str,
        message_type: MessageType,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> schemas.Interaction:
        try:
            with self._cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO interactions
                        (user_id, provider_message_id, message_type, content, direction, status, metadata)
                    VALUES (%s, %s, %s, %s, 'INBOUND', 'PENDING', %s)
                    RETURNING *
                    """,
                    (
                        user_id,
                        provider_message_id,
                        message_type.value,
                        content,
                        Jsonb(metadata or {}),
                    ),
                )
                row = cur.fetchone()
        except pg_errors.UniqueViolation as exc:
            raise DuplicateInteractionError(provider_message_id) from exc
        return schemas.Interaction(**row)

    def reclaim_failed_interaction(
        self, interaction_id: UUID
    ) -> Optional[schemas.Interaction]:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE interactions
                SET status = 'PENDING', metadata = metadata - %s::text[], updated_at = now()
                WHERE id = %s AND status = 'FAILED'
                RETURNING *
                """,
                (list(FAILURE_METADATA_KEYS), interaction_id),
            )
            row = cur.fetchone()
        return schemas.Interaction(**row) if row else None

    def update_interaction(
        self,
        interaction_id: UUID,
        *,
        status: schemas.InteractionStatus,
        content: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> schemas.Interaction:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE interactions
                SET status = %s,
                    content = coalesce(%s, content),
                    metadata = metadata || %s,
                    updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (status.value, content, Jsonb(metadata or {}), interaction_id),
            )
            row = cur.fetchone()
        if not row:
            raise LookupError(f"Interaction {interaction_id} not found")
        return schemas.Interaction(**row)

    # Memories ------------------------------------------------------------------
    def save_memory(
        self,
        *,
        user_id: UUID,
        interaction_id: UUID,
        content: str,
        external_id: Optional[str],
        memory_type: MemoryType,
        tags: Sequence[str],
        media_urls: Sequence[str],
    ) -> schemas.MemoryRecord:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO memories
                    (user_id, interaction_id, content, external_id, memory_type, tags, media_urls)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (interaction_id) DO UPDATE
                    SET content = EXCLUDED.content,
                        external_id = EXCLUDED.external_id,
                        memory_type = EXCLUDED.memory_type,
                        tags = EXCLUDED.tags,
                        media_urls = EXCLUDED.media_urls
                RETURNING *
                """,
                (
                    user_id,
                    interaction_id,
                    content,
                    external_id,
                    memory_type.value,
                    Jsonb(list(tags)),
                    Jsonb(list(media_urls)),
                ),
            )
            row = cur.fetchone()
        return schemas.MemoryRecord(**row)

    def get_memory_for_interaction(
        self, interaction_id: UUID
    ) -> Optional[schemas.MemoryRecord]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM memories WHERE interaction_id = %s", (interaction_id,)
            )
            row = cur.fetchone()
        return schemas.MemoryRecord(**row) if row else None

    def list_recent_memories(
        self, user_id: UUID, limit: int = 10
    ) -> List[schemas.MemoryRecord]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM memories
                WHERE user_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (user_id, limit),
            )
            rows = cur.fetchall()
        return [schemas.MemoryRecord(**row) for row in rows]


class InMemoryIntakeRepository:
    """Thread-safe in-process store mirroring the Postgres constraints."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users: Dict[UUID, schemas.User] = {}
        self._users_by_phone: Dict[str, UUID] = {}
        self._interactions: Dict[UUID, schemas.Interaction] = {}
        self._by_provider_id: Dict[str, UUID] = {}
        self._memories: Dict[UUID, schemas.MemoryRecord] = {}

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def get_or_create_user(self, phone_number: str) -> schemas.User:
        with self._lock:
            user_id = self._users_by_phone.get(phone_number)
            if user_id is not None:
                return self._users[user_id]
            user = schemas.User(id=uuid.uuid4(), phone_number=phone_number, created_at=self._now())
            self._users[user.id] = user
            self._users_by_phone[phone_number] = user.id
            return user

    def get_user(self, user_id: UUID) -> Optional[schemas.User]:
        with self._lock:
            return self._users.get(user_id)

    def get_interaction_by_provider_id(
        self, provider_message_id: str
    ) -> Optional[schemas.Interaction]:
        with self._lock:
            interaction_id = self._by_provider_id.get(provider_message_id)
            if interaction_id is None:
                return None
            return self._interactions[interaction_id].model_copy(deep=True)

    def create_interaction(
        self,
        user_id: UUID,
        provider_message_id: str,
        message_type: MessageType,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> schemas.Interaction:
        with self._lock:
            if provider_message_id in self._by_provider_id:
                raise DuplicateInteractionError(provider_message_id)
            now = self._now()
            interaction = schemas.Interaction(
                id=uuid.uuid4(),
                user_id=user_id,
                provider_message_id=provider_message_id,
                message_type=message_type,
                content=content,
                metadata=copy.deepcopy(metadata or {}),
                created_at=now,
                updated_at=now,
            )
            self._interactions[interaction.id] = interaction
            self._by_provider_id[provider_message_id] = interaction.id
            return interaction.model_copy(deep=True)

    def reclaim_failed_interaction(
        self, interaction_id: UUID
    ) -> Optional[schemas.Interaction]:
        with self._lock:
            current = self._interactions.get(interaction_id)
            if current is None or current.status is not schemas.InteractionStatus.FAILED:
                return None
            metadata = {
                k: v for k, v in current.metadata.items() if k not in FAILURE_METADATA_KEYS
            }
            updated = current.model_copy(
                update={
                    "status": schemas.InteractionStatus.PENDING,
                    "metadata": metadata,
                    "updated_at": self._now(),
                }
            )
            self._interactions[interaction_id] = updated
            return updated.model_copy(deep=True)

    def update_interaction(
        self,
        interaction_id: UUID,
        *,
        status: schemas.InteractionStatus,
        content: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> schemas.Interaction:
        with self._lock:
            current = self._interactions.get(interaction_id)
            if current is None:
                raise LookupError(f"Interaction {interaction_id} not found")
            merged = {**current.metadata, **copy.deepcopy(metadata or {})}
            updated = current.model_copy(
                update={
                    "status": status,
                    "content": current.content if content is None else content,
                    "metadata": merged,
                    "updated_at": self._now(),
                }
            )
            self._interactions[interaction_id] = updated
            return updated.model_copy(deep=True)

    def save_memory(
        self,
        *,
        user_id: UUID,
        interaction_id: UUID,
        content: str,
        external_id: Optional[str],
        memory_type: MemoryType,
        tags: Sequence[str],
        media_urls: Sequence[str],
    ) -> schemas.MemoryRecord:
        with self._lock:
            existing = self._memories.get(interaction_id)
            record = schemas.MemoryRecord(
                id=existing.id if existing else uuid.uuid4(),
                user_id=user_id,
                interaction_id=interaction_id,
                content=content,
                external_id=external_id,
                memory_type=memory_type,
                tags=list(tags),
                media_urls=list(media_urls),
                created_at=existing.created_at if existing else self._now(),
            )
            self._memories[interaction_id] = record
            return record

    def get_memory_for_interaction(
        self, interaction_id: UUID
    ) -> Optional[schemas.MemoryRecord]:
        with self._lock:
            return self._memories.get(interaction_id)

    def list_recent_memories(
        self, user_id: UUID, limit: int = 10
    ) -> List[schemas.MemoryRecord]:
        with self._lock:
            records = [m for m in self._memories.values() if m.user_id == user_id]
        records.sort(key=lambda m: m.created_at, reverse=True)
        return records[:limit]
