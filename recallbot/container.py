"""Wiring of settings into the long-lived service objects.

The container owns process-wide state (rate-limit counters, HTTP sessions,
the in-memory repository used without a database). Per-request objects are
built from it by :meth:`ServiceContainer.intake_scope`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from functools import cached_property

from .channels.twilio import TwilioWhatsAppAdapter
from .config import Settings
from .core import db
from .core.rate_limit import RateLimiter, RateLimitPolicy
from .intake.media import HttpMediaProcessor, MediaIntake
from .intake.orchestrator import MemoryOrchestrator
from .intake.replies import QueryResponder
from .intake.repository import (
    InMemoryIntakeRepository,
    IntakeRepository,
    PostgresIntakeRepository,
)
from .intake.service import IntakeService
from .memory_store import (
    FallbackMemoryStore,
    LocalMemoryStore,
    Mem0MemoryStore,
    MemoryStore,
)

logger = logging.getLogger(__name__)


class ServiceContainer:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @cached_property
    def rate_limiter(self) -> RateLimiter:
        return RateLimiter(RateLimitPolicy.from_settings(self.settings))

    @cached_property
    def adapter(self) -> TwilioWhatsAppAdapter:
        return TwilioWhatsAppAdapter(
            self.settings.twilio_auth_token,
            validate=self.settings.signature_validation_enabled,
        )

    @cached_property
    def memory_store(self) -> MemoryStore:
        fallback = (
            LocalMemoryStore(self.settings.memory_fallback_path)
            if self.settings.memory_fallback_path
            else None
        )
        if not self.settings.mem0_api_key:
            if fallback is None:
                raise RuntimeError(
                    "MEM0_API_KEY or MEMORY_FALLBACK_PATH must be configured"
                )
            logger.warning("MEM0_API_KEY not set; storing memories locally only")
            return fallback
        primary = Mem0MemoryStore(
            self.settings.mem0_api_key,
            self.settings.mem0_base_url,
            timeout=self.settings.mem0_timeout_seconds,
        )
        return FallbackMemoryStore(
            primary, fallback, max_attempts=self.settings.mem0_max_retries
        )

    @cached_property
    def media_intake(self) -> MediaIntake:
        processor = HttpMediaProcessor(
            self.settings.storage_dir,
            account_sid=self.settings.twilio_account_sid,
            auth_token=self.settings.twilio_auth_token,
            timeout=self.settings.media_timeout_seconds,
            max_bytes=self.settings.media_max_bytes,
        )
        return MediaIntake(processor)

    @cached_property
    def local_repository(self) -> InMemoryIntakeRepository:
        return InMemoryIntakeRepository()

    @contextmanager
    def repository_scope(self) -> Iterator[IntakeRepository]:
        """Yield a repository bound to a fresh connection when a database is configured."""

        if not self.settings.database_url:
            yield self.local_repository
            return
        conn = db.connect(self.settings.database_url)
        try:
            yield PostgresIntakeRepository(conn)
        finally:
            conn.close()

    def build_intake_service(self, repository: IntakeRepository) -> IntakeService:
        return IntakeService(
            repository,
            MemoryOrchestrator(repository, self.memory_store, self.media_intake),
            QueryResponder(repository, self.memory_store),
        )

    @contextmanager
    def intake_scope(self) -> Iterator[IntakeService]:
        with self.repository_scope() as repository:
            yield self.build_intake_service(repository)

    def prepare_database(self) -> None:
        """Wait for Postgres and apply the schema; no-op without a database."""

        if not self.settings.database_url:
            logger.info("DATABASE_URL not set; using the in-memory repository")
            return
        db.wait_for_database(self.settings.database_url)
        conn = db.connect(self.settings.database_url)
        try:
            db.ensure_schema(conn)
        finally:
            conn.close()
