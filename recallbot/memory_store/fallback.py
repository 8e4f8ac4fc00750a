"""Primary memory store with bounded retries and an optional fallback."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any, Dict, List, Optional, TypeVar

from ..intake.schemas import MemorySearchHit
from .base import MemoryStore, MemoryStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FallbackMemoryStore:
    """Call ``primary`` up to ``max_attempts`` times with exponential backoff.

    When every attempt fails and a ``fallback`` store is configured, the
    operation is served by the fallback instead; otherwise the last error is
    raised as :class:`MemoryStoreError`.
    """

    def __init__(
        self,
        primary: MemoryStore,
        fallback: Optional[MemoryStore] = None,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def _call(
        self,
        name: str,
        primary_call: Callable[[], T],
        fallback_call: Callable[[], T] | None,
    ) -> T:
        last_exc: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return primary_call()
            except MemoryStoreError as exc:
                last_exc = exc
                logger.warning(
                    "Memory store %s failed (attempt %d/%d): %s",
                    name,
                    attempt,
                    self.max_attempts,
                    exc,
                )
                if attempt < self.max_attempts:
                    self._sleep(self.backoff_seconds * (2 ** (attempt - 1)))

        if fallback_call is not None:
            logger.warning("Memory store %s falling back to local store", name)
            return fallback_call()
        raise MemoryStoreError(f"Memory store {name} failed: {last_exc}") from last_exc

    def create(self, content: str, metadata: Dict[str, Any]) -> str:
        return self._call(
            "create",
            lambda: self.primary.create(content, metadata),
            (lambda: self.fallback.create(content, metadata)) if self.fallback else None,
        )

    def search(self, query: str, user_id: str, limit: int = 5) -> List[MemorySearchHit]:
        return self._call(
            "search",
            lambda: self.primary.search(query, user_id, limit),
            (lambda: self.fallback.search(query, user_id, limit)) if self.fallback else None,
        )

    def delete(self, memory_id: str) -> None:
        self._call(
            "delete",
            lambda: self.primary.delete(memory_id),
            (lambda: self.fallback.delete(memory_id)) if self.fallback else None,
        )
