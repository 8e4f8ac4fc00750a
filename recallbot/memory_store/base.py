"""Boundary of the external memory store."""

from __future__ import annotations

from typing import Any, Dict, List, Protocol

from ..intake.schemas import MemorySearchHit


class MemoryStoreError(RuntimeError):
    """The memory store rejected a request or could not be reached."""


class MemoryStore(Protocol):
    def create(self, content: str, metadata: Dict[str, Any]) -> str: ...

    def search(self, query: str, user_id: str, limit: int = 5) -> List[MemorySearchHit]: ...

    def delete(self, memory_id: str) -> None: ...
