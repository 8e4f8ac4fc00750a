"""Durable local stand-in for the hosted memory store.

Used only in degraded mode, when ``MEMORY_FALLBACK_PATH`` is configured.
Memories are appended to a JSON-lines file; deletions append a tombstone.
Search ranks by the share of query words found in the memory text.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from ..intake.schemas import MemorySearchHit
from .base import MemoryStoreError

logger = logging.getLogger(__name__)

_WORD = re.compile(r"\w+")


def _words(text: str) -> set[str]:
    return {w.lower() for w in _WORD.findall(text) if len(w) > 2}


class LocalMemoryStore:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        records: Dict[str, Dict[str, Any]] = {}
        if not self.path.exists():
            return records
        with self.path.open("r", encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt line in %s", self.path)
                    continue
                if entry.get("deleted"):
                    records.pop(entry.get("id"), None)
                else:
                    records[entry["id"]] = entry
        return records

    def _append(self, entry: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(entry, default=str) + "\n")
        except OSError as exc:
            raise MemoryStoreError(f"Local memory store unavailable: {exc}") from exc

    def create(self, content: str, metadata: Dict[str, Any]) -> str:
        memory_id = f"local-{uuid.uuid4()}"
        entry = {
            "id": memory_id,
            "content": content,
            "metadata": metadata,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            self._append(entry)
        logger.info("Memory %s stored in local fallback store", memory_id)
        return memory_id

    def search(self, query: str, user_id: str, limit: int = 5) -> List[MemorySearchHit]:
        wanted = _words(query)
        with self._lock:
            records = self._load()
        hits = []
        for record in records.values():
            if str(record.get("metadata", {}).get("userId")) != str(user_id):
                continue
            found = _words(record.get("content", ""))
            if not wanted:
                continue
            score = len(wanted & found) / len(wanted)
            if score > 0:
                hits.append(
                    MemorySearchHit(
                        id=record["id"],
                        content=record.get("content", ""),
                        score=round(score, 4),
                        metadata=record.get("metadata", {}),
                    )
                )
        hits.sort(key=lambda h: h.score or 0.0, reverse=True)
        return hits[:limit]

    def delete(self, memory_id: str) -> None:
        with self._lock:
            self._append({"id": memory_id, "deleted": True})
