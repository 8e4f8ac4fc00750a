"""REST client for the hosted Mem0 memory service."""

from __future__ import annotations

import logging
from typing import Any, Dict, List
from urllib.parse import urljoin

import requests

from ..intake.schemas import MemorySearchHit
from .base import MemoryStoreError

logger = logging.getLogger(__name__)


class Mem0MemoryStore:
    """Create, search and delete memories through the Mem0 v1 API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.mem0.ai",
        *,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("MEM0_API_KEY is required for the Mem0 client")
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self.session = session or requests.Session()
        self._headers = {
            "Authorization": f"Token {api_key}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = urljoin(self.base_url, path)
        try:
            response = self.session.request(
                method, url, headers=self._headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise MemoryStoreError(f"Mem0 request failed: {exc}") from exc
        if response.status_code >= 400:
            raise MemoryStoreError(
                f"Mem0 {method} {path} returned HTTP {response.status_code}"
            )
        if response.status_code == 204:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise MemoryStoreError("Mem0 returned a non-JSON response") from exc

    def create(self, content: str, metadata: Dict[str, Any]) -> str:
        payload = {
            "messages": [{"role": "user", "content": content}],
            "user_id": str(metadata.get("userId", "")),
            "metadata": metadata,
            "infer": False,
        }
        data = self._request("POST", "v1/memories/", json=payload)
        memory_id = _first_id(data)
        if not memory_id:
            raise MemoryStoreError("Mem0 create response did not include a memory id")
        logger.info(
            "Memory created in Mem0 (id=%s, user=%s, length=%d)",
            memory_id,
            metadata.get("userId"),
            len(content),
        )
        return memory_id

    def search(self, query: str, user_id: str, limit: int = 5) -> List[MemorySearchHit]:
        payload = {
            "query": query,
            "filters": {"user_id": user_id},
            "user_id": user_id,
            "limit": limit,
        }
        data = self._request("POST", "v1/memories/search/", json=payload)
        if isinstance(data, dict):
            items = data.get("results") or data.get("memories") or []
        else:
            items = data or []
        hits = []
        for item in items[:limit]:
            if not isinstance(item, dict) or not item.get("id"):
                continue
            hits.append(
                MemorySearchHit(
                    id=str(item["id"]),
                    content=item.get("memory") or item.get("content") or "",
                    score=item.get("score"),
                    metadata=item.get("metadata") or {},
                )
            )
        logger.info("Mem0 search returned %d result(s) for user %s", len(hits), user_id)
        return hits

    def delete(self, memory_id: str) -> None:
        self._request("DELETE", f"v1/memories/{memory_id}/")
        logger.info("Memory %s deleted from Mem0", memory_id)


def _first_id(data: Any) -> str | None:
    """Extract the created memory id from the shapes Mem0 responds with."""

    if isinstance(data, dict):
        if data.get("id"):
            return str(data["id"])
        data = data.get("results") or data.get("memories") or []
    if isinstance(data, list):
        for item in data:
            if isinstance(item, dict) and item.get("id"):
                return str(item["id"])
    return None
