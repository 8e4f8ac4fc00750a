"""REST endpoint for searching stored memories."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from ..core.rate_limit import ROUTE_SEARCH, get_client_ip, resolve_identity
from ..errors import MemoryStorageError, NotFoundError
from ..intake import schemas
from ..memory_store.base import MemoryStoreError
from ..security.api_keys import require_api_key
from .webhooks import get_container

logger = logging.getLogger(__name__)

router = APIRouter(tags=["memories"], dependencies=[Depends(require_api_key)])


@router.post("/api/memories/search", response_model=schemas.MemorySearchResponse)
async def search_memories(
    payload: schemas.MemorySearchRequest, request: Request
) -> schemas.MemorySearchResponse:
    """Semantic search over one user's memories."""

    container = get_container(request)
    client_ip = get_client_ip(request)
    container.rate_limiter.check(
        ROUTE_SEARCH,
        client_ip=client_ip,
        identity=resolve_identity(user_id=str(payload.user_id), client_ip=client_ip),
    )

    def _search() -> list[schemas.MemorySearchHit]:
        with container.repository_scope() as repository:
            if repository.get_user(payload.user_id) is None:
                raise NotFoundError(f"User {payload.user_id} not found", code="USER_NOT_FOUND")
        try:
            return container.memory_store.search(
                payload.query, str(payload.user_id), limit=payload.limit
            )
        except MemoryStoreError as exc:
            raise MemoryStorageError("Memory search failed") from exc

    results = await run_in_threadpool(_search)
    return schemas.MemorySearchResponse(query=payload.query, results=results)
