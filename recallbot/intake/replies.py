"""Chat reply texts and the recall query responder."""

from __future__ import annotations

import logging
from typing import Sequence

from ..memory_store.base import MemoryStore, MemoryStoreError
from . import schemas
from .classifier import is_list_command
from .models import MessageType
from .repository import IntakeRepository

logger = logging.getLogger(__name__)

LIST_LIMIT = 10
SEARCH_LIMIT = 5

ERROR_REPLY = "Sorry, I encountered an error processing your message. Please try again."
SEARCH_FAILED_REPLY = "Sorry, I couldn't search your memories right now. Please try again later."
EMPTY_LIST_REPLY = (
    "You don't have any memories saved yet. "
    "Send me a message to create your first memory!"
)


def _preview(text: str, width: int) -> str:
    return text if len(text) <= width else text[:width] + "..."


def memory_saved_reply(
    message_type: MessageType, body: str | None, media_count: int
) -> str:
    lines = ["*Memory saved!*", ""]
    if message_type is MessageType.TEXT:
        lines.append(f'"{_preview(body or "", 50)}"')
    else:
        lines.append(f"*{message_type.value.title()} message*")
        if body:
            lines.append(f'Note: "{body}"')
        if media_count:
            suffix = "s" if media_count > 1 else ""
            lines.append(f"{media_count} media file{suffix} attached")
    lines += ["", "Ask me about your memories or send /list to see the latest ones."]
    return "\n".join(lines)


def format_memory_list(memories: Sequence[schemas.MemoryRecord]) -> str:
    if not memories:
        return EMPTY_LIST_REPLY
    lines = [f"*Your recent memories* ({len(memories)} shown)", ""]
    for index, memory in enumerate(memories, start=1):
        lines.append(f"{index}. [{memory.memory_type.value}] {memory.created_at:%Y-%m-%d}")
        lines.append(_preview(memory.content, 60))
        lines.append("")
    lines.append("Type a question to search your memories.")
    return "\n".join(lines)


def format_search_results(query: str, hits: Sequence[schemas.MemorySearchHit]) -> str:
    if not hits:
        return (
            f'No memories found for: "{query}"\n\n'
            "Try rephrasing your search or use /list to see all memories."
        )
    lines = [f'*Found {len(hits)} memory(ies) for: "{query}"*', ""]
    for index, hit in enumerate(hits, start=1):
        created = str(hit.metadata.get("createdAt", ""))[:10]
        header = f"{index}. {created}".rstrip()
        lines.append(header)
        lines.append(_preview(hit.content, 80))
        lines.append("")
    lines.append("Type /list to see all memories or ask another question!")
    return "\n".join(lines)


class QueryResponder:
    """Answer recall queries from the repository or the memory store."""

    def __init__(self, repository: IntakeRepository, store: MemoryStore) -> None:
        self._repository = repository
        self._store = store

    def respond(self, user: schemas.User, body: str | None) -> tuple[str, bool]:
        """Return ``(reply, ok)``; ``ok`` is false when the store failed."""

        if is_list_command(body):
            memories = self._repository.list_recent_memories(user.id, limit=LIST_LIMIT)
            return format_memory_list(memories), True

        query = (body or "").strip()
        try:
            hits = self._store.search(query, str(user.id), limit=SEARCH_LIMIT)
        except MemoryStoreError:
            logger.exception("Memory search failed for user %s", user.id)
            return SEARCH_FAILED_REPLY, False
        return format_search_results(query, hits), True
