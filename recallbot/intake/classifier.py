"""Keyword heuristics deciding whether a message is a recall query."""

from __future__ import annotations

import re

from .models import ClassificationResult, Intent

LIST_COMMAND = "/list"

# Order matters: the first trigger found in the text is reported.
QUERY_TRIGGERS: tuple[str, ...] = (
    "show me",
    "find",
    "search",
    "what",
    "when",
    "where",
    "how",
    "my memories",
    "my photos",
    "my pictures",
    "my voice notes",
    "my notes",
    "remind me",
    "yesterday",
    "last week",
    "last month",
    "last year",
    "today",
    "this week",
    "about my",
    "related to",
    "?",
)

KEYWORD_TAGS: tuple[str, ...] = (
    "important",
    "urgent",
    "reminder",
    "meeting",
    "appointment",
    "deadline",
)

_HASHTAG = re.compile(r"#(\w+)")


def classify(body: str | None) -> ClassificationResult:
    """Classify ``body`` as a recall query or new memory content.

    A message mixing a query phrase with new content ("show me my notes and
    remember X") is classified as a query; the memorization part is not
    stored.
    """

    text = (body or "").strip().lower()
    if not text:
        return ClassificationResult(Intent.MEMORY)
    if text == LIST_COMMAND:
        return ClassificationResult(Intent.QUERY, LIST_COMMAND)
    for trigger in QUERY_TRIGGERS:
        if trigger in text:
            return ClassificationResult(Intent.QUERY, trigger)
    return ClassificationResult(Intent.MEMORY)


def is_list_command(body: str | None) -> bool:
    return (body or "").strip().lower() == LIST_COMMAND


def extract_tags(text: str | None) -> list[str]:
    """Return hashtags and well-known keywords found in ``text``."""

    if not text:
        return []
    lowered = text.lower()
    tags = {match.lower() for match in _HASHTAG.findall(text)}
    tags.update(word for word in KEYWORD_TAGS if word in lowered)
    return sorted(tags)
