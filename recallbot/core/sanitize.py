"""Scrubbing of untrusted webhook payloads.

Only the raw, untyped payload goes through :func:`sanitize`; validated
models are never re-sanitized.
"""

from __future__ import annotations

import re
from typing import Any

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_SCRIPT_BLOCKS = re.compile(
    r"<script\b[^>]*>.*?</script\s*>|<iframe\b[^>]*>.*?</iframe\s*>",
    re.IGNORECASE | re.DOTALL,
)
_JS_PROTOCOL = re.compile(r"javascript\s*:", re.IGNORECASE)
_EVENT_HANDLERS = re.compile(r"on\w+\s*=", re.IGNORECASE)


def _clean_once(value: str) -> str:
    value = _CONTROL_CHARS.sub("", value)
    value = _SCRIPT_BLOCKS.sub("", value)
    value = _JS_PROTOCOL.sub("", value)
    value = _EVENT_HANDLERS.sub("", value)
    return value.strip()


def sanitize_text(value: str) -> str:
    """Strip dangerous content from a single string.

    Removing one pattern can splice together another (``<scr<script></script>ipt>``),
    so the passes repeat until the text stops changing. Each pass can only
    shorten the string, which bounds the loop.
    """

    previous = None
    while previous != value:
        previous = value
        value = _clean_once(value)
    return value


def sanitize(value: Any) -> Any:
    """Recursively sanitize every string leaf in ``value``.

    Mappings and sequences are rebuilt with the same shape; ``None`` and
    other non-string scalars pass through untouched.
    """

    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, dict):
        return {k: sanitize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [sanitize(v) for v in value]
    if isinstance(value, tuple):
        return tuple(sanitize(v) for v in value)
    return value
