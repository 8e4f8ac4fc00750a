"""Base abstractions for chat channel adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from ..intake.models import InboundMessage


class ChannelAdapter(ABC):
    """Abstract base class encapsulating channel-specific behaviour."""

    #: Lowercase channel identifier used in routes and logs.
    channel_name: str

    @abstractmethod
    def parse_incoming(self, payload: Mapping[str, Any]) -> InboundMessage:
        """Convert a sanitized webhook payload into an :class:`InboundMessage`."""

    @abstractmethod
    def verify_signature(
        self, url: str, body: bytes, headers: Mapping[str, str]
    ) -> None:
        """Raise ``UnauthorizedError`` unless the payload is authentic."""
