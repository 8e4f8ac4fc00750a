"""Clients for the external semantic memory store."""

from .base import MemoryStore, MemoryStoreError
from .fallback import FallbackMemoryStore
from .local import LocalMemoryStore
from .mem0 import Mem0MemoryStore

__all__ = [
    "FallbackMemoryStore",
    "LocalMemoryStore",
    "Mem0MemoryStore",
    "MemoryStore",
    "MemoryStoreError",
]
