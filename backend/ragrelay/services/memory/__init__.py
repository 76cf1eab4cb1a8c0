"""Conversation memory: sanitizer and stores."""

from .sanitizer import sanitize_context
from .store import InMemoryMemoryStore, MemoryStore, PostgresMemoryStore

__all__ = ["sanitize_context", "InMemoryMemoryStore", "MemoryStore", "PostgresMemoryStore"]
