"""SQLite persistence for chunks, sources and messages."""

from .base import BaseSQLiteStore
from .content_store import ContentStore
from .message_store import MessageStore

__all__ = ["BaseSQLiteStore", "ContentStore", "MessageStore"]
