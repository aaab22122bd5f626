"""Message rows that carry persisted citation payloads."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ragfunnel.config import config
from ragfunnel.errors import MessageNotFoundError
from ragfunnel.storage.base import BaseSQLiteStore

if TYPE_CHECKING:
    from pathlib import Path

logger = config.get_logger(__name__)


class MessageStore(BaseSQLiteStore):
    """Conversation messages, written by the conversation layer.

    The retrieval engine only reads and updates the ``citations`` column.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        super().__init__(db_path if db_path is not None else config.CONTENT_DB_PATH)

    def add_message(self, conversation_id: int, role: str, content: str = "") -> int:
        """Insert a message row.

        Returns:
            The new message id.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO messages (conversation_id, role, content) VALUES (?, ?, ?)",
                (int(conversation_id), role, content),
            )
            return int(cursor.lastrowid or 0)

    def get_citations_payload(self, message_id: int) -> str | None:
        """Return the raw citations JSON of a message.

        Returns:
            The stored JSON text, or None when nothing was recorded.

        Raises:
            MessageNotFoundError: If the message does not exist.
        """
        with self._connect() as conn:
            row = conn.execute(
                "SELECT citations FROM messages WHERE id = ?",
                (int(message_id),),
            ).fetchone()
        if row is None:
            msg = f"Message {message_id} not found"
            raise MessageNotFoundError(msg)
        return row[0] or None

    def set_citations_payload(self, message_id: int, payload: str) -> None:
        """Store the citations JSON on a message.

        Raises:
            MessageNotFoundError: If the message does not exist.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE messages SET citations = ? WHERE id = ?",
                (payload, int(message_id)),
            )
            updated = cursor.rowcount
        if updated == 0:
            msg = f"Message {message_id} not found"
            raise MessageNotFoundError(msg)

    def iter_citation_payloads(
        self,
        conversation_id: int | None = None,
        role: str = "assistant",
    ) -> list[tuple[int, str]]:
        """List non-empty citation payloads for aggregate reporting.

        Returns:
            ``(message_id, payload)`` pairs in message order.
        """
        query = (
            "SELECT id, citations FROM messages "
            "WHERE role = ? AND citations IS NOT NULL AND citations != ''"
        )
        params: list[object] = [role]
        if conversation_id is not None:
            query += " AND conversation_id = ?"
            params.append(int(conversation_id))
        query += " ORDER BY id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [(int(message_id), str(payload)) for message_id, payload in rows]
