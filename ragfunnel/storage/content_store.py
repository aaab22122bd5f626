"""Read access to content chunks and their sources."""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from ragfunnel.config import config
from ragfunnel.models import ContentChunk
from ragfunnel.storage.base import BaseSQLiteStore

if TYPE_CHECKING:
    from pathlib import Path

logger = config.get_logger(__name__)

CHARS_PER_TOKEN = 4.0

CHUNK_COLUMNS = (
    "c.id, c.source_type, c.source_url, c.source_id, c.chunk_index, "
    "c.content, c.word_count, c.token_count, c.title"
)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def chunk_from_row(row: tuple) -> ContentChunk:
    """Create a ContentChunk from a row selected with CHUNK_COLUMNS.

    Returns:
        ContentChunk hydrated from the row.
    """
    (
        chunk_id,
        source_type,
        source_url,
        source_id,
        chunk_index,
        content,
        word_count,
        token_count,
        title,
    ) = row
    return ContentChunk(
        id=int(chunk_id),
        source_type=source_type or "",
        source_url=source_url or "",
        source_id=int(source_id) if source_id is not None else None,
        chunk_index=int(chunk_index or 0),
        content=content,
        word_count=int(word_count or 0),
        token_count=int(token_count or 0),
        title=title or "",
    )


class ContentStore(BaseSQLiteStore):
    """Chunk records written by ingestion and read by the retrieval funnel."""

    def __init__(self, db_path: Path | None = None) -> None:
        """Open (and if needed create) the content database.

        Args:
            db_path: SQLite file. If None, uses config.CONTENT_DB_PATH.
        """
        super().__init__(db_path if db_path is not None else config.CONTENT_DB_PATH)

    def add_chunk(  # noqa: PLR0913
        self,
        content: str,
        *,
        source_type: str = "post",
        source_url: str = "",
        source_id: int | None = None,
        chunk_index: int = 0,
        title: str = "",
    ) -> ContentChunk:
        """Persist a chunk produced by the ingestion layer.

        Returns:
            The stored chunk including its assigned id.

        Raises:
            ValueError: If content is empty.
        """
        if not content.strip():
            msg = "Chunk content cannot be empty"
            raise ValueError(msg)

        word_count = len(content.split())
        token_count = math.ceil(len(content) / CHARS_PER_TOKEN)

        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO chunks (
                    source_type, source_url, source_id, chunk_index,
                    content, word_count, token_count, title
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    source_type,
                    source_url,
                    source_id,
                    chunk_index,
                    content,
                    word_count,
                    token_count,
                    title,
                ),
            )
            chunk_id = int(cursor.lastrowid or 0)

        return ContentChunk(
            id=chunk_id,
            source_type=source_type,
            source_url=source_url,
            source_id=source_id,
            chunk_index=chunk_index,
            content=content,
            word_count=word_count,
            token_count=token_count,
            title=title,
        )

    def get_chunks(self, chunk_ids: list[int]) -> dict[int, ContentChunk]:
        """Fetch several chunks at once.

        Returns:
            Mapping of chunk id to chunk for the ids that exist.
        """
        if not chunk_ids:
            return {}
        placeholders = ",".join("?" for _ in chunk_ids)
        sql = f"SELECT {CHUNK_COLUMNS} FROM chunks c WHERE c.id IN ({placeholders})"  # noqa: S608
        with self._connect() as conn:
            rows = conn.execute(sql, [int(chunk_id) for chunk_id in chunk_ids]).fetchall()
        chunks = (chunk_from_row(row) for row in rows)
        return {chunk.id: chunk for chunk in chunks}

    def find_keyword_candidates(
        self,
        keywords: list[str],
        limit: int,
        *,
        source_type: str | None = None,
        source_id: int | None = None,
    ) -> list[ContentChunk]:
        """Prefilter chunks containing any keyword (case-insensitive).

        Returns:
            Up to ``limit`` chunks in insertion order.
        """
        if not keywords or limit <= 0:
            return []

        conditions = [
            "(" + " OR ".join("c.content LIKE ? ESCAPE '\\'" for _ in keywords) + ")"
        ]
        params: list[object] = [f"%{_escape_like(keyword)}%" for keyword in keywords]

        if source_type:
            conditions.append("c.source_type = ?")
            params.append(source_type)
        if source_id is not None:
            conditions.append("c.source_id = ?")
            params.append(int(source_id))

        params.append(int(limit))
        query = (
            f"SELECT {CHUNK_COLUMNS} FROM chunks c "  # noqa: S608
            f"WHERE {' AND '.join(conditions)} ORDER BY c.id LIMIT ?"
        )

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [chunk_from_row(row) for row in rows]

    def delete_source(self, source_type: str, source_id: int) -> int:
        """Remove every chunk of a source; embeddings cascade.

        Returns:
            Number of chunks deleted.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM chunks WHERE source_type = ? AND source_id = ?",
                (source_type, int(source_id)),
            )
            deleted = cursor.rowcount
        logger.info(
            "Deleted %d chunks for %s source %s", deleted, source_type, source_id
        )
        return deleted

    def set_source_title(self, source_type: str, source_id: int, title: str) -> None:
        """Record the display title of a source."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sources (source_type, source_id, title) VALUES (?, ?, ?)
                ON CONFLICT (source_type, source_id) DO UPDATE SET title = excluded.title
                """,
                (source_type, int(source_id), title),
            )

    def get_source_title(self, source_type: str, source_id: int) -> str:
        """Look up the stored title of a source.

        Returns:
            The title, or an empty string when unknown.
        """
        with self._connect() as conn:
            row = conn.execute(
                "SELECT title FROM sources WHERE source_type = ? AND source_id = ?",
                (source_type, int(source_id)),
            ).fetchone()
        return str(row[0]) if row and row[0] else ""

    def count_chunks(self) -> int:
        with self._connect() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0])
