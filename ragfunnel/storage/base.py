"""Shared schema management for the SQLite-backed stores."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from ragfunnel.config import config
from ragfunnel.errors import StorageError

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = config.get_logger(__name__)

SQLITE_BUSY_TIMEOUT = 10.0


class BaseSQLiteStore:
    """Common schema management and connection handling for all stores.

    Every store shares one database file. Each operation opens its own
    connection, so concurrent readers never share a cursor with a writer.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the store and ensure the schema exists."""
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(exist_ok=True, parents=True)
        self._create_tables()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection that commits on success and always closes.

        Raises:
            StorageError: If any SQLite operation inside the block fails.
        """
        conn: sqlite3.Connection | None = None
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=SQLITE_BUSY_TIMEOUT)
            conn.execute("PRAGMA foreign_keys = ON")
            with conn:
                yield conn
        except sqlite3.Error as exc:
            logger.exception("SQLite operation failed on %s", self.db_path)
            msg = f"Storage operation failed: {exc}"
            raise StorageError(msg) from exc
        finally:
            if conn is not None:
                conn.close()

    def _create_tables(self) -> None:
        """Create chunk, source, embedding and message tables if missing."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA journal_mode = WAL")

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS chunks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_type TEXT NOT NULL DEFAULT 'post',
                    source_url TEXT NOT NULL DEFAULT '',
                    source_id INTEGER,
                    chunk_index INTEGER NOT NULL DEFAULT 0,
                    content TEXT NOT NULL,
                    word_count INTEGER NOT NULL DEFAULT 0,
                    token_count INTEGER NOT NULL DEFAULT 0,
                    title TEXT NOT NULL DEFAULT '',
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sources (
                    source_type TEXT NOT NULL,
                    source_id INTEGER NOT NULL,
                    title TEXT NOT NULL DEFAULT '',
                    PRIMARY KEY (source_type, source_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS embeddings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    chunk_id INTEGER NOT NULL,
                    embedding_model TEXT NOT NULL,
                    dimension INTEGER NOT NULL,
                    embedding_vector BLOB NOT NULL,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (chunk_id, embedding_model),
                    FOREIGN KEY (chunk_id) REFERENCES chunks (id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    conversation_id INTEGER NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL DEFAULT '',
                    citations TEXT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)

            self._create_indexes(cursor)

    @staticmethod
    def _create_indexes(cursor: sqlite3.Cursor) -> None:
        """Ensure indexes exist for the common filters."""
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_chunks_source ON chunks(source_type, source_id)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_embeddings_model ON embeddings(embedding_model)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_embeddings_chunk ON embeddings(chunk_id)"
        )
        cursor.execute(
            (
                "CREATE INDEX IF NOT EXISTS idx_messages_conversation "
                "ON messages(conversation_id, role)"
            ),
        )
