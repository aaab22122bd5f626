"""Data models for the retrieval funnel."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal

import numpy as np

SearchType = Literal["semantic", "keyword", "hybrid"]


@dataclass(frozen=True)
class ContentChunk:
    """An immutable unit of indexed text produced by the ingestion layer."""

    id: int
    source_type: str
    source_url: str
    source_id: int | None
    chunk_index: int
    content: str
    word_count: int = 0
    token_count: int = 0
    title: str = ""


@dataclass(frozen=True)
class Embedding:
    """A stored vector for exactly one (chunk, model) pair."""

    id: int
    chunk_id: int
    embedding_model: str
    dimension: int
    vector: np.ndarray = field(repr=False)


@dataclass(frozen=True)
class SearchResult:
    """Transient per-query record for a retrieved chunk."""

    chunk_id: int
    content: str
    source_type: str
    source_url: str
    source_id: int | None = None
    chunk_index: int = 0
    word_count: int = 0
    token_count: int = 0
    title: str = ""
    score: float = 0.0
    semantic_score: float = 0.0
    keyword_score: float = 0.0
    rerank_score: float | None = None
    search_type: SearchType = "semantic"
    original_rank: int | None = None

    @classmethod
    def from_chunk(
        cls,
        chunk: ContentChunk,
        *,
        score: float,
        search_type: SearchType,
        semantic_score: float = 0.0,
        keyword_score: float = 0.0,
    ) -> SearchResult:
        """Build a result carrying a copy of the chunk's display fields.

        Returns:
            SearchResult for the given chunk.
        """
        return cls(
            chunk_id=chunk.id,
            content=chunk.content,
            source_type=chunk.source_type,
            source_url=chunk.source_url,
            source_id=chunk.source_id,
            chunk_index=chunk.chunk_index,
            word_count=chunk.word_count,
            token_count=chunk.token_count,
            title=chunk.title,
            score=score,
            semantic_score=semantic_score,
            keyword_score=keyword_score,
            search_type=search_type,
        )

    @property
    def relevance(self) -> float:
        """Rerank score when present, otherwise the pass score."""
        return self.rerank_score if self.rerank_score is not None else self.score


@dataclass(frozen=True)
class ChunkMetadata:
    """Per-chunk bookkeeping handed from context assembly to citation recording."""

    chunk_id: int
    source_url: str = ""
    title: str = ""
    score: float = 0.0
    rerank_score: float = 0.0
    source_type: str = ""


@dataclass
class AssembledContext:
    """Formatted context text plus the token accounting that produced it."""

    context_text: str = ""
    chunk_metadata: list[ChunkMetadata] = field(default_factory=list)
    chunks_used: int = 0
    chunks_total: int = 0
    tokens_used: int = 0
    tokens_available: int = 0
    tokens_total: int = 0
    context_window: int = 0
    reserved_tokens: int = 0


@dataclass(frozen=True)
class HistoryMessage:
    """A prior conversation message counted against the token budget."""

    role: str
    content: str


@dataclass(frozen=True)
class Citation:
    """A recorded link between a response and one source chunk."""

    chunk_id: int
    source_url: str = ""
    title: str = ""
    source_type: str = ""
    score: float = 0.0
    rerank_score: float = 0.0
    source_id: int | None = None
    chunk_index: int | None = None

    @property
    def relevance(self) -> float:
        """Rerank score when recorded, otherwise the pass score."""
        return self.rerank_score or self.score

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage.

        Returns:
            JSON-compatible mapping of the citation fields.
        """
        return {
            "chunk_id": self.chunk_id,
            "source_url": self.source_url,
            "title": self.title,
            "source_type": self.source_type,
            "score": self.score,
            "rerank_score": self.rerank_score,
            "source_id": self.source_id,
            "chunk_index": self.chunk_index,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Citation:
        """Rebuild a citation from its stored mapping.

        Returns:
            Citation with missing fields defaulted.

        Raises:
            KeyError: If the mapping has no chunk id.
            TypeError: If a numeric field holds a non-numeric value.
            ValueError: If a numeric field cannot be parsed.
        """
        source_id = data.get("source_id")
        chunk_index = data.get("chunk_index")
        return cls(
            chunk_id=int(data["chunk_id"]),
            source_url=str(data.get("source_url") or ""),
            title=str(data.get("title") or ""),
            source_type=str(data.get("source_type") or ""),
            score=float(data.get("score") or 0.0),
            rerank_score=float(data.get("rerank_score") or 0.0),
            source_id=int(source_id) if source_id is not None else None,
            chunk_index=int(chunk_index) if chunk_index is not None else None,
        )


@dataclass(frozen=True)
class CitationRecord:
    """The ordered citations persisted for one assistant message."""

    citations: list[Citation]
    recorded_at: str

    @property
    def count(self) -> int:
        return len(self.citations)

    def to_json(self) -> str:
        return json.dumps(
            {
                "chunks": [citation.to_dict() for citation in self.citations],
                "count": self.count,
                "recorded_at": self.recorded_at,
            }
        )

    @classmethod
    def from_json(cls, payload: str) -> CitationRecord:
        """Decode a stored citations payload.

        Returns:
            CitationRecord in recorded order.

        Raises:
            ValueError: If the payload is not a JSON object with a chunk list,
                or an entry cannot be decoded.
        """
        data = json.loads(payload)
        if not isinstance(data, dict) or not isinstance(data.get("chunks", []), list):
            msg = "Citations payload must be an object with a 'chunks' list"
            raise ValueError(msg)
        try:
            citations = [Citation.from_dict(entry) for entry in data.get("chunks", [])]
        except (KeyError, TypeError, AttributeError) as exc:
            msg = f"Malformed citation entry: {exc}"
            raise ValueError(msg) from exc
        return cls(citations=citations, recorded_at=str(data.get("recorded_at") or ""))
