"""Recording, retrieval and reporting of response citations."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from ragfunnel import rendering
from ragfunnel.config import config
from ragfunnel.errors import StorageError
from ragfunnel.models import Citation, CitationRecord

if TYPE_CHECKING:
    from ragfunnel.models import ChunkMetadata
    from ragfunnel.rendering import RenderOptions
    from ragfunnel.storage import ContentStore, MessageStore

logger = config.get_logger(__name__)

TitleResolver = Callable[[int], str]


def title_from_url(url: str) -> str:
    """Derive a readable label from a URL.

    Returns:
        ``host + path`` when the URL has a host, otherwise the URL itself.
    """
    if not url:
        return ""
    parts = urlsplit(url)
    if parts.netloc:
        return parts.netloc + (parts.path or "/")
    return url


@dataclass(frozen=True)
class SourceCitationCount:
    url: str
    title: str
    count: int


@dataclass
class ConversationCitationStats:
    """Citation usage across the assistant messages of one conversation."""

    total_messages: int = 0
    messages_with_citations: int = 0
    total_citations: int = 0
    unique_sources: list[str] = field(default_factory=list)
    source_counts: dict[str, int] = field(default_factory=dict)

    @property
    def unique_sources_count(self) -> int:
        return len(self.unique_sources)

    @property
    def avg_citations_per_message(self) -> float:
        if self.messages_with_citations == 0:
            return 0.0
        return round(self.total_citations / self.messages_with_citations, 2)


class CitationTracker:
    """Persists which chunks informed a response and renders them back.

    Citations are stored as one JSON record per assistant message; their
    order is fixed at recording time and drives all numbering.
    """

    def __init__(
        self,
        content_store: ContentStore,
        message_store: MessageStore,
        title_resolvers: dict[str, TitleResolver] | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            content_store: Source of chunk details and stored source titles.
            message_store: Rows the citation records are attached to.
            title_resolvers: Per source type lookups from source id to title.
                Types without a resolver use the titles in the content store.
        """
        self.content_store = content_store
        self.message_store = message_store
        self.title_resolvers = dict(title_resolvers or {})

    def register_title_resolver(self, source_type: str, resolver: TitleResolver) -> None:
        self.title_resolvers[source_type] = resolver

    def record_citations(
        self,
        message_id: int,
        chunk_metadata: list[ChunkMetadata],
    ) -> CitationRecord:
        """Enrich and persist the citations of a message.

        Returns:
            The stored record.

        Raises:
            ValueError: If the message id or the metadata list is empty.
            MessageNotFoundError: If the message does not exist.
            StorageError: If the database write fails.
        """
        if not message_id or not chunk_metadata:
            msg = "Message ID and chunk metadata are required"
            raise ValueError(msg)

        citations = self._enrich(chunk_metadata)
        record = CitationRecord(
            citations=citations,
            recorded_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )
        self.message_store.set_citations_payload(message_id, record.to_json())
        logger.info("Recorded %d citations for message %s", record.count, message_id)
        return record

    def get_record(self, message_id: int) -> CitationRecord | None:
        """Load the citation record of a message.

        Returns:
            The record, or None when nothing was recorded.

        Raises:
            MessageNotFoundError: If the message does not exist.
            StorageError: If the stored payload cannot be decoded.
        """
        payload = self.message_store.get_citations_payload(message_id)
        if payload is None:
            return None
        try:
            return CitationRecord.from_json(payload)
        except ValueError as exc:
            logger.exception("Failed to decode citations for message %s", message_id)
            msg = f"Corrupt citations payload for message {message_id}"
            raise StorageError(msg) from exc

    def get_citations(self, message_id: int) -> list[Citation]:
        """Return the recorded citations of a message in recorded order.

        Returns:
            Citations, or [] when none were recorded.

        Raises:
            MessageNotFoundError: If the message does not exist.
            StorageError: If the stored payload cannot be decoded.
        """
        record = self.get_record(message_id)
        return record.citations if record is not None else []

    def backfill_titles(self, message_id: int) -> int:
        """Fill in titles that were unavailable when citations were recorded.

        Returns:
            Number of citations whose title was filled.
        """
        record = self.get_record(message_id)
        if record is None:
            return 0

        filled = 0
        citations = []
        for citation in record.citations:
            if not citation.title:
                title = self._resolve_title(citation)
                if title:
                    citation = replace(citation, title=title)
                    filled += 1
            citations.append(citation)

        if filled:
            updated = CitationRecord(citations=citations, recorded_at=record.recorded_at)
            self.message_store.set_citations_payload(message_id, updated.to_json())
            logger.info("Backfilled %d citation titles for message %s", filled, message_id)
        return filled

    def format_citations(
        self,
        message_id: int,
        style: str = "inline",
        options: RenderOptions | None = None,
        response_text: str = "",
    ) -> str | list[dict[str, Any]]:
        """Render the recorded citations of a message.

        Returns:
            The rendering produced by :func:`ragfunnel.rendering.render_citations`.

        Raises:
            MessageNotFoundError: If the message does not exist.
            StorageError: If the stored payload cannot be decoded.
            InvalidQueryError: If the style is unknown.
        """
        citations = self.get_citations(message_id)
        return rendering.render_citations(citations, style, response_text, options)

    render_citations = format_citations

    def format_response_json(
        self,
        message_id: int,
        response_text: str,
        style: str = "inline",
        options: RenderOptions | None = None,
    ) -> dict[str, Any]:
        """Render a response with the recorded citations of its message.

        Returns:
            The bundle built by :func:`ragfunnel.rendering.format_response_json`.

        Raises:
            MessageNotFoundError: If the message does not exist.
            StorageError: If the stored payload cannot be decoded.
        """
        citations = self.get_citations(message_id)
        return rendering.format_response_json(response_text, citations, style, options)

    def get_conversation_citation_stats(self, conversation_id: int) -> ConversationCitationStats:
        """Aggregate citation usage for one conversation.

        Malformed payloads count as messages but contribute no citations.
        """
        stats = ConversationCitationStats()
        for message_id, payload in self.message_store.iter_citation_payloads(conversation_id):
            stats.total_messages += 1
            record = self._decode_quietly(message_id, payload)
            if record is None or not record.citations:
                continue

            stats.messages_with_citations += 1
            stats.total_citations += record.count
            for citation in record.citations:
                url = citation.source_url
                if not url:
                    continue
                if url not in stats.source_counts:
                    stats.unique_sources.append(url)
                    stats.source_counts[url] = 0
                stats.source_counts[url] += 1
        return stats

    def get_most_cited_sources(self, limit: int = 10) -> list[SourceCitationCount]:
        """Rank source URLs by how often assistant messages cited them.

        Returns:
            Up to ``limit`` sources, most cited first.
        """
        titles: dict[str, str] = {}
        counts: dict[str, int] = {}
        for message_id, payload in self.message_store.iter_citation_payloads():
            record = self._decode_quietly(message_id, payload)
            if record is None:
                continue
            for citation in record.citations:
                if not citation.source_url:
                    continue
                titles.setdefault(citation.source_url, citation.title)
                counts[citation.source_url] = counts.get(citation.source_url, 0) + 1

        ranked = [
            SourceCitationCount(url=url, title=titles[url], count=count)
            for url, count in counts.items()
        ]
        ranked.sort(key=lambda source: source.count, reverse=True)
        return ranked[: max(0, int(limit))]

    def _enrich(self, chunk_metadata: list[ChunkMetadata]) -> list[Citation]:
        entries = [meta for meta in chunk_metadata if meta.chunk_id > 0]
        chunks = self.content_store.get_chunks([meta.chunk_id for meta in entries])

        citations = []
        for meta in entries:
            citation = Citation(
                chunk_id=meta.chunk_id,
                source_url=meta.source_url,
                title=meta.title,
                source_type=meta.source_type,
                score=meta.score,
                rerank_score=meta.rerank_score,
            )
            chunk = chunks.get(meta.chunk_id)
            if chunk is not None:
                citation = replace(
                    citation,
                    source_url=citation.source_url or chunk.source_url,
                    source_type=citation.source_type or chunk.source_type,
                    source_id=chunk.source_id,
                    chunk_index=chunk.chunk_index,
                )
            if not citation.title:
                citation = replace(citation, title=self._resolve_title(citation))
            citations.append(citation)
        return citations

    def _resolve_title(self, citation: Citation) -> str:
        """Source lookup first, then a label derived from the URL."""
        title = ""
        if citation.source_type and citation.source_id:
            resolver = self.title_resolvers.get(citation.source_type)
            if resolver is not None:
                title = resolver(citation.source_id)
            else:
                title = self.content_store.get_source_title(
                    citation.source_type, citation.source_id
                )
        return title or title_from_url(citation.source_url)

    @staticmethod
    def _decode_quietly(message_id: int, payload: str) -> CitationRecord | None:
        try:
            return CitationRecord.from_json(payload)
        except ValueError:
            logger.warning("Skipping malformed citations on message %s", message_id)
            return None
