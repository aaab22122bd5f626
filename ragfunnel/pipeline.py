"""Retrieval pipeline wiring search, reranking, context assembly and citations."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .citations import CitationTracker
from .config import config
from .context_assembler import AssemblyOptions, ContextAssembler
from .errors import NotConfiguredError
from .hybrid_search import HybridSearch, HybridSearchOptions
from .models import AssembledContext, SearchResult
from .providers import ProviderRegistry, default_registry
from .reranker import CrossEncoderReranker, RerankOptions
from .storage import ContentStore, MessageStore
from .vector_store import SQLiteVectorStore

if TYPE_CHECKING:
    from .cache import ScoreCache
    from .models import ChunkMetadata, Citation, CitationRecord, HistoryMessage
    from .providers.base import Provider
    from .rendering import RenderOptions

logger = config.get_logger(__name__)


@dataclass
class RetrievalOutcome:
    """Everything one query produced on its way to a prompt."""

    search_results: list[SearchResult] = field(default_factory=list)
    reranked: list[SearchResult] = field(default_factory=list)
    context: AssembledContext = field(default_factory=AssembledContext)


class RetrievalPipeline:
    """Main retrieval pipeline: Search -> Rerank -> Assemble -> Cite."""

    def __init__(  # noqa: PLR0913
        self,
        db_path: Path | None = None,
        provider_name: str | None = None,
        registry: ProviderRegistry | None = None,
        provider: Provider | None = None,
        cache: ScoreCache | None = None,
        max_candidates: int | None = None,
    ) -> None:
        """Initialize the pipeline over one content database.

        Args:
            db_path: SQLite file. If None, uses config.CONTENT_DB_PATH.
            provider_name: Registry key of the provider. If None, uses
                config.AI_PROVIDER.
            registry: Provider registry. If None, the built-in backends are
                registered.
            provider: Explicit provider, bypassing the registry.
            cache: Rerank score cache. If None, an in-memory cache is used.
            max_candidates: Cap on rows scanned by similarity search. If
                None, uses config.VECTOR_MAX_CANDIDATES.
        """
        db_path = Path(db_path) if db_path is not None else config.CONTENT_DB_PATH
        self.registry = registry or default_registry()

        if provider is None:
            try:
                provider = self.registry.get(provider_name)
            except NotConfiguredError as exc:
                logger.warning("Provider unavailable, keyword search only: %s", exc)
        self.provider = provider

        self.content_store = ContentStore(db_path)
        self.message_store = MessageStore(db_path)
        self.vector_store = SQLiteVectorStore(
            db_path,
            embedding_provider=provider,
            max_candidates=max_candidates,
        )
        self.searcher = HybridSearch(self.vector_store, self.content_store)
        self.reranker = CrossEncoderReranker(
            registry=self.registry,
            provider=provider,
            cache=cache,
        )
        self.assembler = ContextAssembler(registry=self.registry, provider=provider)
        self.citation_tracker = CitationTracker(self.content_store, self.message_store)

        logger.info(
            "Retrieval pipeline ready on %s (provider: %s)",
            db_path,
            provider.name if provider is not None else "none",
        )

    def hybrid_search(
        self,
        query_text: str,
        options: HybridSearchOptions | None = None,
    ) -> list[SearchResult]:
        return self.searcher.search(query_text, options)

    def rerank(
        self,
        query_text: str,
        results: list[SearchResult],
        options: RerankOptions | None = None,
    ) -> list[SearchResult]:
        return self.reranker.rerank(query_text, results, options)

    def assemble_context(
        self,
        query: str,
        ranked_chunks: list[SearchResult],
        conversation_history: list[HistoryMessage] | None = None,
        model: str | None = None,
        options: AssemblyOptions | None = None,
    ) -> AssembledContext:
        return self.assembler.assemble_context(
            query, ranked_chunks, conversation_history, model, options
        )

    def retrieve(  # noqa: PLR0913
        self,
        query_text: str,
        conversation_history: list[HistoryMessage] | None = None,
        model: str | None = None,
        search_options: HybridSearchOptions | None = None,
        rerank_options: RerankOptions | None = None,
        assembly_options: AssemblyOptions | None = None,
    ) -> RetrievalOutcome:
        """Run search, reranking and context assembly for one query.

        Returns:
            The results of each stage.

        Raises:
            EmptyQueryError: If the query is empty or whitespace.
        """
        logger.info("Retrieving context for query: %s", query_text[:80])
        search_results = self.hybrid_search(query_text, search_options)
        reranked = self.rerank(query_text, search_results, rerank_options)
        context = self.assemble_context(
            query_text, reranked, conversation_history, model, assembly_options
        )
        return RetrievalOutcome(
            search_results=search_results,
            reranked=reranked,
            context=context,
        )

    def record_citations(
        self,
        message_id: int,
        chunk_metadata: list[ChunkMetadata],
    ) -> CitationRecord:
        return self.citation_tracker.record_citations(message_id, chunk_metadata)

    def get_citations(self, message_id: int) -> list[Citation]:
        return self.citation_tracker.get_citations(message_id)

    def render_citations(
        self,
        message_id: int,
        style: str = "inline",
        options: RenderOptions | None = None,
        response_text: str = "",
    ) -> str | list[dict[str, Any]]:
        return self.citation_tracker.format_citations(
            message_id, style, options, response_text
        )
