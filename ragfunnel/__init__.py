"""ragfunnel - retrieval funnel for retrieval-augmented generation."""

from .cache import InMemoryTTLCache, NullCache
from .citations import CitationTracker
from .context_assembler import AssemblyOptions, ContextAssembler, estimate_tokens
from .errors import (
    EmptyQueryError,
    InvalidQueryError,
    MessageNotFoundError,
    NotConfiguredError,
    ProviderUnavailableError,
    RetrievalError,
    StorageError,
)
from .hybrid_search import HybridSearch, HybridSearchOptions
from .models import (
    AssembledContext,
    ChunkMetadata,
    Citation,
    CitationRecord,
    ContentChunk,
    HistoryMessage,
    SearchResult,
)
from .pipeline import RetrievalOutcome, RetrievalPipeline
from .rendering import RenderOptions
from .reranker import CrossEncoderReranker, RerankOptions
from .storage import ContentStore, MessageStore
from .vector_store import SimilaritySearchOptions, SQLiteVectorStore

__all__ = [
    "AssembledContext",
    "AssemblyOptions",
    "ChunkMetadata",
    "Citation",
    "CitationRecord",
    "CitationTracker",
    "ContentChunk",
    "ContentStore",
    "ContextAssembler",
    "CrossEncoderReranker",
    "EmptyQueryError",
    "HistoryMessage",
    "HybridSearch",
    "HybridSearchOptions",
    "InMemoryTTLCache",
    "InvalidQueryError",
    "MessageNotFoundError",
    "MessageStore",
    "NotConfiguredError",
    "NullCache",
    "ProviderUnavailableError",
    "RenderOptions",
    "RerankOptions",
    "RetrievalError",
    "RetrievalOutcome",
    "RetrievalPipeline",
    "SQLiteVectorStore",
    "SearchResult",
    "SimilaritySearchOptions",
    "StorageError",
    "estimate_tokens",
]
