"""Test configuration and fixtures for ragfunnel tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- A deterministic fake provider and OpenAI SDK mocks
- Store fixtures backed by a temporary SQLite file
- Chunk and search result factories
- Component fixtures wired to the fake provider
"""

import hashlib
import threading
from collections.abc import Callable
from unittest.mock import Mock, patch

import numpy as np
import pytest

from ragfunnel import (
    CitationTracker,
    ContentChunk,
    ContentStore,
    ContextAssembler,
    CrossEncoderReranker,
    HybridSearch,
    InMemoryTTLCache,
    MessageStore,
    SearchResult,
    SQLiteVectorStore,
)
from ragfunnel.errors import ProviderUnavailableError
from ragfunnel.providers import Completion, ModelInfo, TokenUsage


class TestConstants:
    """Centralized test constants to avoid repetition across test files.

    All test constants are defined here to maintain consistency across
    the test suite and make it easy to update values globally.
    """

    # Provider Configuration
    TEST_API_KEY = "test-key"
    TEST_EMBEDDING_MODEL = "fake-embedding"
    TEST_CHAT_MODEL = "fake-chat"
    TEST_CONTEXT_WINDOW = 8192
    DEFAULT_EMBEDDING_DIMENSION = 64

    # Content
    TEST_SOURCE_URL = "https://example.com/docs/getting-started"
    OTHER_SOURCE_URL = "https://example.com/blog/release-notes"


def hashed_embedding(
    text: str, dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION
) -> np.ndarray:
    """Deterministic unit vector seeded by the text hash."""
    seed = int.from_bytes(
        hashlib.sha256(text.lower().encode("utf-8")).digest()[:8],
        byteorder="big",
        signed=False,
    )
    rng = np.random.default_rng(seed)
    embedding = rng.normal(0, 1, dimension)
    return embedding / np.linalg.norm(embedding)


class FakeProvider:
    """In-process provider for testing without network calls.

    Embeddings are derived from a text hash, so identical text always maps
    to the same vector. Chat replies come from ``reply`` (a string or a
    callable taking the user prompt).
    """

    name = "fake"

    def __init__(
        self,
        dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION,
        reply: str | Callable[[str], str] = "0.8",
        configured: bool = True,
        context_window: int = TestConstants.TEST_CONTEXT_WINDOW,
        fail_completions: bool = False,
    ) -> None:
        self.dimension = dimension
        self.reply = reply
        self.configured = configured
        self.context_window = context_window
        self.fail_completions = fail_completions
        self.default_embedding_model = TestConstants.TEST_EMBEDDING_MODEL
        self.embedding_calls: list[tuple[str, str | None]] = []
        self.completion_calls: list[tuple[list, object]] = []
        self.vectors: dict[str, np.ndarray] = {}
        self._lock = threading.Lock()

    def is_configured(self) -> bool:
        return self.configured

    def available_models(self) -> list[str]:  # noqa: PLR6301
        return [TestConstants.TEST_CHAT_MODEL]

    def generate_embedding(self, text: str, model: str | None = None) -> np.ndarray:
        with self._lock:
            self.embedding_calls.append((text, model))
        if text in self.vectors:
            return self.vectors[text]
        return hashed_embedding(text, self.dimension)

    def complete(self, messages, options) -> Completion:
        with self._lock:
            self.completion_calls.append((messages, options))
        if self.fail_completions:
            msg = "fake provider offline"
            raise ProviderUnavailableError(msg)
        prompt = messages[-1].content
        content = self.reply(prompt) if callable(self.reply) else self.reply
        return Completion(content=content, model=options.model, usage=TokenUsage(10, 1))

    def get_model_info(self, model: str) -> ModelInfo:
        if model != TestConstants.TEST_CHAT_MODEL:
            msg = f"Unknown model: {model}"
            raise ProviderUnavailableError(msg)
        return ModelInfo(model, self.context_window, 4096)


def create_mock_openai_response(embeddings: list[list[float]]) -> Mock:
    """Create a mock OpenAI embeddings API response.

    Args:
        embeddings: List of embedding vectors to return.

    Returns:
        Mock object representing OpenAI embeddings API response.
    """
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def create_mock_chat_response(content: str | None, finish_reason: str = "stop") -> Mock:
    """Create a mock OpenAI chat completion response.

    Args:
        content: The content for the chat completion response.
        finish_reason: Reported finish reason.

    Returns:
        Mock object representing OpenAI chat completion response.
    """
    mock_response = Mock()
    mock_response.choices = [
        Mock(message=Mock(content=content), finish_reason=finish_reason)
    ]
    mock_response.usage = Mock(prompt_tokens=12, completion_tokens=3)
    return mock_response


@pytest.fixture
def openai_embeddings_api_mock():
    """Patch the OpenAI SDK embeddings.create method."""
    with patch("openai.resources.embeddings.Embeddings.create") as mock_create:
        yield mock_create


@pytest.fixture
def openai_chat_api_mock():
    """Patch the OpenAI SDK chat.completions.create method."""
    with patch(
        "openai.resources.chat.completions.Completions.create"
    ) as mock_create:
        yield mock_create


@pytest.fixture
def fake_provider():
    """Configured FakeProvider replying with a fixed relevance score."""
    return FakeProvider()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "content.db"


@pytest.fixture
def content_store(db_path) -> ContentStore:
    return ContentStore(db_path)


@pytest.fixture
def message_store(db_path) -> MessageStore:
    return MessageStore(db_path)


@pytest.fixture
def vector_store(db_path, fake_provider) -> SQLiteVectorStore:
    """Vector store sharing the content database, embedding with FakeProvider."""
    return SQLiteVectorStore(db_path, embedding_provider=fake_provider)


@pytest.fixture
def chunk_factory(content_store, vector_store, fake_provider):
    """Factory adding chunks (and by default their embeddings) to the store."""

    def _create_chunk(  # noqa: PLR0913
        content: str,
        *,
        source_url: str = TestConstants.TEST_SOURCE_URL,
        source_type: str = "post",
        source_id: int | None = 1,
        chunk_index: int = 0,
        title: str = "",
        embed: bool = True,
        vector: np.ndarray | None = None,
    ) -> ContentChunk:
        chunk = content_store.add_chunk(
            content,
            source_type=source_type,
            source_url=source_url,
            source_id=source_id,
            chunk_index=chunk_index,
            title=title,
        )
        if embed:
            embedding = vector if vector is not None else hashed_embedding(content)
            vector_store.store(
                chunk.id, embedding, fake_provider.default_embedding_model
            )
        return chunk

    return _create_chunk


@pytest.fixture
def sample_chunks(chunk_factory):
    """A small corpus across two sources."""
    texts = [
        "Machine learning is a subset of artificial intelligence.",
        "Neural networks are computational models inspired by the brain.",
        "Deep learning uses multiple layers to learn complex patterns.",
        "Supervised learning uses labeled training data.",
        "Unsupervised learning finds patterns in unlabeled data.",
    ]
    return [
        chunk_factory(
            text,
            source_url=(
                TestConstants.TEST_SOURCE_URL
                if i < 3
                else TestConstants.OTHER_SOURCE_URL
            ),
            source_id=1 if i < 3 else 2,
            chunk_index=i if i < 3 else i - 3,
        )
        for i, text in enumerate(texts)
    ]


@pytest.fixture
def search_result_factory():
    """Factory building SearchResult records without touching storage."""

    def _create_result(  # noqa: PLR0913
        chunk_id: int,
        content: str = "",
        *,
        score: float = 0.5,
        rerank_score: float | None = None,
        source_url: str = TestConstants.TEST_SOURCE_URL,
        title: str = "",
        chunk_index: int = 0,
    ) -> SearchResult:
        return SearchResult(
            chunk_id=chunk_id,
            content=content or f"Content of chunk {chunk_id}.",
            source_type="post",
            source_url=source_url,
            chunk_index=chunk_index,
            title=title,
            score=score,
            semantic_score=score,
            rerank_score=rerank_score,
        )

    return _create_result


@pytest.fixture
def hybrid_search(vector_store, content_store) -> HybridSearch:
    return HybridSearch(vector_store, content_store, parallel=False)


@pytest.fixture
def reranker_factory(fake_provider):
    """Factory for rerankers over a FakeProvider with an isolated cache."""

    def _create_reranker(provider=None, cache=None, **kwargs) -> CrossEncoderReranker:
        return CrossEncoderReranker(
            provider=provider if provider is not None else fake_provider,
            cache=cache if cache is not None else InMemoryTTLCache(),
            **kwargs,
        )

    return _create_reranker


@pytest.fixture
def context_assembler(fake_provider) -> ContextAssembler:
    return ContextAssembler(provider=fake_provider)


@pytest.fixture
def citation_tracker(content_store, message_store) -> CitationTracker:
    return CitationTracker(content_store, message_store)
