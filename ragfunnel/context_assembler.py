"""Token-budgeted assembly of retrieved chunks into prompt context."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ragfunnel.config import config
from ragfunnel.errors import InvalidQueryError, ProviderUnavailableError
from ragfunnel.models import AssembledContext, ChunkMetadata

if TYPE_CHECKING:
    from ragfunnel.models import HistoryMessage, SearchResult
    from ragfunnel.providers import ProviderRegistry
    from ragfunnel.providers.base import Provider

logger = config.get_logger(__name__)

CHARS_PER_TOKEN = 4.0
MESSAGE_OVERHEAD_TOKENS = 10
STRATEGIES = ("greedy", "balanced", "quality")


def estimate_tokens(text: str) -> int:
    """Approximate token count at four characters per token.

    Returns:
        ``ceil(len(text) / 4)``; 0 for empty text.
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_history_tokens(history: list[HistoryMessage]) -> int:
    """Token estimate for prior messages including per-message overhead."""
    return sum(
        estimate_tokens(message.content) + MESSAGE_OVERHEAD_TOKENS for message in history
    )


@dataclass(frozen=True)
class AssemblyOptions:
    """Selection and formatting settings for context assembly.

    Reservation fields left as None use the configured defaults. Setting
    ``context_window`` skips the model lookup.
    """

    max_chunks: int = field(default_factory=lambda: config.CONTEXT_MAX_CHUNKS)
    chunk_separator: str = "\n\n---\n\n"
    include_metadata: bool = True
    include_citations: bool = True
    reserve_system_tokens: int | None = None
    reserve_response_tokens: int | None = None
    reserve_overhead_tokens: int | None = None
    strategy: str = "greedy"
    min_chunk_score: float = 0.0
    quality_threshold: float = 0.7
    max_chunk_tokens: int = 2000
    chunk_overhead_tokens: int = 50
    context_window: int | None = None


class ContextAssembler:
    """Selects ranked chunks that fit a model's context window and formats them."""

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        provider: Provider | None = None,
    ) -> None:
        """Initialize the assembler.

        Args:
            registry: Registry resolving the configured provider for model
                lookups when ``provider`` is not given.
            provider: Provider used for model lookups.
        """
        self.registry = registry
        self.provider = provider

    def assemble_context(
        self,
        query: str,
        ranked_chunks: list[SearchResult],
        conversation_history: list[HistoryMessage] | None = None,
        model: str | None = None,
        options: AssemblyOptions | None = None,
    ) -> AssembledContext:
        """Build the context block for one prompt.

        The total of reserved and context tokens never exceeds the context
        window. Chunks that do not fit are skipped whole, never split.

        Returns:
            The assembled context and its token accounting.

        Raises:
            InvalidQueryError: If the strategy name is unknown.
        """
        options = options or AssemblyOptions()
        if options.strategy not in STRATEGIES:
            msg = f"Unknown context strategy: {options.strategy}"
            raise InvalidQueryError(msg)

        history = conversation_history or []
        context_window = (
            options.context_window
            if options.context_window is not None
            else self.resolve_context_window(model)
        )

        reserved = (
            self._reservation(options.reserve_system_tokens, config.CONTEXT_RESERVE_SYSTEM_TOKENS)
            + self._reservation(
                options.reserve_response_tokens, config.CONTEXT_RESERVE_RESPONSE_TOKENS
            )
            + self._reservation(
                options.reserve_overhead_tokens, config.CONTEXT_RESERVE_OVERHEAD_TOKENS
            )
            + estimate_tokens(query)
            + estimate_history_tokens(history)
        )
        available = max(0, context_window - reserved)

        candidates = [
            chunk for chunk in ranked_chunks if chunk.relevance >= options.min_chunk_score
        ]
        candidates.sort(key=lambda chunk: chunk.relevance, reverse=True)
        selected = self.select_chunks(candidates, available, options)

        context_text = self.format_context(selected, options)
        tokens_used = estimate_tokens(context_text)
        while selected and reserved + tokens_used > context_window:
            selected = selected[:-1]
            context_text = self.format_context(selected, options)
            tokens_used = estimate_tokens(context_text)

        assembled = AssembledContext(
            chunks_total=len(ranked_chunks),
            tokens_available=available,
            context_window=context_window,
            reserved_tokens=reserved,
        )
        if not selected:
            logger.info(
                "No chunks fit the context budget (%d available of %d)",
                available,
                context_window,
            )
            return assembled

        assembled.context_text = context_text
        assembled.chunk_metadata = [self._metadata(chunk) for chunk in selected]
        assembled.chunks_used = len(selected)
        assembled.tokens_used = tokens_used
        assembled.tokens_total = reserved + tokens_used

        logger.info(
            "Assembled %d of %d chunks (%d tokens, %d of %d total)",
            assembled.chunks_used,
            assembled.chunks_total,
            tokens_used,
            assembled.tokens_total,
            context_window,
        )
        return assembled

    def resolve_context_window(self, model: str | None) -> int:
        """Look up the context window of ``model``.

        Returns:
            The provider-reported window, or config.CONTEXT_DEFAULT_WINDOW
            when the provider or model is unavailable.
        """
        try:
            provider = self._provider()
            model_name = model or config.CHAT_MODEL
            if not model_name:
                available = provider.available_models()
                model_name = available[0] if available else ""
            return provider.get_model_info(model_name).context_window
        except ProviderUnavailableError as exc:
            logger.warning(
                "Could not get model info for %r, using default window: %s", model, exc
            )
            return config.CONTEXT_DEFAULT_WINDOW

    def select_chunks(
        self,
        chunks: list[SearchResult],
        available_tokens: int,
        options: AssemblyOptions,
    ) -> list[SearchResult]:
        """Pick chunks for the budget according to ``options.strategy``.

        ``chunks`` must already be sorted by relevance.

        Returns:
            Selected chunks in selection order.
        """
        if not chunks or available_tokens <= 0 or options.max_chunks <= 0:
            return []

        if options.strategy == "balanced":
            return self._select_balanced(chunks, available_tokens, options)
        if options.strategy == "quality":
            chunks = [chunk for chunk in chunks if chunk.relevance >= options.quality_threshold]
        return self._select_greedy(chunks, available_tokens, options)

    def _select_greedy(
        self,
        chunks: list[SearchResult],
        available_tokens: int,
        options: AssemblyOptions,
    ) -> list[SearchResult]:
        selected: list[SearchResult] = []
        tokens_used = 0
        for chunk in chunks:
            if len(selected) >= options.max_chunks:
                break
            cost = self._chunk_cost(chunk, options)
            if tokens_used + cost <= available_tokens:
                selected.append(chunk)
                tokens_used += cost
        return selected

    def _select_balanced(
        self,
        chunks: list[SearchResult],
        available_tokens: int,
        options: AssemblyOptions,
    ) -> list[SearchResult]:
        """Round-robin over sources so one source cannot fill the budget."""
        by_source: dict[str, list[SearchResult]] = {}
        for chunk in chunks:
            by_source.setdefault(chunk.source_url or "unknown", []).append(chunk)

        queues = list(by_source.values())
        positions = [0] * len(queues)
        selected: list[SearchResult] = []
        tokens_used = 0
        max_rounds = options.max_chunks * 2

        for _ in range(max_rounds):
            if len(selected) >= options.max_chunks or tokens_used >= available_tokens:
                break
            added = False
            for idx, queue in enumerate(queues):
                if len(selected) >= options.max_chunks:
                    return selected
                if positions[idx] >= len(queue):
                    continue
                chunk = queue[positions[idx]]
                cost = self._chunk_cost(chunk, options)
                if tokens_used + cost <= available_tokens:
                    selected.append(chunk)
                    tokens_used += cost
                    positions[idx] += 1
                    added = True
            if not added:
                break
        return selected

    def format_context(
        self,
        chunks: list[SearchResult],
        options: AssemblyOptions,
    ) -> str:
        """Render selected chunks into one context string.

        Returns:
            Chunks joined by ``options.chunk_separator``; empty for no chunks.
        """
        max_chars = int(options.max_chunk_tokens * CHARS_PER_TOKEN)
        parts = []
        for position, chunk in enumerate(chunks, start=1):
            content = chunk.content
            if len(content) > max_chars:
                content = content[:max_chars] + "..."

            formatted = content
            if options.include_metadata:
                header = [f"Source: {chunk.source_url}"] if chunk.source_url else []
                header.append(f"Section: {chunk.chunk_index}")
                if chunk.title:
                    header.append(f"Title: {chunk.title}")
                formatted = "[" + " | ".join(header) + "]\n\n" + formatted

            if options.include_citations:
                formatted += f" [{position}]"

            parts.append(formatted)
        return options.chunk_separator.join(parts)

    def _provider(self) -> Provider:
        if self.provider is not None:
            return self.provider
        if self.registry is not None:
            return self.registry.get()
        msg = "No provider available for model lookup"
        raise ProviderUnavailableError(msg)

    @staticmethod
    def _reservation(value: int | None, default: int) -> int:
        return int(value) if value is not None else default

    @staticmethod
    def _chunk_cost(chunk: SearchResult, options: AssemblyOptions) -> int:
        return estimate_tokens(chunk.content) + options.chunk_overhead_tokens

    @staticmethod
    def _metadata(chunk: SearchResult) -> ChunkMetadata:
        return ChunkMetadata(
            chunk_id=chunk.chunk_id,
            source_url=chunk.source_url,
            title=chunk.title,
            score=chunk.score,
            rerank_score=chunk.rerank_score or 0.0,
            source_type=chunk.source_type,
        )
