"""Second-pass relevance scoring of search results."""

from __future__ import annotations

import hashlib
import math
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from ragfunnel.cache import InMemoryTTLCache, ScoreCache
from ragfunnel.config import config
from ragfunnel.errors import InvalidQueryError, ProviderUnavailableError
from ragfunnel.keywords import count_occurrences, extract_keywords
from ragfunnel.providers.base import ChatMessage, CompletionOptions

if TYPE_CHECKING:
    from ragfunnel.models import SearchResult
    from ragfunnel.providers import ProviderRegistry
    from ragfunnel.providers.base import Provider

logger = config.get_logger(__name__)

JUDGE_SYSTEM_PROMPT = (
    "You are a relevance scoring system. Rate how relevant the given document "
    "is to the query on a scale of 0.0 to 1.0. Respond with only a decimal "
    "number between 0.0 and 1.0, nothing else."
)

JUDGE_PROMPT_TEMPLATE = (
    "Query: {query}\n\nDocument: {content}\n\n"
    "Rate the relevance of this document to the query on a scale of 0.0 to "
    "1.0, where 1.0 means highly relevant and 0.0 means not relevant at all. "
    "Respond with only the decimal number."
)

JUDGE_MAX_CONTENT_CHARS = 500
JUDGE_MAX_TOKENS = 10
DEFAULT_JUDGE_SCORE = 0.5

_NUMBER_PATTERN = re.compile(r"-?\d+(?:\.\d+)?|-?\.\d+")

METHOD_ALIASES = {
    "ai": "ai",
    "ai_scoring": "ai",
    "heuristic": "heuristic",
    "combined": "combined",
}


@dataclass(frozen=True)
class RerankOptions:
    """Per-call reranking settings."""

    rerank_limit: int = field(default_factory=lambda: config.RERANK_LIMIT)
    output_limit: int = field(default_factory=lambda: config.RERANK_OUTPUT_LIMIT)
    method: str = "ai"
    use_cache: bool = True
    min_score: float = 0.0
    provider: str | None = None
    model: str | None = None
    ai_weight: float = 0.7
    heuristic_weight: float = 0.3


@dataclass(frozen=True)
class JudgeOutcome:
    """Result of one model relevance judgment.

    ``score`` is None when the judgment failed; ``error`` then says why.
    """

    score: float | None = None
    error: str | None = None
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.score is not None

    def score_or(self, default: float) -> float:
        """Return the judged score, or ``default`` if the judgment failed."""
        return self.score if self.score is not None else default


def parse_judge_score(text: str) -> float | None:
    """Extract the first decimal number from a model reply.

    Returns:
        The number clamped to [0, 1], or None if the reply has no number.
    """
    match = _NUMBER_PATTERN.search(text.strip())
    if match is None:
        return None
    return max(0.0, min(1.0, float(match.group())))


def rerank_cache_key(query: str, chunk_id: int) -> str:
    digest = hashlib.sha256(f"{query}_{chunk_id}".encode()).hexdigest()
    return f"rerank_{digest}"


@dataclass(frozen=True)
class HeuristicScorer:
    """Lexical relevance estimate used without, or alongside, a model judge.

    Combines the pass score, an exact phrase match bonus, keyword coverage
    and keyword frequency, then scales by a penalty for content far from
    ``optimal_length`` characters.
    """

    pass_score_weight: float = 0.3
    phrase_match_bonus: float = 0.3
    coverage_weight: float = 0.2
    frequency_cap: float = 0.2
    frequency_divisor: float = 10.0
    optimal_length: int = 500
    max_length_penalty: float = 0.1

    def score(self, query: str, result: SearchResult) -> float:
        """Score one result for ``query``.

        Returns:
            Heuristic relevance in [0, 1].
        """
        query_lower = query.lower()
        content = result.content.lower()
        keywords = extract_keywords(query_lower)

        score = result.score * self.pass_score_weight

        if query_lower and query_lower in content:
            score += self.phrase_match_bonus

        if keywords:
            matched = sum(1 for keyword in keywords if keyword in content)
            score += matched / len(keywords) * self.coverage_weight

        occurrences = count_occurrences(content, keywords)
        score += min(self.frequency_cap, math.log(1 + occurrences) / self.frequency_divisor)

        if self.optimal_length > 0:
            deviation = abs(len(content) - self.optimal_length) / self.optimal_length
            score *= 1.0 - min(self.max_length_penalty, deviation)

        return max(0.0, min(1.0, score))


class CrossEncoderReranker:
    """Rescores the head of a result list with a model judge or heuristics.

    Model judgments run concurrently in a bounded thread pool. Successful
    judgments are memoized in the injected cache.
    """

    def __init__(  # noqa: PLR0913
        self,
        registry: ProviderRegistry | None = None,
        provider: Provider | None = None,
        cache: ScoreCache | None = None,
        cache_ttl: int | None = None,
        max_workers: int | None = None,
        heuristic: HeuristicScorer | None = None,
    ) -> None:
        """Initialize the reranker.

        Args:
            registry: Registry used to resolve ``RerankOptions.provider`` names
                and the configured default provider.
            provider: Provider used when options name none. Takes precedence
                over the registry default.
            cache: Score cache. If None, an in-memory TTL cache is created.
            cache_ttl: Seconds a judged score stays cached. If None, uses
                config.RERANK_CACHE_TTL.
            max_workers: Concurrent judgments. If None, uses
                config.RERANK_MAX_WORKERS.
            heuristic: Heuristic scorer. If None, uses default constants.
        """
        self.registry = registry
        self.provider = provider
        self.cache: ScoreCache = cache if cache is not None else InMemoryTTLCache()
        self.cache_ttl = cache_ttl if cache_ttl is not None else config.RERANK_CACHE_TTL
        self.max_workers = max(
            1, max_workers if max_workers is not None else config.RERANK_MAX_WORKERS
        )
        self.heuristic = heuristic or HeuristicScorer()

    def rerank(
        self,
        query_text: str,
        results: list[SearchResult],
        options: RerankOptions | None = None,
    ) -> list[SearchResult]:
        """Rescore the first ``rerank_limit`` results and reorder them.

        Results past ``rerank_limit`` are appended unchanged. When the model
        judge cannot be reached the input order is returned with
        ``rerank_score`` set to each result's pass score.

        Returns:
            Reranked head (filtered by ``min_score`` and truncated to
            ``output_limit``) followed by the untouched tail.

        Raises:
            InvalidQueryError: If the method name is unknown.
        """
        if not query_text or not query_text.strip() or not results:
            return list(results)

        options = options or RerankOptions()
        method = METHOD_ALIASES.get(options.method.lower())
        if method is None:
            msg = f"Unknown rerank method: {options.method}"
            raise InvalidQueryError(msg)

        head = results[: options.rerank_limit]
        tail = results[options.rerank_limit :]
        if not head:
            return list(results)

        if method == "heuristic":
            scored = self._score_heuristic(query_text, head)
        else:
            judge = self._resolve_judge(options)
            if judge is None:
                return self._degraded(results)
            provider, model = judge
            scored = self._score_ai(query_text, head, provider, model, options)
            if method == "combined":
                scored = self._combine(
                    scored,
                    self._score_heuristic(query_text, head),
                    options.ai_weight,
                    options.heuristic_weight,
                )

        kept = [
            result
            for result in scored
            if result.rerank_score is not None and result.rerank_score >= options.min_score
        ]
        kept.sort(key=lambda result: result.rerank_score or 0.0, reverse=True)
        reranked = kept[: max(0, options.output_limit)]

        logger.info(
            "Reranked %d of %d results with %s method, kept %d",
            len(head),
            len(results),
            method,
            len(reranked),
        )
        return reranked + list(tail)

    def judge(
        self,
        query_text: str,
        result: SearchResult,
        provider: Provider,
        model: str,
        use_cache: bool = True,
    ) -> JudgeOutcome:
        """Ask the model how relevant one result is.

        Returns:
            The parsed score, or a failed outcome carrying the reason.
        """
        cache_key = rerank_cache_key(query_text, result.chunk_id)
        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return JudgeOutcome(score=float(cached), cached=True)

        content = result.content
        if len(content) > JUDGE_MAX_CONTENT_CHARS:
            content = content[:JUDGE_MAX_CONTENT_CHARS] + "..."

        messages = [
            ChatMessage(role="system", content=JUDGE_SYSTEM_PROMPT),
            ChatMessage(
                role="user",
                content=JUDGE_PROMPT_TEMPLATE.format(query=query_text, content=content),
            ),
        ]
        completion_options = CompletionOptions(
            model=model,
            temperature=0.0,
            max_tokens=JUDGE_MAX_TOKENS,
            timeout=config.PROVIDER_TIMEOUT,
        )

        try:
            completion = provider.complete(messages, completion_options)
        except ProviderUnavailableError as exc:
            logger.warning("Relevance judgment failed for chunk %s: %s", result.chunk_id, exc)
            return JudgeOutcome(error=str(exc))

        score = parse_judge_score(completion.content)
        if score is None:
            logger.debug(
                "Unparseable relevance reply for chunk %s: %r",
                result.chunk_id,
                completion.content,
            )
            return JudgeOutcome(error=f"Unparseable reply: {completion.content!r}")

        if use_cache:
            self.cache.set(cache_key, score, self.cache_ttl)
        return JudgeOutcome(score=score)

    def _resolve_judge(self, options: RerankOptions) -> tuple[Provider, str] | None:
        """Find the provider and model for model judgments, if any."""
        try:
            if options.provider is None and self.provider is not None:
                provider = self.provider
                if not provider.is_configured():
                    msg = f"Provider '{provider.name}' is not configured"
                    raise ProviderUnavailableError(msg)
            elif self.registry is not None:
                provider = self.registry.get(options.provider)
            else:
                msg = "No provider available for reranking"
                raise ProviderUnavailableError(msg)
        except ProviderUnavailableError as exc:
            logger.warning("Reranking without a model judge: %s", exc)
            return None

        model = options.model or config.CHAT_MODEL
        if not model:
            available = provider.available_models()
            model = available[0] if available else ""
        if not model:
            logger.warning("Reranking without a model judge: no model available")
            return None
        return provider, model

    def _score_ai(
        self,
        query_text: str,
        head: list[SearchResult],
        provider: Provider,
        model: str,
        options: RerankOptions,
    ) -> list[SearchResult]:
        workers = min(self.max_workers, len(head))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rerank") as pool:
            outcomes = list(
                pool.map(
                    lambda result: self.judge(
                        query_text, result, provider, model, options.use_cache
                    ),
                    head,
                )
            )

        failed = sum(1 for outcome in outcomes if not outcome.ok)
        if failed:
            logger.warning(
                "%d of %d relevance judgments fell back to %.1f",
                failed,
                len(outcomes),
                DEFAULT_JUDGE_SCORE,
            )

        return [
            replace(
                result,
                rerank_score=outcome.score_or(DEFAULT_JUDGE_SCORE),
                original_rank=rank,
            )
            for rank, (result, outcome) in enumerate(zip(head, outcomes, strict=True), start=1)
        ]

    def _score_heuristic(
        self,
        query_text: str,
        head: list[SearchResult],
    ) -> list[SearchResult]:
        return [
            replace(
                result,
                rerank_score=self.heuristic.score(query_text, result),
                original_rank=rank,
            )
            for rank, result in enumerate(head, start=1)
        ]

    @staticmethod
    def _combine(
        ai_scored: list[SearchResult],
        heuristic_scored: list[SearchResult],
        ai_weight: float,
        heuristic_weight: float,
    ) -> list[SearchResult]:
        heuristic_scores = {
            result.chunk_id: result.rerank_score or 0.0 for result in heuristic_scored
        }
        return [
            replace(
                result,
                rerank_score=(result.rerank_score or 0.0) * ai_weight
                + heuristic_scores.get(result.chunk_id, 0.0) * heuristic_weight,
            )
            for result in ai_scored
        ]

    @staticmethod
    def _degraded(results: list[SearchResult]) -> list[SearchResult]:
        return [
            replace(result, rerank_score=result.score, original_rank=rank)
            for rank, result in enumerate(results, start=1)
        ]
