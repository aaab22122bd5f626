"""Lexical helpers shared by keyword search and heuristic reranking."""

from __future__ import annotations

import math
from dataclasses import dataclass

STOP_WORDS: frozenset[str] = frozenset({
    "the", "be", "to", "of", "and", "a", "in", "that", "have", "i", "it",
    "for", "not", "on", "with", "he", "as", "you", "do", "at", "this", "but",
    "his", "by", "from", "they", "we", "say", "her", "she", "or", "an",
    "will", "my", "one", "all", "would", "there", "their", "what", "so",
    "up", "out", "if", "about", "who", "get", "which", "go", "me", "when",
    "make", "can", "like", "time", "no", "just", "him", "know", "take",
    "people", "into", "year", "your", "good", "some", "could", "them", "see",
    "other", "than", "then", "now", "look", "only", "come", "its", "over",
    "think", "also", "back", "after", "use", "two", "how", "our", "work",
    "first", "well", "way", "even", "new", "want", "because", "any", "these",
    "give", "day", "most", "us", "is", "are", "was", "were", "been", "being",
    "has", "had", "having", "does", "did", "doing", "may", "might", "must",
    "shall", "should", "ought", "need", "dare",
})  # fmt: skip

PUNCTUATION = ".,!?;:\"'()[]{}"
MIN_KEYWORD_LENGTH = 3


def extract_keywords(text: str) -> list[str]:
    """Extract distinct, lowercased content words from a query.

    Returns:
        Keywords in order of first appearance.
    """
    keywords: list[str] = []
    for raw_word in text.lower().split():
        word = raw_word.strip(PUNCTUATION)
        if len(word) < MIN_KEYWORD_LENGTH or word in STOP_WORDS:
            continue
        if word not in keywords:
            keywords.append(word)
    return keywords


def find_occurrences(content_lower: str, keyword: str) -> list[int]:
    """Return non-overlapping start offsets of ``keyword`` in the content."""
    positions: list[int] = []
    start = content_lower.find(keyword)
    while start != -1:
        positions.append(start)
        start = content_lower.find(keyword, start + len(keyword))
    return positions


@dataclass(frozen=True)
class KeywordScorer:
    """Lexical relevance score combining coverage, frequency and proximity.

    The proximity bonus rewards keyword occurrences that sit close together;
    ``proximity_bonus_max`` bounds it before it is weighted into the total.
    """

    coverage_weight: float = 0.5
    frequency_weight: float = 0.3
    proximity_weight: float = 0.2
    proximity_bonus_max: float = 0.2
    min_proximity_length: int = 100

    def score(self, content: str, keywords: list[str]) -> float:
        """Score ``content`` against the extracted query keywords.

        Returns:
            Relevance in [0, 1]; 0.0 when nothing matches.
        """
        if not content or not keywords:
            return 0.0

        content_lower = content.lower()
        total_matches = 0
        unique_matches = 0
        positions: list[int] = []

        for keyword in keywords:
            found = find_occurrences(content_lower, keyword)
            if found:
                total_matches += len(found)
                unique_matches += 1
                positions.extend(found)

        if unique_matches == 0:
            return 0.0

        coverage = unique_matches / len(keywords)
        frequency = min(1.0, math.log(1 + total_matches) / math.log(10))
        proximity = self._proximity_bonus(sorted(positions), len(content_lower))

        score = (
            coverage * self.coverage_weight
            + frequency * self.frequency_weight
            + proximity * self.proximity_weight
        )
        return max(0.0, min(1.0, score))

    def _proximity_bonus(self, positions: list[int], content_length: int) -> float:
        if len(positions) < 2:  # noqa: PLR2004
            return 0.0
        min_distance = min(
            later - earlier
            for earlier, later in zip(positions, positions[1:], strict=False)
        )
        min_distance = min(min_distance, content_length)
        span = max(content_length, self.min_proximity_length)
        return max(0.0, self.proximity_bonus_max * (1 - min_distance / span))


def count_occurrences(content_lower: str, keywords: list[str]) -> int:
    """Total non-overlapping occurrences of all keywords."""
    return sum(content_lower.count(keyword) for keyword in keywords)
