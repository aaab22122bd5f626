"""Provider capability interface and the records exchanged with providers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    import numpy as np


@dataclass(frozen=True)
class ChatMessage:
    """A single chat message sent to a completion provider."""

    role: str
    content: str


@dataclass(frozen=True)
class CompletionOptions:
    """Per-call settings for a chat completion."""

    model: str
    temperature: float = 0.7
    max_tokens: int = 500
    timeout: float | None = None


def _count(value: object) -> int:
    # bool is an int subclass
    if isinstance(value, int) and not isinstance(value, bool):
        return max(0, value)
    return 0


@dataclass(frozen=True)
class TokenUsage:
    """Token accounting reported by a provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    @classmethod
    def from_counts(cls, prompt_tokens: object, completion_tokens: object) -> TokenUsage:
        """Build usage from raw reply fields, treating non-integers as zero.

        Returns:
            TokenUsage with non-negative counts.
        """
        return cls(_count(prompt_tokens), _count(completion_tokens))


@dataclass(frozen=True)
class Completion:
    """Normalized chat completion response."""

    content: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str | None = None


@dataclass(frozen=True)
class ModelInfo:
    """Static metadata about a chat model."""

    name: str
    context_window: int
    max_tokens: int


class Provider(Protocol):
    """Capability interface implemented once per model backend."""

    name: str
    default_embedding_model: str

    def is_configured(self) -> bool: ...

    def available_models(self) -> list[str]: ...

    def generate_embedding(self, text: str, model: str | None = None) -> np.ndarray: ...

    def complete(
        self,
        messages: list[ChatMessage],
        options: CompletionOptions,
    ) -> Completion: ...

    def get_model_info(self, model: str) -> ModelInfo: ...
