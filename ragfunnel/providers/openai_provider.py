"""OpenAI-backed embedding and chat completion provider."""

import numpy as np
from openai import OpenAI, OpenAIError

from ragfunnel.config import config
from ragfunnel.errors import NotConfiguredError, ProviderUnavailableError

from .base import ChatMessage, Completion, CompletionOptions, ModelInfo, TokenUsage

logger = config.get_logger(__name__)

CHAT_MODELS: dict[str, ModelInfo] = {
    "gpt-4.1-nano": ModelInfo("gpt-4.1-nano", 1047576, 32768),
    "gpt-4-turbo-preview": ModelInfo("gpt-4-turbo-preview", 128000, 4096),
    "gpt-4o-mini": ModelInfo("gpt-4o-mini", 128000, 16384),
    "gpt-4o": ModelInfo("gpt-4o", 128000, 16384),
    "gpt-4": ModelInfo("gpt-4", 8192, 8192),
    "gpt-3.5-turbo": ModelInfo("gpt-3.5-turbo", 16385, 4096),
}

EMBEDDING_MODELS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIProvider:
    """Handles OpenAI embeddings and chat completions."""

    name = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        embedding_model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the provider with an OpenAI client.

        Args:
            api_key: OpenAI API key. If None,
                reads from OPENAI_API_KEY environment variable.
            embedding_model: Default embedding model. If None, uses
                config.EMBEDDING_MODEL.
            timeout: Seconds allowed per request. If None, uses
                config.PROVIDER_TIMEOUT.
        """
        self.api_key = api_key or config.get_openai_api_key()
        default_headers = config.get_api_headers()
        self.client = OpenAI(
            api_key=self.api_key,
            base_url=config.OPENAI_BASE_URL,
            default_headers=default_headers or None,
        )
        self.default_embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.timeout = timeout if timeout is not None else config.PROVIDER_TIMEOUT

    def is_configured(self) -> bool:
        """Check whether an API key is available.

        Returns:
            True if requests can be authenticated.
        """
        return bool(self.api_key)

    def available_models(self) -> list[str]:  # noqa: PLR6301
        """Chat models with known metadata.

        Returns:
            Model identifiers in catalog order.
        """
        return list(CHAT_MODELS)

    def _require_configured(self) -> None:
        if not self.is_configured():
            msg = "OpenAI provider requires OPENAI_API_KEY"
            raise NotConfiguredError(msg)

    def generate_embedding(self, text: str, model: str | None = None) -> np.ndarray:
        """Get embedding for a single text.

        Args:
            text: The input text to generate an embedding for.
            model: Embedding model; defaults to the provider default.

        Returns:
            np.ndarray: The embedding vector for the input text.

        Raises:
            ProviderUnavailableError: If the API call fails or times out.
        """
        self._require_configured()
        try:
            response = self.client.embeddings.create(
                model=model or self.default_embedding_model,
                input=text,
                timeout=self.timeout,
            )
        except OpenAIError as exc:
            logger.exception("Error generating embedding")
            msg = f"OpenAI embedding request failed: {exc}"
            raise ProviderUnavailableError(msg) from exc

        data = getattr(response, "data", None)
        if not isinstance(data, list) or not data:
            msg = "OpenAI returned no embedding"
            raise ProviderUnavailableError(msg)
        try:
            embedding = np.asarray(data[0].embedding, dtype=np.float64)
        except (AttributeError, TypeError, ValueError) as exc:
            msg = f"OpenAI returned a malformed embedding: {exc}"
            raise ProviderUnavailableError(msg) from exc
        if embedding.ndim != 1 or embedding.size == 0:
            msg = "OpenAI returned a malformed embedding"
            raise ProviderUnavailableError(msg)
        return embedding

    def complete(
        self,
        messages: list[ChatMessage],
        options: CompletionOptions,
    ) -> Completion:
        """Run a chat completion.

        Returns:
            Normalized completion with content, usage and finish reason.

        Raises:
            ProviderUnavailableError: If the API call fails or times out.
        """
        self._require_configured()
        try:
            response = self.client.chat.completions.create(
                model=options.model,
                messages=[
                    {"role": message.role, "content": message.content}
                    for message in messages
                ],
                max_tokens=options.max_tokens,
                temperature=options.temperature,
                timeout=options.timeout if options.timeout is not None else self.timeout,
            )
        except OpenAIError as exc:
            logger.warning("OpenAI chat completion failed: %s", exc)
            msg = f"OpenAI completion request failed: {exc}"
            raise ProviderUnavailableError(msg) from exc

        choices = getattr(response, "choices", None)
        if not isinstance(choices, list) or not choices:
            msg = "OpenAI returned no completion choices"
            raise ProviderUnavailableError(msg)
        choice = choices[0]
        content = getattr(getattr(choice, "message", None), "content", None)
        if content is not None and not isinstance(content, str):
            msg = "OpenAI returned an invalid completion message"
            raise ProviderUnavailableError(msg)

        usage = getattr(response, "usage", None)
        finish_reason = getattr(choice, "finish_reason", None)
        return Completion(
            content=(content or "").strip(),
            model=options.model,
            usage=TokenUsage.from_counts(
                getattr(usage, "prompt_tokens", 0),
                getattr(usage, "completion_tokens", 0),
            ),
            finish_reason=finish_reason if isinstance(finish_reason, str) else None,
        )

    def get_model_info(self, model: str) -> ModelInfo:  # noqa: PLR6301
        """Look up context window metadata for a chat model.

        Dated snapshots such as ``gpt-4o-mini-2024-07-18`` resolve to the
        longest catalog entry they start with.

        Returns:
            ModelInfo for the model.

        Raises:
            ProviderUnavailableError: If the model is not in the catalog.
        """
        if model in CHAT_MODELS:
            return CHAT_MODELS[model]
        prefixes = sorted(
            (name for name in CHAT_MODELS if model.startswith(name)),
            key=len,
            reverse=True,
        )
        if prefixes:
            return CHAT_MODELS[prefixes[0]]
        msg = f"Unknown OpenAI model: {model}"
        raise ProviderUnavailableError(msg)
