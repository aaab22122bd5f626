"""Ollama-backed provider using the local HTTP API."""

from __future__ import annotations

import httpx
import numpy as np

from ragfunnel.config import config
from ragfunnel.errors import ProviderUnavailableError

from .base import ChatMessage, Completion, CompletionOptions, ModelInfo, TokenUsage

logger = config.get_logger(__name__)

DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"
DEFAULT_CONTEXT_LENGTH = 2048


class OllamaProvider:
    """Embeddings and chat completions served by an Ollama instance."""

    name = "ollama"

    def __init__(
        self,
        base_url: str | None = None,
        embedding_model: str | None = None,
        chat_models: list[str] | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.default_embedding_model = embedding_model or DEFAULT_EMBEDDING_MODEL
        self.chat_models = chat_models or [config.CHAT_MODEL]
        self.timeout = timeout if timeout is not None else config.PROVIDER_TIMEOUT
        self.client = client or httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=config.get_api_headers(),
        )

    def is_configured(self) -> bool:
        """Ollama needs no credentials, only a reachable base URL."""
        return bool(self.base_url)

    def available_models(self) -> list[str]:
        return list(self.chat_models)

    def _post(self, path: str, payload: dict, timeout: float | None = None) -> dict:
        try:
            response = self.client.post(
                path,
                json=payload,
                timeout=timeout if timeout is not None else self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Ollama request to %s failed: %s", path, exc)
            msg = f"Ollama request to {path} failed: {exc}"
            raise ProviderUnavailableError(msg) from exc
        if not isinstance(data, dict):
            msg = f"Ollama returned an unexpected payload for {path}"
            raise ProviderUnavailableError(msg)
        return data

    def generate_embedding(self, text: str, model: str | None = None) -> np.ndarray:
        """Embed ``text`` with the Ollama embeddings endpoint.

        Returns:
            Embedding vector as float64.

        Raises:
            ProviderUnavailableError: If the request fails or returns no vector.
        """
        data = self._post(
            "/api/embeddings",
            {"model": model or self.default_embedding_model, "prompt": text},
        )
        embedding = data.get("embedding")
        if not isinstance(embedding, list) or not embedding:
            msg = "Ollama returned no embedding"
            raise ProviderUnavailableError(msg)
        try:
            vector = np.asarray(embedding, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            msg = f"Ollama returned a malformed embedding: {exc}"
            raise ProviderUnavailableError(msg) from exc
        if vector.ndim != 1:
            msg = "Ollama returned a malformed embedding"
            raise ProviderUnavailableError(msg)
        return vector

    def complete(
        self,
        messages: list[ChatMessage],
        options: CompletionOptions,
    ) -> Completion:
        """Run a non-streaming chat completion.

        Returns:
            Normalized completion.

        Raises:
            ProviderUnavailableError: If the request fails or has no content.
        """
        payload = {
            "model": options.model,
            "messages": [
                {"role": message.role, "content": message.content}
                for message in messages
            ],
            "stream": False,
            "options": {
                "temperature": options.temperature,
                "num_predict": options.max_tokens,
            },
        }
        data = self._post("/api/chat", payload, timeout=options.timeout)
        message = data.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            msg = "Ollama returned an invalid chat response"
            raise ProviderUnavailableError(msg)
        finish_reason = data.get("done_reason")
        return Completion(
            content=content.strip(),
            model=options.model,
            usage=TokenUsage.from_counts(
                data.get("prompt_eval_count"), data.get("eval_count")
            ),
            finish_reason=finish_reason if isinstance(finish_reason, str) else None,
        )

    def get_model_info(self, model: str) -> ModelInfo:
        """Read the model's context length from ``/api/show``.

        Returns:
            ModelInfo; the context window falls back to 2048 tokens when the
            server does not report one.
        """
        data = self._post("/api/show", {"model": model})
        model_info = data.get("model_info")
        if not isinstance(model_info, dict):
            model_info = {}
        context_length = DEFAULT_CONTEXT_LENGTH
        for key, value in model_info.items():
            if key.endswith(".context_length") and isinstance(value, int):
                context_length = value
                break
        return ModelInfo(name=model, context_window=context_length, max_tokens=context_length)
