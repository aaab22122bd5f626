"""Tests for the OpenAI and Ollama providers and the provider registry."""

import json
import os
from unittest.mock import Mock, patch

import httpx
import numpy as np
import pytest
from openai import OpenAIError

from ragfunnel.errors import NotConfiguredError, ProviderUnavailableError
from ragfunnel.providers import (
    ChatMessage,
    CompletionOptions,
    OllamaProvider,
    OpenAIProvider,
    ProviderRegistry,
    default_registry,
)
from tests.conftest import (
    FakeProvider,
    TestConstants,
    create_mock_chat_response,
    create_mock_openai_response,
)

MESSAGES = [
    ChatMessage(role="system", content="You are terse."),
    ChatMessage(role="user", content="Rate this."),
]


@pytest.fixture
def openai_provider():
    return OpenAIProvider(
        api_key=TestConstants.TEST_API_KEY,
        embedding_model="text-embedding-3-small",
        timeout=5.0,
    )


def test_openai_provider_init(openai_provider):
    assert openai_provider.name == "openai"
    assert openai_provider.client.api_key == TestConstants.TEST_API_KEY
    assert openai_provider.default_embedding_model == "text-embedding-3-small"
    assert openai_provider.is_configured()


def test_openai_provider_reads_env_api_key():
    with patch.dict(os.environ, {"OPENAI_API_KEY": "env-key"}):
        provider = OpenAIProvider()

    assert provider.client.api_key == "env-key"


def test_openai_generate_embedding(openai_provider, openai_embeddings_api_mock):
    openai_embeddings_api_mock.return_value = create_mock_openai_response([[0.1, 0.2, 0.3]])

    result = openai_provider.generate_embedding("test text")

    openai_embeddings_api_mock.assert_called_once_with(
        model="text-embedding-3-small",
        input="test text",
        timeout=5.0,
    )
    assert result.dtype == np.float64
    np.testing.assert_array_equal(result, np.array([0.1, 0.2, 0.3]))


def test_openai_generate_embedding_with_model(openai_provider, openai_embeddings_api_mock):
    openai_embeddings_api_mock.return_value = create_mock_openai_response([[1.0]])

    openai_provider.generate_embedding("text", model="text-embedding-3-large")

    assert openai_embeddings_api_mock.call_args.kwargs["model"] == "text-embedding-3-large"


def test_openai_embedding_error(openai_provider, openai_embeddings_api_mock):
    openai_embeddings_api_mock.side_effect = OpenAIError("API Error")

    with pytest.raises(ProviderUnavailableError, match="API Error"):
        openai_provider.generate_embedding("test text")


def test_openai_not_configured(openai_embeddings_api_mock, openai_chat_api_mock):
    with patch.dict(os.environ, {}, clear=True):
        provider = OpenAIProvider(api_key="")

    assert not provider.is_configured()
    with pytest.raises(NotConfiguredError):
        provider.generate_embedding("text")
    with pytest.raises(NotConfiguredError):
        provider.complete(MESSAGES, CompletionOptions(model="gpt-4o-mini"))
    openai_embeddings_api_mock.assert_not_called()
    openai_chat_api_mock.assert_not_called()


def test_openai_complete(openai_provider, openai_chat_api_mock):
    openai_chat_api_mock.return_value = create_mock_chat_response("  0.75 \n")

    completion = openai_provider.complete(
        MESSAGES, CompletionOptions(model="gpt-4o-mini", temperature=0.0, max_tokens=10)
    )

    openai_chat_api_mock.assert_called_once_with(
        model="gpt-4o-mini",
        messages=[
            {"role": "system", "content": "You are terse."},
            {"role": "user", "content": "Rate this."},
        ],
        max_tokens=10,
        temperature=0.0,
        timeout=5.0,
    )
    assert completion.content == "0.75"
    assert completion.model == "gpt-4o-mini"
    assert completion.usage.total_tokens == 15
    assert completion.finish_reason == "stop"


def test_openai_complete_empty_content(openai_provider, openai_chat_api_mock):
    openai_chat_api_mock.return_value = create_mock_chat_response(None, "length")

    completion = openai_provider.complete(
        MESSAGES, CompletionOptions(model="gpt-4o-mini", timeout=1.5)
    )

    assert completion.content == ""
    assert completion.finish_reason == "length"
    assert openai_chat_api_mock.call_args.kwargs["timeout"] == 1.5


def test_openai_complete_error(openai_provider, openai_chat_api_mock):
    openai_chat_api_mock.side_effect = OpenAIError("rate limited")

    with pytest.raises(ProviderUnavailableError, match="rate limited"):
        openai_provider.complete(MESSAGES, CompletionOptions(model="gpt-4o-mini"))


def test_openai_embedding_without_data(openai_provider, openai_embeddings_api_mock):
    openai_embeddings_api_mock.return_value = create_mock_openai_response([])

    with pytest.raises(ProviderUnavailableError, match="no embedding"):
        openai_provider.generate_embedding("test text")


def test_openai_embedding_with_malformed_vector(openai_provider, openai_embeddings_api_mock):
    openai_embeddings_api_mock.return_value = create_mock_openai_response([["a", "b"]])

    with pytest.raises(ProviderUnavailableError, match="malformed embedding"):
        openai_provider.generate_embedding("test text")


def test_openai_complete_without_choices(openai_provider, openai_chat_api_mock):
    response = create_mock_chat_response("0.5")
    response.choices = []
    openai_chat_api_mock.return_value = response

    with pytest.raises(ProviderUnavailableError, match="no completion choices"):
        openai_provider.complete(MESSAGES, CompletionOptions(model="gpt-4o-mini"))


def test_openai_complete_ignores_non_integer_usage(openai_provider, openai_chat_api_mock):
    response = create_mock_chat_response("0.5")
    response.usage = Mock(prompt_tokens="12", completion_tokens=None)
    openai_chat_api_mock.return_value = response

    completion = openai_provider.complete(MESSAGES, CompletionOptions(model="gpt-4o-mini"))

    assert completion.content == "0.5"
    assert completion.usage.total_tokens == 0


@pytest.mark.parametrize(
    ("model", "context_window"),
    [
        ("gpt-4o-mini", 128000),
        ("gpt-4o-mini-2024-07-18", 128000),
        ("gpt-4", 8192),
        ("gpt-4-0613", 8192),
        ("gpt-3.5-turbo", 16385),
    ],
)
def test_openai_model_info(openai_provider, model, context_window):
    assert openai_provider.get_model_info(model).context_window == context_window


def test_openai_unknown_model(openai_provider):
    with pytest.raises(ProviderUnavailableError, match="Unknown OpenAI model"):
        openai_provider.get_model_info("claude-like-model")


def test_openai_available_models(openai_provider):
    models = openai_provider.available_models()

    assert "gpt-4o-mini" in models
    assert all(openai_provider.get_model_info(model) for model in models)


def ollama_with(handler) -> OllamaProvider:
    client = httpx.Client(
        transport=httpx.MockTransport(handler), base_url="http://ollama.test"
    )
    return OllamaProvider(
        base_url="http://ollama.test",
        chat_models=["llama3"],
        timeout=5.0,
        client=client,
    )


def test_ollama_generate_embedding():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"embedding": [0.5, 0.25]})

    provider = ollama_with(handler)
    result = provider.generate_embedding("hello")

    assert requests[0].url.path == "/api/embeddings"
    assert json.loads(requests[0].content) == {
        "model": "nomic-embed-text",
        "prompt": "hello",
    }
    np.testing.assert_array_equal(result, np.array([0.5, 0.25]))


def test_ollama_missing_embedding():
    provider = ollama_with(lambda request: httpx.Response(200, json={"embedding": []}))

    with pytest.raises(ProviderUnavailableError, match="no embedding"):
        provider.generate_embedding("hello")


@pytest.mark.parametrize(
    "embedding", [["x", "y"], [[0.1], [0.2]], "0.1,0.2"]
)
def test_ollama_malformed_embedding(embedding):
    provider = ollama_with(lambda request: httpx.Response(200, json={"embedding": embedding}))

    with pytest.raises(ProviderUnavailableError):
        provider.generate_embedding("hello")


def test_ollama_complete():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "message": {"role": "assistant", "content": " 0.6 "},
                "prompt_eval_count": 20,
                "eval_count": 2,
                "done_reason": "stop",
            },
        )

    provider = ollama_with(handler)
    completion = provider.complete(
        MESSAGES, CompletionOptions(model="llama3", temperature=0.0, max_tokens=10)
    )

    assert seen["model"] == "llama3"
    assert seen["stream"] is False
    assert seen["options"] == {"temperature": 0.0, "num_predict": 10}
    assert seen["messages"][1] == {"role": "user", "content": "Rate this."}
    assert completion.content == "0.6"
    assert completion.usage.prompt_tokens == 20
    assert completion.usage.completion_tokens == 2
    assert completion.finish_reason == "stop"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": "model not loaded"}),
        httpx.Response(200, content=b"not json"),
        httpx.Response(200, json=["unexpected"]),
        httpx.Response(200, json={"message": {}}),
        httpx.Response(200, json={"message": "busy"}),
        httpx.Response(200, json={"message": None}),
    ],
)
def test_ollama_complete_failures(response):
    provider = ollama_with(lambda request: response)

    with pytest.raises(ProviderUnavailableError):
        provider.complete(MESSAGES, CompletionOptions(model="llama3"))


def test_ollama_connection_error():
    def handler(request: httpx.Request) -> httpx.Response:
        msg = "connection refused"
        raise httpx.ConnectError(msg, request=request)

    with pytest.raises(ProviderUnavailableError, match="connection refused"):
        ollama_with(handler).generate_embedding("hello")


def test_ollama_model_info():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"model_info": {"llama.context_length": 8192, "llama.vocab": 1}}
        )

    info = ollama_with(handler).get_model_info("llama3")

    assert info.name == "llama3"
    assert info.context_window == 8192


@pytest.mark.parametrize("payload", [{}, {"model_info": "n/a"}, {"model_info": None}])
def test_ollama_model_info_default_context(payload):
    provider = ollama_with(lambda request: httpx.Response(200, json=payload))
    info = provider.get_model_info("llama3")

    assert info.context_window == 2048


def test_ollama_is_configured_without_credentials():
    provider = ollama_with(lambda request: httpx.Response(200, json={}))

    assert provider.is_configured()
    assert provider.available_models() == ["llama3"]


def test_registry_creates_providers_lazily_once():
    created = []

    def factory():
        provider = FakeProvider()
        created.append(provider)
        return provider

    registry = ProviderRegistry()
    registry.register("Fake", factory)

    assert created == []
    first = registry.get("fake")
    second = registry.get("FAKE")

    assert first is second
    assert len(created) == 1
    assert registry.names() == ["fake"]


def test_registry_unknown_provider():
    with pytest.raises(NotConfiguredError, match="Unsupported AI provider"):
        ProviderRegistry().get("mystery")


def test_registry_rejects_unconfigured_provider():
    registry = ProviderRegistry()
    registry.register("fake", lambda: FakeProvider(configured=False))

    with pytest.raises(NotConfiguredError, match="not configured"):
        registry.get("fake")


def test_registry_defaults_to_configured_provider():
    registry = ProviderRegistry()
    provider = FakeProvider()
    registry.register("fake", lambda: provider)

    with patch("ragfunnel.providers.config.AI_PROVIDER", "fake"):
        assert registry.get() is provider


def test_default_registry_knows_builtin_backends():
    assert default_registry().names() == ["ollama", "openai"]
