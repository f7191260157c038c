"""Unit tests for the hosted provider adapters and the provider manager."""

from unittest.mock import AsyncMock

import pytest

from revops_ai.config.loader import LLMProviderConfig
from revops_ai.llm.exceptions import (
    AuthenticationError,
    ProviderError,
    QuotaExceededError,
    RateLimitError,
    TransientProviderError,
)
from revops_ai.llm.manager import ProviderManager
from revops_ai.llm.models import ProviderKind
from revops_ai.llm.providers import (
    AnthropicProvider,
    GoogleProvider,
    OpenAIProvider,
    create_provider,
)


def events(*items):
    async def _stream(url, payload):
        for item in items:
            yield item
    return _stream


class TestStatusMapping:

    @pytest.mark.parametrize("status,body,expected", [
        (401, "bad key", AuthenticationError),
        (403, "forbidden", AuthenticationError),
        (429, "You exceeded your current quota", QuotaExceededError),
        (429, "slow down", RateLimitError),
        (503, "overloaded", TransientProviderError),
        (400, "bad request", ProviderError),
    ])
    def test_raise_for_status(self, status, body, expected):
        provider = OpenAIProvider({"api_key": "sk-test"})
        with pytest.raises(expected) as exc_info:
            provider._raise_for_status(status, body)
        assert exc_info.value.status_code == status
        assert exc_info.value.provider == "openai"


class TestOpenAIProvider:

    @pytest.mark.asyncio
    async def test_generate_content(self, monkeypatch):
        provider = OpenAIProvider({"api_key": "sk-test", "model": "gpt-4o-mini"})
        post = AsyncMock(return_value={
            "model": "gpt-4o-mini",
            "choices": [{"message": {"content": "Call Acme."}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 12, "completion_tokens": 3},
        })
        monkeypatch.setattr(provider, "_post_json", post)

        response = await provider.generate_content("Next step?", system_message="Be brief")

        assert response.content == "Call Acme."
        assert response.tokens_in == 12
        assert response.tokens_out == 3
        url, payload = post.call_args.args
        assert url == "https://api.openai.com/v1/chat/completions"
        assert payload["messages"][0] == {"role": "system", "content": "Be brief"}

    @pytest.mark.asyncio
    async def test_error_body(self, monkeypatch):
        provider = OpenAIProvider({"api_key": "sk-test"})
        monkeypatch.setattr(provider, "_post_json", AsyncMock(return_value={"error": {"message": "nope"}}))
        with pytest.raises(ProviderError):
            await provider.generate_content("hi")

    @pytest.mark.asyncio
    async def test_stream_content(self, monkeypatch):
        provider = OpenAIProvider({"api_key": "sk-test"})
        monkeypatch.setattr(provider, "_stream_events", events(
            {"choices": [{"delta": {"role": "assistant"}}]},
            {"choices": [{"delta": {"content": "Call "}}]},
            {"choices": [{"delta": {"content": "Acme."}}]},
        ))
        chunks = [c async for c in provider.stream_content("hi")]
        assert chunks == ["Call ", "Acme."]


class TestAnthropicProvider:

    @pytest.mark.asyncio
    async def test_generate_content(self, monkeypatch):
        provider = AnthropicProvider({"api_key": "sk-ant"})
        post = AsyncMock(return_value={
            "content": [{"type": "text", "text": "Ask about "}, {"type": "text", "text": "budget."}],
            "usage": {"input_tokens": 8, "output_tokens": 4},
            "stop_reason": "end_turn",
        })
        monkeypatch.setattr(provider, "_post_json", post)

        response = await provider.generate_content("Coach me", system_message="You are a coach")

        assert response.content == "Ask about budget."
        assert response.metadata["stop_reason"] == "end_turn"
        payload = post.call_args.args[1]
        assert payload["system"] == "You are a coach"
        assert provider._headers()["x-api-key"] == "sk-ant"

    @pytest.mark.asyncio
    async def test_stream_error_event(self, monkeypatch):
        provider = AnthropicProvider({"api_key": "sk-ant"})
        monkeypatch.setattr(provider, "_stream_events", events(
            {"type": "content_block_delta", "delta": {"text": "Hi"}},
            {"type": "error", "error": {"message": "overloaded_error"}},
        ))
        stream = provider.stream_content("hi")
        assert await stream.__anext__() == "Hi"
        with pytest.raises(ProviderError):
            await stream.__anext__()


class TestGoogleProvider:

    @pytest.mark.asyncio
    async def test_generate_content(self, monkeypatch):
        provider = GoogleProvider({"api_key": "g-key", "model": "gemini-1.5-flash"})
        post = AsyncMock(return_value={
            "candidates": [{"content": {"parts": [{"text": "Chart shows growth."}]}}],
            "usageMetadata": {"promptTokenCount": 5, "candidatesTokenCount": 4},
        })
        monkeypatch.setattr(provider, "_post_json", post)

        response = await provider.generate_content("Explain chart")

        assert response.content == "Chart shows growth."
        assert post.call_args.args[0].endswith("/models/gemini-1.5-flash:generateContent")


class TestProviderManager:

    def test_builds_enabled_providers_with_keys(self):
        manager = ProviderManager({
            "openai": LLMProviderConfig(api_key="sk-test"),
            "anthropic": LLMProviderConfig(api_key="sk-ant", enabled=False),
            "google": LLMProviderConfig(),
        })
        assert list(manager.providers) == [ProviderKind.OPENAI]
        assert isinstance(manager.providers[ProviderKind.OPENAI], OpenAIProvider)

    @pytest.mark.asyncio
    async def test_unknown_provider_fails_config_check(self):
        manager = ProviderManager({"mistral": LLMProviderConfig(api_key="x")})
        result = await manager.check_config()
        assert not result.ok
        assert result.code == "UNKNOWN_PROVIDER"

    @pytest.mark.asyncio
    async def test_health(self, make_provider):
        healthy = ProviderManager(providers={ProviderKind.OPENAI: make_provider("openai")})
        assert (await healthy.health_check()).ok

        empty = ProviderManager(providers={})
        assert not (await empty.health_check()).ok

    @pytest.mark.asyncio
    async def test_records_and_close(self, make_provider):
        provider = make_provider("google")
        manager = ProviderManager(providers={ProviderKind.GOOGLE: provider})

        records = await manager.list_active_providers("default")
        assert [(r.kind, r.model) for r in records] == [(ProviderKind.GOOGLE, "google-model")]

        await manager.close()
        assert provider.closed

    def test_factory(self):
        assert isinstance(create_provider("anthropic", {"api_key": "k"}), AnthropicProvider)
        with pytest.raises(ValueError):
            create_provider("mistral", {})
