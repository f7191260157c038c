"""Unit tests for usage logging."""

import asyncio

import pytest

from revops_ai.core.usage_log import (
    FireAndForgetUsageLogger,
    InMemoryUsageSink,
    LoggingUsageSink,
    RedisUsageSink,
    UsageLogEntry,
)
from revops_ai.llm.exceptions import TransientProviderError
from revops_ai.llm.fallback_chain import AttemptContext
from revops_ai.llm.models import GenerationRequest, ProviderKind


class FailingSink:
    async def append(self, entry):
        raise ConnectionError("sink down")


class SlowSink(InMemoryUsageSink):
    async def append(self, entry):
        await asyncio.sleep(0.05)
        await super().append(entry)


def entry(**overrides):
    values = {"subject": "user-1", "request_kind": "quick_action", "provider": "openai", "success": True}
    values.update(overrides)
    return UsageLogEntry(**values)


class TestUsageLogger:

    @pytest.mark.asyncio
    async def test_writes_are_fire_and_forget(self):
        sink = SlowSink()
        usage = FireAndForgetUsageLogger(sink)

        usage.log(entry())
        assert sink.entries == []

        await usage.drain()
        assert len(sink.entries) == 1

    @pytest.mark.asyncio
    async def test_sink_failure_is_counted_not_raised(self):
        usage = FireAndForgetUsageLogger(FailingSink())
        usage.log(entry())
        await usage.drain()
        assert usage.failures == 1

    @pytest.mark.asyncio
    async def test_logging_sink(self, caplog):
        with caplog.at_level("INFO", logger="revops_ai.usage"):
            await LoggingUsageSink().append(entry(error_code="TIMEOUT", success=False))
        assert "error=TIMEOUT" in caplog.text

    def test_to_dict(self):
        data = entry(metadata={"task": "coaching"}).to_dict()
        assert data["provider"] == "openai"
        assert data["metadata"] == {"task": "coaching"}
        assert isinstance(data["timestamp"], str)

    def test_redis_sink_from_env(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        assert RedisUsageSink.from_env() is None
        monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
        assert RedisUsageSink.from_env().redis_url == "redis://localhost:6379/0"

    @pytest.mark.asyncio
    async def test_unconnected_redis_sink_raises(self):
        with pytest.raises(RuntimeError):
            await RedisUsageSink("redis://localhost:6379/0").append(entry())


class TestChainUsageEntries:

    @pytest.mark.asyncio
    async def test_one_entry_per_attempt(self, make_executor, make_provider, usage_logger, usage_sink):
        executor = make_executor({
            ProviderKind.OPENAI: make_provider("openai", error=TransientProviderError("HTTP 503")),
            ProviderKind.ANTHROPIC: make_provider("anthropic", "Done."),
        })
        context = AttemptContext(subject="user-7", scope="org-1", request_kind="daily_plan", task="planning")

        await executor.execute([ProviderKind.OPENAI, ProviderKind.ANTHROPIC], GenerationRequest(prompt="hi"), context)
        await usage_logger.drain()

        assert [(e.provider, e.success, e.error_code) for e in usage_sink.entries] == [
            ("openai", False, "SERVICE_UNAVAILABLE"),
            ("anthropic", True, None),
        ]
        assert all(e.subject == "user-7" and e.request_kind == "daily_plan" for e in usage_sink.entries)
        assert usage_sink.entries[1].tokens_out == 20
