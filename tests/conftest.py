"""Global test fixtures for the RevOps AI test suite."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import pytest

from revops_ai.core.interfaces import StaticServices
from revops_ai.core.usage_log import FireAndForgetUsageLogger, InMemoryUsageSink
from revops_ai.llm.base import BaseLLMProvider, LLMResponse
from revops_ai.llm.fallback_chain import FallbackChainConfig, FallbackChainExecutor
from revops_ai.llm.models import ProviderKind, ProviderRecord


# ==========================================
# Pytest Configuration
# ==========================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


# ==========================================
# Mock LLM Provider
# ==========================================

class MockProvider(BaseLLMProvider):
    """Scripted provider for chain tests.

    Args:
        name: Value stamped on responses
        response_content: Body returned by ``generate_content``
        error: Exception raised instead of answering
        delay: Seconds to sleep before answering
        chunks: Pieces yielded by ``stream_content``; defaults to the whole body
        fail_after_chunks: Raise ``error`` after this many streamed chunks
    """

    def __init__(
        self,
        name: str = "mock",
        response_content: str = "Mock response",
        error: Optional[BaseException] = None,
        delay: float = 0.0,
        chunks: Optional[Sequence[str]] = None,
        fail_after_chunks: Optional[int] = None,
    ):
        super().__init__({"api_key": "test-key", "model": f"{name}-model"})
        self.name = name
        self.response_content = response_content
        self.error = error
        self.delay = delay
        self.chunks = list(chunks) if chunks is not None else None
        self.fail_after_chunks = fail_after_chunks
        self.call_count = 0
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def generate_content(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        **kwargs
    ) -> LLMResponse:
        self.call_count += 1
        self.calls.append({"prompt": prompt, "max_tokens": max_tokens, **kwargs})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return LLMResponse(
            content=self.response_content,
            provider=self.name,
            model=self.model,
            tokens_in=10,
            tokens_out=20,
        )

    async def stream_content(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        **kwargs
    ):
        self.call_count += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None and self.fail_after_chunks is None:
            raise self.error
        pieces = self.chunks if self.chunks is not None else [self.response_content]
        for index, piece in enumerate(pieces):
            if self.fail_after_chunks is not None and index == self.fail_after_chunks:
                raise self.error
            yield piece

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    """Monotonic seconds under test control."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateClock:
    """Wall-clock datetimes under test control."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 6, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ==========================================
# Fixtures
# ==========================================

def records(*kinds: ProviderKind) -> List[ProviderRecord]:
    return [ProviderRecord(id=k.value, kind=k) for k in kinds]


@pytest.fixture
def all_records() -> List[ProviderRecord]:
    return records(ProviderKind.OPENAI, ProviderKind.ANTHROPIC, ProviderKind.GOOGLE)


@pytest.fixture
def ready_services(all_records) -> StaticServices:
    return StaticServices(providers=all_records)


@pytest.fixture
def usage_sink() -> InMemoryUsageSink:
    return InMemoryUsageSink()


@pytest.fixture
def usage_logger(usage_sink) -> FireAndForgetUsageLogger:
    return FireAndForgetUsageLogger(usage_sink)


@pytest.fixture
def chain_config() -> FallbackChainConfig:
    return FallbackChainConfig(request_timeout=0.2, stream_chunk_timeout=0.2)


@pytest.fixture
def make_executor(chain_config, usage_logger):
    """Build an executor over the given provider mocks."""

    def _make(providers: Dict[ProviderKind, BaseLLMProvider]) -> FallbackChainExecutor:
        return FallbackChainExecutor(providers, config=chain_config, usage_logger=usage_logger)

    return _make


@pytest.fixture
def date_clock() -> FakeDateClock:
    return FakeDateClock()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_provider():
    """Factory for ``MockProvider`` instances."""
    return MockProvider


@pytest.fixture
def make_records():
    """Factory for active provider records of the given kinds."""
    return records
