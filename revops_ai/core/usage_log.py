"""AI usage logging.

Every provider attempt produces one append-only ``UsageLogEntry``. Writes are
fire-and-forget: a failing sink is logged and never affects the response.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Set

import redis.asyncio as redis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageLogEntry:
    """One provider attempt."""
    subject: str
    request_kind: str
    provider: str
    success: bool
    scope: Optional[str] = None
    model: Optional[str] = None
    tokens_in: int = 0
    tokens_out: int = 0
    latency_ms: Optional[float] = None
    error_code: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class UsageLogSink(Protocol):
    """Destination for usage entries."""

    async def append(self, entry: UsageLogEntry) -> None:
        ...


class LoggingUsageSink:
    """Writes usage entries to the application log."""

    def __init__(self, logger_name: str = "revops_ai.usage") -> None:
        self._logger = logging.getLogger(logger_name)

    async def append(self, entry: UsageLogEntry) -> None:
        self._logger.info(
            f"usage subject={entry.subject} kind={entry.request_kind} provider={entry.provider} "
            f"model={entry.model} success={entry.success} error={entry.error_code} "
            f"tokens_in={entry.tokens_in} tokens_out={entry.tokens_out} latency_ms={entry.latency_ms}"
        )


class InMemoryUsageSink:
    """Keeps entries in a list."""

    def __init__(self) -> None:
        self.entries: List[UsageLogEntry] = []

    async def append(self, entry: UsageLogEntry) -> None:
        self.entries.append(entry)


class RedisUsageSink:
    """Pushes usage entries as JSON onto a capped Redis list."""

    def __init__(self, redis_url: str, namespace: str = "revops_ai", max_entries: int = 100000) -> None:
        self.redis_url = redis_url
        self.namespace = namespace
        self.max_entries = max_entries
        self._client: Optional[redis.Redis] = None

    @classmethod
    def from_env(cls) -> Optional["RedisUsageSink"]:
        redis_url = os.getenv("REDIS_URL")
        if not redis_url:
            return None
        return cls(redis_url)

    async def connect(self) -> None:
        if self._client is None:
            self._client = redis.from_url(self.redis_url, decode_responses=True)
            await self._client.ping()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    def _key(self) -> str:
        return f"{self.namespace}:usage"

    async def append(self, entry: UsageLogEntry) -> None:
        if not self._client:
            raise RuntimeError("Usage sink is not connected")

        async with self._client.pipeline(transaction=True) as pipe:
            pipe.lpush(self._key(), json.dumps(entry.to_dict()))
            pipe.ltrim(self._key(), 0, self.max_entries - 1)
            await pipe.execute()


class FireAndForgetUsageLogger:
    """Schedules sink writes without blocking the caller."""

    def __init__(self, sink: UsageLogSink) -> None:
        self.sink = sink
        self._pending: Set[asyncio.Task] = set()
        self.failures = 0

    def log(self, entry: UsageLogEntry) -> None:
        task = asyncio.get_running_loop().create_task(self._write(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, entry: UsageLogEntry) -> None:
        try:
            await self.sink.append(entry)
        except Exception as e:
            self.failures += 1
            logger.error(f"Failed to write usage entry for provider '{entry.provider}': {e}")

    async def drain(self) -> None:
        """Wait for every scheduled write to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
