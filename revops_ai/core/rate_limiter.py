"""Windowed rate limiting for AI requests.

Counters are keyed by (subject, scope, bucket, window_start, window_seconds)
where ``window_start`` is the current time floored to the window size. Every
gated attempt increments the counter for each window in its group. The
increment is a single atomic operation in the backing store (never a read
followed by a write) so concurrent requests cannot lose updates.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import asyncpg
import redis.asyncio as redis
from redis.exceptions import RedisError

from ..config.loader import RateLimitBackendConfig
from ..metrics import RATE_LIMITED
from .exceptions import InfrastructureError, RateLimitExceededError

logger = logging.getLogger(__name__)

ORG_WIDE_SUBJECT = "*"


# ============================================================================
# Buckets
# ============================================================================


@dataclass(frozen=True)
class RateLimitBucket:
    """One limit over one window."""
    bucket: str
    window_seconds: int
    limit: int
    description: str
    per_scope: bool = False


AI_GENERIC_PER_MINUTE = RateLimitBucket("ai.generic", 60, 20, "AI requests per minute")
AI_GENERIC_PER_HOUR = RateLimitBucket("ai.generic", 3600, 200, "AI requests per hour")
AI_GENERIC_PER_DAY = RateLimitBucket("ai.generic", 86400, 1000, "AI requests per day")
PLAN_MY_DAY_PER_USER = RateLimitBucket(
    "ai.plan_my_day", 86400, 5, "Plan My Day runs per day (per user)"
)
PLAN_MY_DAY_PER_ORG = RateLimitBucket(
    "ai.plan_my_day_org", 86400, 20, "Plan My Day runs per day (per organization)", per_scope=True
)
AI_INSIGHTS_PER_HOUR = RateLimitBucket("ai.insights", 3600, 30, "AI Insights requests per hour")
AI_INSIGHTS_PER_DAY = RateLimitBucket("ai.insights", 86400, 100, "AI Insights requests per day")

RATE_LIMIT_GROUPS: Dict[str, Tuple[RateLimitBucket, ...]] = {
    "ai_generic": (AI_GENERIC_PER_MINUTE, AI_GENERIC_PER_HOUR, AI_GENERIC_PER_DAY),
    "plan_my_day": (PLAN_MY_DAY_PER_USER, PLAN_MY_DAY_PER_ORG),
    "ai_insights": (AI_INSIGHTS_PER_HOUR, AI_INSIGHTS_PER_DAY),
    "plan_my_day_with_generic": (
        PLAN_MY_DAY_PER_USER,
        PLAN_MY_DAY_PER_ORG,
        AI_GENERIC_PER_MINUTE,
        AI_GENERIC_PER_HOUR,
        AI_GENERIC_PER_DAY,
    ),
}


def window_start_for(now: datetime, window_seconds: int) -> int:
    """Floor a timestamp to the start of its window (epoch seconds)."""
    epoch = int(now.timestamp())
    return epoch - (epoch % window_seconds)


def retry_after_seconds(bucket: RateLimitBucket, now: datetime) -> int:
    """Seconds a caller should wait before trying again."""
    if bucket.window_seconds <= 60:
        return 30
    if bucket.window_seconds <= 3600:
        return 300
    now = now.astimezone(timezone.utc)
    midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return max(1, int((midnight - now).total_seconds() + 0.999))


def rate_limit_message(bucket: RateLimitBucket) -> str:
    return f"You've reached the limit of {bucket.limit} {bucket.description}. Please try again later."


# ============================================================================
# Stores
# ============================================================================


class RateLimitStore(Protocol):
    """Persistent counter store with an atomic increment."""

    async def increment_and_get(
        self, subject: str, scope: str, bucket: str, window_start: int, window_seconds: int
    ) -> int:
        ...

    async def get_count(
        self, subject: str, scope: str, bucket: str, window_start: int, window_seconds: int
    ) -> int:
        ...

    async def cleanup(self, before: int) -> int:
        ...


CounterKey = Tuple[str, str, str, int, int]


class InMemoryRateLimitStore:
    """Process-local store for tests and single-process deployments."""

    def __init__(self) -> None:
        self._counts: Dict[CounterKey, int] = {}
        self._lock = asyncio.Lock()

    async def increment_and_get(
        self, subject: str, scope: str, bucket: str, window_start: int, window_seconds: int
    ) -> int:
        key = (subject, scope, bucket, window_start, window_seconds)
        async with self._lock:
            self._counts[key] = self._counts.get(key, 0) + 1
            return self._counts[key]

    async def get_count(
        self, subject: str, scope: str, bucket: str, window_start: int, window_seconds: int
    ) -> int:
        return self._counts.get((subject, scope, bucket, window_start, window_seconds), 0)

    async def cleanup(self, before: int) -> int:
        async with self._lock:
            stale = [k for k in self._counts if k[3] + k[4] <= before]
            for key in stale:
                del self._counts[key]
        return len(stale)


class RedisRateLimitStore:
    """Counters as Redis integers with window-length expiry."""

    def __init__(self, redis_url: str, namespace: str = "revops_ai:ratelimit") -> None:
        self.redis_url = redis_url
        self.namespace = namespace
        self._client: Optional[redis.Redis] = None

    @classmethod
    def from_env(cls) -> Optional["RedisRateLimitStore"]:
        redis_url = os.getenv("REDIS_URL")
        if not redis_url:
            return None
        return cls(redis_url)

    async def connect(self) -> None:
        if self._client is None:
            self._client = redis.from_url(self.redis_url, decode_responses=True)
            try:
                await self._client.ping()
            except RedisError as e:
                raise InfrastructureError(f"Rate-limit store unreachable: {e}") from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    def _key(self, subject: str, scope: str, bucket: str, window_start: int, window_seconds: int) -> str:
        return f"{self.namespace}:{bucket}:{window_seconds}:{window_start}:{scope}:{subject}"

    async def increment_and_get(
        self, subject: str, scope: str, bucket: str, window_start: int, window_seconds: int
    ) -> int:
        if not self._client:
            raise RuntimeError("Rate-limit store is not connected")

        key = self._key(subject, scope, bucket, window_start, window_seconds)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, window_seconds + 60)
                count, _ = await pipe.execute()
        except RedisError as e:
            raise InfrastructureError(f"Rate-limit store unreachable: {e}") from e
        return int(count)

    async def get_count(
        self, subject: str, scope: str, bucket: str, window_start: int, window_seconds: int
    ) -> int:
        if not self._client:
            raise RuntimeError("Rate-limit store is not connected")
        try:
            value = await self._client.get(self._key(subject, scope, bucket, window_start, window_seconds))
        except RedisError as e:
            raise InfrastructureError(f"Rate-limit store unreachable: {e}") from e
        return int(value or 0)

    async def cleanup(self, before: int) -> int:
        # Keys expire on their own.
        return 0


RATE_LIMITS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS rate_limits (
    user_id TEXT NOT NULL,
    organization_id TEXT NOT NULL,
    bucket VARCHAR(100) NOT NULL,
    window_start BIGINT NOT NULL,
    window_seconds INTEGER NOT NULL,
    count INTEGER NOT NULL DEFAULT 0,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,

    CONSTRAINT unique_rate_limit_window
        UNIQUE (user_id, organization_id, bucket, window_start, window_seconds)
);

CREATE INDEX IF NOT EXISTS idx_rate_limits_window_end
    ON rate_limits ((window_start + window_seconds));
"""

UPSERT_INCREMENT_SQL = """
INSERT INTO rate_limits (user_id, organization_id, bucket, window_start, window_seconds, count)
VALUES ($1, $2, $3, $4, $5, 1)
ON CONFLICT (user_id, organization_id, bucket, window_start, window_seconds)
DO UPDATE SET count = rate_limits.count + 1, updated_at = CURRENT_TIMESTAMP
RETURNING count
"""


class PostgresRateLimitStore:
    """Counters in a shared ``rate_limits`` table via asyncpg."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool
        self._initialized = False

    @classmethod
    async def create(
        cls,
        database_url: Optional[str] = None,
        min_connections: int = 2,
        max_connections: int = 10,
    ) -> "PostgresRateLimitStore":
        """Create a store with its own connection pool and ensure the table exists."""
        url = database_url or os.getenv("DATABASE_URL")
        if not url:
            raise ValueError("Database URL required. Provide database_url or set DATABASE_URL env var")

        try:
            pool = await asyncpg.create_pool(url, min_size=min_connections, max_size=max_connections)
        except (OSError, asyncpg.PostgresError) as e:
            raise InfrastructureError(f"Rate-limit store unreachable: {e}") from e

        store = cls(pool)
        await store.initialize_schema()
        return store

    async def close(self) -> None:
        await self._pool.close()

    async def initialize_schema(self) -> None:
        if self._initialized:
            return
        async with self._pool.acquire() as conn:
            await conn.execute(RATE_LIMITS_TABLE_SQL)
        self._initialized = True
        logger.info("Rate-limit schema initialized")

    async def increment_and_get(
        self, subject: str, scope: str, bucket: str, window_start: int, window_seconds: int
    ) -> int:
        try:
            async with self._pool.acquire() as conn:
                count = await conn.fetchval(
                    UPSERT_INCREMENT_SQL, subject, scope, bucket, window_start, window_seconds
                )
        except (OSError, asyncpg.PostgresError) as e:
            raise InfrastructureError(f"Rate-limit store unreachable: {e}") from e
        return int(count)

    async def get_count(
        self, subject: str, scope: str, bucket: str, window_start: int, window_seconds: int
    ) -> int:
        try:
            async with self._pool.acquire() as conn:
                count = await conn.fetchval(
                    """
                    SELECT count FROM rate_limits
                    WHERE user_id = $1 AND organization_id = $2 AND bucket = $3
                      AND window_start = $4 AND window_seconds = $5
                    """,
                    subject, scope, bucket, window_start, window_seconds
                )
        except (OSError, asyncpg.PostgresError) as e:
            raise InfrastructureError(f"Rate-limit store unreachable: {e}") from e
        return int(count or 0)

    async def cleanup(self, before: int) -> int:
        async with self._pool.acquire() as conn:
            result = await conn.execute(
                "DELETE FROM rate_limits WHERE window_start + window_seconds <= $1", before
            )
        # asyncpg returns a status string such as "DELETE 3"
        return int(result.split()[-1])


async def create_rate_limit_store(config: RateLimitBackendConfig) -> RateLimitStore:
    """Build the configured store."""
    if config.backend == "redis":
        if not config.redis_url:
            raise InfrastructureError("Redis rate limiting selected but no REDIS_URL configured")
        store = RedisRateLimitStore(config.redis_url, namespace=config.key_prefix)
        await store.connect()
        return store
    if config.backend == "postgres":
        return await PostgresRateLimitStore.create(config.database_url)
    if config.backend != "memory":
        logger.warning(f"Unknown rate-limit backend '{config.backend}', using in-memory store")
    return InMemoryRateLimitStore()


# ============================================================================
# Limiter
# ============================================================================


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    bucket: Optional[str] = None
    limit: Optional[int] = None
    count: Optional[int] = None
    remaining: Optional[int] = None
    window_seconds: Optional[int] = None
    retry_after_seconds: Optional[int] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "allowed": self.allowed,
            "bucket": self.bucket,
            "limit": self.limit,
            "remaining": self.remaining,
            "window_seconds": self.window_seconds,
            "retry_after_seconds": self.retry_after_seconds,
            "message": self.message,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    """Checks and records attempts against a group of windows."""

    def __init__(
        self,
        store: RateLimitStore,
        groups: Optional[Dict[str, Sequence[RateLimitBucket]]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._groups = dict(groups or RATE_LIMIT_GROUPS)
        self._clock = clock

    def buckets_for(self, group: str) -> Sequence[RateLimitBucket]:
        try:
            return self._groups[group]
        except KeyError:
            raise ValueError(f"Unknown rate-limit group '{group}'") from None

    async def check(self, subject: str, scope: str, group: str = "ai_generic") -> RateLimitDecision:
        """Record one attempt in every window of the group.

        Returns:
            An allowed decision with the tightest remaining headroom, or a
            denied decision for the breached window with the longest wait

        Raises:
            InfrastructureError: If the store is unreachable
        """
        now = self._clock()
        allowed: List[RateLimitDecision] = []
        denied: List[RateLimitDecision] = []

        for bucket in self.buckets_for(group):
            bucket_subject = ORG_WIDE_SUBJECT if bucket.per_scope else subject
            count = await self._store.increment_and_get(
                bucket_subject,
                scope,
                bucket.bucket,
                window_start_for(now, bucket.window_seconds),
                bucket.window_seconds,
            )
            decision = RateLimitDecision(
                allowed=count <= bucket.limit,
                bucket=bucket.bucket,
                limit=bucket.limit,
                count=count,
                remaining=max(0, bucket.limit - count),
                window_seconds=bucket.window_seconds,
            )
            if decision.allowed:
                allowed.append(decision)
            else:
                denied.append(RateLimitDecision(
                    allowed=False,
                    bucket=bucket.bucket,
                    limit=bucket.limit,
                    count=count,
                    remaining=0,
                    window_seconds=bucket.window_seconds,
                    retry_after_seconds=retry_after_seconds(bucket, now),
                    message=rate_limit_message(bucket),
                ))

        if denied:
            worst = max(denied, key=lambda d: d.retry_after_seconds or 0)
            RATE_LIMITED.labels(bucket=worst.bucket).inc()
            logger.warning(
                f"Rate limit hit for subject={subject} scope={scope} bucket={worst.bucket} "
                f"window={worst.window_seconds}s count={worst.count}/{worst.limit}"
            )
            return worst

        if not allowed:
            return RateLimitDecision(allowed=True)
        return min(allowed, key=lambda d: d.remaining if d.remaining is not None else 0)

    async def enforce(self, subject: str, scope: str, group: str = "ai_generic") -> RateLimitDecision:
        """Like ``check`` but raises when the attempt is not allowed."""
        decision = await self.check(subject, scope, group)
        if not decision.allowed:
            raise RateLimitExceededError(decision)
        return decision
