"""Prometheus metrics for RevOps AI."""

from __future__ import annotations

import logging

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

logger = logging.getLogger(__name__)


PROVIDER_ATTEMPTS = Counter(
    "revops_ai_provider_attempts_total",
    "Provider attempts by outcome",
    ["provider", "outcome"],
)

PROVIDER_LATENCY = Histogram(
    "revops_ai_provider_latency_seconds",
    "Provider call latency in seconds",
    ["provider"],
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 20, 30, 60),
)

CHAIN_EXHAUSTED = Counter(
    "revops_ai_chain_exhausted_total",
    "Requests where every provider in the chain failed",
    ["task"],
)

RATE_LIMITED = Counter(
    "revops_ai_rate_limited_total",
    "Requests rejected by the rate limiter",
    ["bucket"],
)

ESCALATIONS = Counter(
    "revops_ai_escalations_total",
    "Escalation signals emitted by category",
    ["category"],
)


def render_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
