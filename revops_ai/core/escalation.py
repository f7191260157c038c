"""Throttled escalation reporter.

Caps duplicate failure telemetry per category and raises one explicit
escalation signal when a window collects enough distinct failure codes. A
single repeating failure stays quiet after the cap; many different failures
in a short window are surfaced as a systemic problem.

State is process-local. Brief undercounting across processes is acceptable
because the reporter only suppresses noise and is not an accounting system.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Set, Tuple

from ..config.loader import EscalationConfig
from ..metrics import ESCALATIONS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryPolicy:
    """Throttle settings for one category."""
    max_per_window: int
    escalation_threshold: int
    window_seconds: float = 60.0


DEFAULT_POLICIES: Dict[str, CategoryPolicy] = {
    "invariant": CategoryPolicy(max_per_window=5, escalation_threshold=10),
    "ux_regression": CategoryPolicy(max_per_window=3, escalation_threshold=5),
    "auth_anomaly": CategoryPolicy(max_per_window=3, escalation_threshold=5),
    "session_error": CategoryPolicy(max_per_window=2, escalation_threshold=5),
    "blank_state": CategoryPolicy(max_per_window=3, escalation_threshold=5),
    "provider_failure": CategoryPolicy(max_per_window=5, escalation_threshold=3),
}

FALLBACK_POLICY = CategoryPolicy(max_per_window=5, escalation_threshold=10)


@dataclass
class EscalationCounter:
    """Per-category window state."""
    category: str
    window_start: float
    occurrences: Set[str] = field(default_factory=set)
    raw_count: int = 0
    suppressing: bool = False
    escalated: bool = False


@dataclass(frozen=True)
class TelemetryEvent:
    category: str
    code: str
    detail: Optional[Mapping[str, Any]] = None


@dataclass(frozen=True)
class EscalationSignal:
    category: str
    window_start: float
    distinct_codes: Tuple[str, ...]
    raw_count: int


@dataclass(frozen=True)
class ReportOutcome:
    forwarded: bool
    suppressed: bool
    escalated: bool


def _log_forward(event: TelemetryEvent) -> None:
    logger.warning(f"[{event.category}] {event.code} {dict(event.detail or {})}")


def _log_escalation(signal: EscalationSignal) -> None:
    logger.error(
        f"Escalation: category '{signal.category}' saw {len(signal.distinct_codes)} distinct codes "
        f"in {signal.raw_count} reports: {list(signal.distinct_codes)}"
    )


class EscalationReporter:
    """Rate-limits duplicate telemetry and emits escalation signals.

    Args:
        policies: Category policies; unknown categories use a fallback policy
        clock: Seconds source, injectable so tests control window rollover
        forward: Receives reports that pass the per-window cap
        escalate: Receives at most one signal per category per window
    """

    def __init__(
        self,
        policies: Optional[Mapping[str, CategoryPolicy]] = None,
        clock: Callable[[], float] = time.monotonic,
        forward: Optional[Callable[[TelemetryEvent], None]] = None,
        escalate: Optional[Callable[[EscalationSignal], None]] = None,
    ):
        self._policies: Dict[str, CategoryPolicy] = dict(DEFAULT_POLICIES)
        if policies:
            self._policies.update(policies)
        self._clock = clock
        self._forward = forward or _log_forward
        self._escalate = escalate or _log_escalation
        self._counters: Dict[str, EscalationCounter] = {}
        self._metrics = self._empty_metrics()

    @classmethod
    def from_config(cls, config: EscalationConfig, **kwargs: Any) -> "EscalationReporter":
        policies = {
            name: CategoryPolicy(
                max_per_window=c.max_per_window,
                escalation_threshold=c.escalation_threshold,
                window_seconds=c.window_seconds,
            )
            for name, c in config.categories.items()
        }
        return cls(policies=policies, **kwargs)

    @staticmethod
    def _empty_metrics() -> Dict[str, Any]:
        return {
            "total": 0,
            "forwarded": 0,
            "suppressed": 0,
            "suppression_transitions": 0,
            "escalated": 0,
            "unique_codes": set(),
        }

    def policy_for(self, category: str) -> CategoryPolicy:
        return self._policies.get(category, FALLBACK_POLICY)

    def _counter(self, category: str, policy: CategoryPolicy, now: float) -> EscalationCounter:
        counter = self._counters.get(category)
        if counter is None or now - counter.window_start >= policy.window_seconds:
            counter = EscalationCounter(category=category, window_start=now)
            self._counters[category] = counter
        return counter

    def report(self, category: str, code: str, detail: Optional[Mapping[str, Any]] = None) -> ReportOutcome:
        """Record one failure report and forward or suppress it."""
        policy = self.policy_for(category)
        counter = self._counter(category, policy, self._clock())

        already_escalated = counter.escalated
        counter.raw_count += 1
        counter.occurrences.add(code)
        self._metrics["total"] += 1
        self._metrics["unique_codes"].add(f"{category}:{code}")

        escalated = False
        if not counter.escalated and len(counter.occurrences) >= policy.escalation_threshold:
            counter.escalated = True
            escalated = True
            self._metrics["escalated"] += 1
            ESCALATIONS.labels(category=category).inc()
            self._escalate(EscalationSignal(
                category=category,
                window_start=counter.window_start,
                distinct_codes=tuple(sorted(counter.occurrences)),
                raw_count=counter.raw_count,
            ))

        suppressed = already_escalated or counter.raw_count > policy.max_per_window
        if suppressed:
            self._metrics["suppressed"] += 1
            if not counter.suppressing:
                counter.suppressing = True
                self._metrics["suppression_transitions"] += 1
                logger.info(
                    f"Suppressing further '{category}' reports until the window rolls over"
                )
            return ReportOutcome(forwarded=False, suppressed=True, escalated=escalated)

        self._metrics["forwarded"] += 1
        self._forward(TelemetryEvent(category=category, code=code, detail=detail))
        return ReportOutcome(forwarded=True, suppressed=False, escalated=escalated)

    def window_state(self, category: str) -> Optional[EscalationCounter]:
        return self._counters.get(category)

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "total": self._metrics["total"],
            "forwarded": self._metrics["forwarded"],
            "suppressed": self._metrics["suppressed"],
            "suppression_transitions": self._metrics["suppression_transitions"],
            "escalated": self._metrics["escalated"],
            "unique": len(self._metrics["unique_codes"]),
        }

    def reset(self) -> None:
        self._counters.clear()
        self._metrics = self._empty_metrics()
