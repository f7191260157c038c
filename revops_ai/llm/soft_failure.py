"""Soft-failure detection for provider responses.

Upstream providers sometimes answer with a successful transport status while
the body only describes an error ("check your API key", "quota exceeded").
Every response is checked against a versioned phrase list before it is
accepted. The phrase list is data: it can be replaced from configuration
without touching the matching logic.
"""

import json
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from ..config.loader import SoftFailureConfig

logger = logging.getLogger(__name__)


DEFAULT_PHRASES_VERSION = "2025.12"

DEFAULT_SOFT_FAILURE_PHRASES: Tuple[str, ...] = (
    # Connectivity
    "i'm unable to connect",
    "unable to connect to",
    # Credentials and billing
    "api key needs credits",
    "api key needs permissions",
    "check your api key",
    "verify your api key",
    "no credits",
    "insufficient credits",
    "permission denied",
    "not authorized",
    "invalid api key",
    "authentication failed",
    # Limits
    "rate limit exceeded",
    "quota exceeded",
    # Availability
    "model is currently overloaded",
    "currently experiencing high demand",
    "please try again later",
    "service temporarily unavailable",
    "server is busy",
    "capacity limit",
)

DEFAULT_SCAN_LIMIT = 500


@dataclass(frozen=True)
class SoftFailurePhrases:
    """A versioned, lower-cased phrase list."""
    version: str
    phrases: Tuple[str, ...]

    @classmethod
    def default(cls) -> "SoftFailurePhrases":
        return cls(version=DEFAULT_PHRASES_VERSION, phrases=DEFAULT_SOFT_FAILURE_PHRASES)

    @classmethod
    def from_iterable(cls, phrases: Iterable[str], version: str = "custom") -> "SoftFailurePhrases":
        cleaned: List[str] = []
        for phrase in phrases:
            normalized = phrase.strip().lower()
            if normalized and normalized not in cleaned:
                cleaned.append(normalized)
        return cls(version=version, phrases=tuple(cleaned))


@dataclass(frozen=True)
class SoftFailureResult:
    """Outcome of classifying a response body."""
    is_failure: bool
    pattern: Optional[str] = None
    reason: Optional[str] = None


NOT_A_FAILURE = SoftFailureResult(is_failure=False)


class SoftFailureClassifier:
    """Case-insensitive phrase matcher over response bodies.

    Only the first ``scan_limit`` characters are inspected. Provider error
    bodies put the error up front, while long legitimate answers may quote
    these phrases further down (a coaching answer explaining quota limits,
    for example). ``scan_limit=None`` inspects the whole body.
    """

    def __init__(
        self,
        phrases: Optional[SoftFailurePhrases] = None,
        scan_limit: Optional[int] = DEFAULT_SCAN_LIMIT,
    ):
        self.phrases = phrases or SoftFailurePhrases.default()
        self.scan_limit = scan_limit

    @classmethod
    def from_config(cls, config: SoftFailureConfig) -> "SoftFailureClassifier":
        if config.phrases:
            phrases = SoftFailurePhrases.from_iterable(
                config.phrases, version=config.version or "custom"
            )
        else:
            phrases = SoftFailurePhrases.default()
        logger.info(f"Soft-failure phrases version={phrases.version} ({len(phrases.phrases)} phrases)")
        return cls(phrases=phrases, scan_limit=config.scan_limit)

    @property
    def version(self) -> str:
        return self.phrases.version

    def _window(self, text: str) -> str:
        if self.scan_limit is None:
            return text.lower()
        return text[:self.scan_limit].lower()

    def detect(self, text: Optional[str]) -> SoftFailureResult:
        """Classify a complete response body."""
        if not text:
            return NOT_A_FAILURE

        window = self._window(text)
        for phrase in self.phrases.phrases:
            if phrase in window:
                return SoftFailureResult(is_failure=True, pattern=phrase, reason="phrase")
        return NOT_A_FAILURE

    def is_soft_failure(self, text: Optional[str]) -> bool:
        return self.detect(text).is_failure

    def stream_detector(self) -> "StreamingSoftFailureDetector":
        return StreamingSoftFailureDetector(self)


class StreamingSoftFailureDetector:
    """Incremental detector for streamed responses.

    ``feed`` fails fast once a phrase shows up inside the scan window or the
    stream opens with a JSON error envelope. ``finish`` classifies the full
    accumulated text.
    """

    def __init__(self, classifier: SoftFailureClassifier):
        self._classifier = classifier
        self._parts: List[str] = []
        self._length = 0
        self._result: Optional[SoftFailureResult] = None

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed(self, chunk: str) -> SoftFailureResult:
        if self._result is not None:
            return self._result

        self._parts.append(chunk)
        self._length += len(chunk)

        limit = self._classifier.scan_limit
        if limit is None or self._length - len(chunk) < limit:
            result = self._classifier.detect(self.text)
            if result.is_failure:
                self._result = result
                return result

        envelope = _error_envelope(self.text)
        if envelope:
            self._result = SoftFailureResult(is_failure=True, pattern=envelope, reason="error_envelope")
            return self._result

        return NOT_A_FAILURE

    def finish(self) -> SoftFailureResult:
        if self._result is not None:
            return self._result
        self._result = self._classifier.detect(self.text)
        return self._result


def _error_envelope(text: str) -> Optional[str]:
    """Return the error message if text is a JSON object with an "error" key."""
    stripped = text.lstrip()
    if not stripped.startswith("{"):
        return None
    try:
        payload = json.loads(stripped)
    except ValueError:
        return None
    if not isinstance(payload, dict) or "error" not in payload:
        return None
    error = payload["error"]
    if isinstance(error, dict):
        return str(error.get("message") or error.get("type") or "error")
    return str(error)


_default_classifier = SoftFailureClassifier()


def detect_soft_failure(text: Optional[str]) -> SoftFailureResult:
    """Classify text with the built-in phrase list."""
    return _default_classifier.detect(text)


def is_soft_failure(text: Optional[str]) -> bool:
    return _default_classifier.is_soft_failure(text)
