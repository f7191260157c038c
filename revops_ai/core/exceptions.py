"""Orchestration-level exceptions.

Provider failures never reach this layer as exceptions; these cover the
conditions a caller has to act on.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .rate_limiter import RateLimitDecision


class OrchestrationError(Exception):
    """Base orchestration error."""
    code = "ORCHESTRATION_ERROR"


class InvalidTaskRequestError(OrchestrationError):
    """Malformed task request, rejected before any provider is called."""
    code = "INVALID_REQUEST"


class SessionError(OrchestrationError):
    """Session missing or expired; the caller must re-authenticate."""
    code = "SESSION_ERROR"

    def __init__(self, message: str = "Session is not valid", reason: Optional[str] = None):
        self.reason = reason
        super().__init__(message)


class InfrastructureError(OrchestrationError):
    """A required backing service (rate-limit store, provider registry) is unreachable."""
    code = "INFRASTRUCTURE_ERROR"


class RateLimitExceededError(OrchestrationError):
    """Request blocked by a usage window."""
    code = "AI_LIMIT_REACHED"

    def __init__(self, decision: "RateLimitDecision"):
        self.decision = decision
        super().__init__(decision.message or "Rate limit exceeded")
