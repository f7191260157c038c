"""Shared provider and task types for AI orchestration."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ProviderKind(str, Enum):
    """Upstream model vendors a tenant can connect."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


class TaskCategory(str, Enum):
    """Task categories with their own provider affinity."""
    GENERAL = "general"
    PLANNING = "planning"
    COACHING = "coaching"
    ANALYSIS = "analysis"
    CHART_INSIGHT = "chart_insight"
    IMAGE = "image"
    DEFAULT = "default"


class RequestKind(str, Enum):
    """Feature that issued an AI request, recorded in usage logs."""
    HOURLY_HEALTH = "hourly_health"
    DAILY_PLAN = "daily_plan"
    WEEKLY_REVIEW = "weekly_review"
    MONTHLY_FORECAST = "monthly_forecast"
    MISSION_CONTROL_QUERY = "mission_control_query"
    QUICK_ACTION = "quick_action"
    DEAL_INSIGHT = "deal_insight"


class ProviderErrorCode(str, Enum):
    """Classified reason a provider attempt failed."""
    INSUFFICIENT_QUOTA = "INSUFFICIENT_QUOTA"
    BILLING_REQUIRED = "BILLING_REQUIRED"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    AUTH_ERROR = "AUTH_ERROR"
    INVALID_KEY = "INVALID_KEY"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    CONTENT_POLICY = "CONTENT_POLICY"
    CONTEXT_LENGTH = "CONTEXT_LENGTH"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    SOFT_FAILURE = "SOFT_FAILURE"
    UNKNOWN = "UNKNOWN"


class FailureClass(str, Enum):
    """Coarse failure classes used for retry policy."""
    INVALID_CREDENTIAL = "invalid_credential"
    QUOTA_OR_RATE_LIMIT = "quota_or_rate_limit"
    TRANSIENT = "transient"
    PROVIDER_ERROR = "provider_error"


@dataclass(frozen=True)
class ProviderRecord:
    """One configured upstream connection for a tenant (read-only snapshot)."""
    id: str
    kind: ProviderKind
    active: bool = True
    model: Optional[str] = None


@dataclass
class ProviderFailure:
    """Why a single provider attempt failed."""
    provider: str
    code: ProviderErrorCode
    message: str
    retryable: bool = False
    status_code: Optional[int] = None
    latency_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "code": self.code.value,
            "message": self.message,
        }


@dataclass
class GenerationRequest:
    """Prompt and generation parameters passed to each provider."""
    prompt: str
    system_message: Optional[str] = None
    max_tokens: int = 1000
    temperature: float = 0.7
    extra: Dict[str, Any] = field(default_factory=dict)
