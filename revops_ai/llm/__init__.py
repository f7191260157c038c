"""Provider integration for RevOps AI.

This package provides:
- Provider abstraction layer (OpenAI, Anthropic, Google)
- Task-aware fallback chain selection
- Sequential fallback chain execution
- Soft-failure and provider error classification
"""

from .base import BaseLLMProvider, LLMResponse
from .exceptions import (
    AllProvidersFailedError,
    AuthenticationError,
    FallbackChainError,
    LLMError,
    ProviderError,
    QuotaExceededError,
    RateLimitError,
    SoftFailureError,
    StreamAbortedError,
    TransientProviderError,
)
from .fallback_chain import (
    AttemptContext,
    ChainResult,
    FallbackChainConfig,
    FallbackChainExecutor,
    StreamChunk,
)
from .models import (
    GenerationRequest,
    ProviderErrorCode,
    ProviderFailure,
    ProviderKind,
    ProviderRecord,
    RequestKind,
    TaskCategory,
)
from .selection import build_fallback_chain, resolve_task_category
from .soft_failure import SoftFailureClassifier, detect_soft_failure, is_soft_failure

__all__ = [
    "BaseLLMProvider",
    "LLMResponse",
    "AllProvidersFailedError",
    "AuthenticationError",
    "FallbackChainError",
    "LLMError",
    "ProviderError",
    "QuotaExceededError",
    "RateLimitError",
    "SoftFailureError",
    "StreamAbortedError",
    "TransientProviderError",
    "AttemptContext",
    "ChainResult",
    "FallbackChainConfig",
    "FallbackChainExecutor",
    "StreamChunk",
    "GenerationRequest",
    "ProviderErrorCode",
    "ProviderFailure",
    "ProviderKind",
    "ProviderRecord",
    "RequestKind",
    "TaskCategory",
    "build_fallback_chain",
    "resolve_task_category",
    "SoftFailureClassifier",
    "detect_soft_failure",
    "is_soft_failure",
]
