"""Provider error classification and user guidance.

Turns exceptions, HTTP statuses and error bodies from any provider into a
``ProviderErrorCode``, decides whether the failure is transient, and builds
actionable guidance (which dashboard to visit) for the user.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from .exceptions import (
    AuthenticationError,
    ProviderError,
    QuotaExceededError,
    RateLimitError,
    SoftFailureError,
    TransientProviderError,
)
from .models import FailureClass, ProviderErrorCode, ProviderFailure, ProviderKind

logger = logging.getLogger(__name__)


PROVIDER_DASHBOARD_URLS: Dict[ProviderKind, Dict[str, str]] = {
    ProviderKind.OPENAI: {
        "billing": "https://platform.openai.com/account/billing/overview",
        "api_keys": "https://platform.openai.com/api-keys",
        "models": "https://platform.openai.com/docs/models",
    },
    ProviderKind.ANTHROPIC: {
        "billing": "https://console.anthropic.com/settings/plans",
        "api_keys": "https://console.anthropic.com/settings/keys",
    },
    ProviderKind.GOOGLE: {
        "billing": "https://aistudio.google.com/app/plan",
        "api_keys": "https://aistudio.google.com/app/apikey",
        "models": "https://ai.google.dev/gemini-api/docs/models/gemini",
    },
}

PROVIDER_DISPLAY_NAMES: Dict[str, str] = {
    ProviderKind.OPENAI.value: "OpenAI",
    ProviderKind.ANTHROPIC.value: "Anthropic",
    ProviderKind.GOOGLE.value: "Google AI",
}

# Most actionable first; used to pick the headline message for a failed chain.
SUMMARY_PRIORITY: List[ProviderErrorCode] = [
    ProviderErrorCode.BILLING_REQUIRED,
    ProviderErrorCode.INSUFFICIENT_QUOTA,
    ProviderErrorCode.INVALID_KEY,
    ProviderErrorCode.AUTH_ERROR,
    ProviderErrorCode.MODEL_NOT_FOUND,
    ProviderErrorCode.RATE_LIMIT,
    ProviderErrorCode.SOFT_FAILURE,
    ProviderErrorCode.TIMEOUT,
    ProviderErrorCode.SERVICE_UNAVAILABLE,
    ProviderErrorCode.NETWORK_ERROR,
    ProviderErrorCode.CONTENT_POLICY,
    ProviderErrorCode.CONTEXT_LENGTH,
    ProviderErrorCode.UNKNOWN,
]

_MESSAGE_TEMPLATES: Dict[ProviderErrorCode, str] = {
    ProviderErrorCode.INSUFFICIENT_QUOTA: "Your {name} quota or credits are exhausted.",
    ProviderErrorCode.BILLING_REQUIRED: "{name} billing setup required. Add a payment method to continue.",
    ProviderErrorCode.MODEL_NOT_FOUND: "The configured {name} model is not available.",
    ProviderErrorCode.RATE_LIMIT: "{name} rate limit reached. Please wait a moment.",
    ProviderErrorCode.AUTH_ERROR: "{name} authentication failed. Your API key may be invalid.",
    ProviderErrorCode.INVALID_KEY: "Your {name} API key is invalid or has been revoked.",
    ProviderErrorCode.NETWORK_ERROR: "Failed to connect to {name}. Please check your connection.",
    ProviderErrorCode.TIMEOUT: "{name} request timed out. Please try again.",
    ProviderErrorCode.CONTENT_POLICY: "Your request was rejected by {name} content policy.",
    ProviderErrorCode.CONTEXT_LENGTH: "Message too long for the {name} model context.",
    ProviderErrorCode.SERVICE_UNAVAILABLE: "{name} service is temporarily unavailable.",
    ProviderErrorCode.SOFT_FAILURE: "{name} returned an error instead of an answer. Check your API key and credits.",
    ProviderErrorCode.UNKNOWN: "An unexpected {name} error occurred.",
}

_FAILURE_CLASSES: Dict[ProviderErrorCode, FailureClass] = {
    ProviderErrorCode.INVALID_KEY: FailureClass.INVALID_CREDENTIAL,
    ProviderErrorCode.AUTH_ERROR: FailureClass.INVALID_CREDENTIAL,
    ProviderErrorCode.INSUFFICIENT_QUOTA: FailureClass.QUOTA_OR_RATE_LIMIT,
    ProviderErrorCode.BILLING_REQUIRED: FailureClass.QUOTA_OR_RATE_LIMIT,
    ProviderErrorCode.RATE_LIMIT: FailureClass.QUOTA_OR_RATE_LIMIT,
    ProviderErrorCode.NETWORK_ERROR: FailureClass.TRANSIENT,
    ProviderErrorCode.TIMEOUT: FailureClass.TRANSIENT,
    ProviderErrorCode.SERVICE_UNAVAILABLE: FailureClass.TRANSIENT,
}

_STATUS_PATTERNS = (
    re.compile(r"\bstatus(?:\s+code)?[:\s]+(\d{3})\b", re.IGNORECASE),
    re.compile(r"\bHTTP\s*(\d{3})\b", re.IGNORECASE),
    re.compile(r"\((\d{3})\)"),
    re.compile(r"^(\d{3})\b"),
)


def extract_status_code(message: Optional[str]) -> Optional[int]:
    """Pull an HTTP status out of an error message, if one is present."""
    if not message:
        return None
    for pattern in _STATUS_PATTERNS:
        match = pattern.search(message)
        if match:
            status = int(match.group(1))
            if 100 <= status <= 599:
                return status
    return None


def _has(body: str, *needles: str) -> bool:
    return any(n in body for n in needles)


def classify_provider_error(
    provider: str,
    status_code: Optional[int],
    message: Optional[str],
) -> ProviderErrorCode:
    """Classify a provider failure from its HTTP status and error body."""
    body = (message or "").lower()

    if status_code == 429:
        if _has(body, "insufficient_quota", "exceeded your current quota", "resource_exhausted",
                "credit", "billing_quota"):
            return ProviderErrorCode.INSUFFICIENT_QUOTA
        return ProviderErrorCode.RATE_LIMIT

    if status_code in (401, 403):
        if _has(body, "invalid_api_key", "invalid api key", "api key not valid", "invalid x-api-key"):
            return ProviderErrorCode.INVALID_KEY
        return ProviderErrorCode.AUTH_ERROR

    if status_code == 400:
        if _has(body, "api key not valid", "api_key_invalid"):
            return ProviderErrorCode.INVALID_KEY
        if _has(body, "credit balance", "billing", "payment"):
            return ProviderErrorCode.BILLING_REQUIRED
        if _has(body, "context_length", "too long", "maximum context"):
            return ProviderErrorCode.CONTEXT_LENGTH
        if _has(body, "content_policy", "content policy", "safety", "blocked"):
            return ProviderErrorCode.CONTENT_POLICY
        if _has(body, "quota"):
            return ProviderErrorCode.INSUFFICIENT_QUOTA

    if status_code == 404:
        return ProviderErrorCode.MODEL_NOT_FOUND

    if status_code is not None and status_code >= 500:
        return ProviderErrorCode.SERVICE_UNAVAILABLE

    if _has(body, "timeout", "timed out", "etimedout"):
        return ProviderErrorCode.TIMEOUT
    if _has(body, "network", "econnrefused", "connection reset", "cannot connect"):
        return ProviderErrorCode.NETWORK_ERROR
    if _has(body, "invalid api key", "invalid_api_key", "api key not valid"):
        return ProviderErrorCode.INVALID_KEY
    if _has(body, "quota", "insufficient"):
        return ProviderErrorCode.INSUFFICIENT_QUOTA
    if _has(body, "billing", "payment", "credit balance"):
        return ProviderErrorCode.BILLING_REQUIRED
    if _has(body, "rate limit", "rate_limit"):
        return ProviderErrorCode.RATE_LIMIT
    if _has(body, "not_found", "does not exist"):
        return ProviderErrorCode.MODEL_NOT_FOUND

    return ProviderErrorCode.UNKNOWN


def failure_class(code: ProviderErrorCode) -> FailureClass:
    return _FAILURE_CLASSES.get(code, FailureClass.PROVIDER_ERROR)


def is_retryable(code: ProviderErrorCode) -> bool:
    """Only transient failures may be retried, and only on another provider."""
    return failure_class(code) == FailureClass.TRANSIENT


def classify_exception(provider: str, error: BaseException) -> ProviderFailure:
    """Build a ``ProviderFailure`` from an exception raised by a provider call."""
    if isinstance(error, asyncio.TimeoutError):
        code = ProviderErrorCode.TIMEOUT
        message = "Request timed out"
        status_code = None
    elif isinstance(error, SoftFailureError):
        code = ProviderErrorCode.SOFT_FAILURE
        message = error.message
        status_code = error.status_code
    elif isinstance(error, ProviderError):
        status_code = error.status_code or extract_status_code(error.message)
        try:
            code = ProviderErrorCode(error.code)
        except ValueError:
            code = classify_provider_error(provider, status_code, error.message)
            code = _refine_by_type(error, code)
        message = error.message
    else:
        message = str(error) or error.__class__.__name__
        status_code = extract_status_code(message)
        code = classify_provider_error(provider, status_code, message)

    return ProviderFailure(
        provider=provider,
        code=code,
        message=message,
        retryable=is_retryable(code),
        status_code=status_code,
    )


def _refine_by_type(error: ProviderError, code: ProviderErrorCode) -> ProviderErrorCode:
    """Use the exception type when the status and body were not conclusive."""
    if code != ProviderErrorCode.UNKNOWN:
        return code
    if isinstance(error, AuthenticationError):
        return ProviderErrorCode.AUTH_ERROR
    if isinstance(error, QuotaExceededError):
        return ProviderErrorCode.INSUFFICIENT_QUOTA
    if isinstance(error, RateLimitError):
        return ProviderErrorCode.RATE_LIMIT
    if isinstance(error, TransientProviderError):
        return ProviderErrorCode.NETWORK_ERROR
    return code


def _display_name(provider: str) -> str:
    return PROVIDER_DISPLAY_NAMES.get(provider, provider)


def user_message(provider: str, code: ProviderErrorCode) -> str:
    return _MESSAGE_TEMPLATES[code].format(name=_display_name(provider))


def dashboard_url(provider: str, code: ProviderErrorCode) -> Optional[str]:
    """Where the user can fix the problem, if anywhere."""
    try:
        urls = PROVIDER_DASHBOARD_URLS[ProviderKind(provider)]
    except ValueError:
        return None

    if code in (ProviderErrorCode.INSUFFICIENT_QUOTA, ProviderErrorCode.BILLING_REQUIRED):
        return urls.get("billing")
    if code in (ProviderErrorCode.INVALID_KEY, ProviderErrorCode.AUTH_ERROR, ProviderErrorCode.SOFT_FAILURE):
        return urls.get("api_keys")
    if code == ProviderErrorCode.MODEL_NOT_FOUND:
        return urls.get("models")
    return None


def _priority(failure: ProviderFailure) -> int:
    return SUMMARY_PRIORITY.index(failure.code)


def summarize_failures(failures: Sequence[ProviderFailure]) -> str:
    """One user-facing sentence describing the most actionable failure."""
    if not failures:
        return "No AI provider is connected. Connect a provider to enable AI features."
    top = min(failures, key=_priority)
    return user_message(top.provider, top.code)


def build_guidance(failures: Sequence[ProviderFailure]) -> Dict[str, Any]:
    """Guidance payload sent alongside a failed chain."""
    return {
        "summary": summarize_failures(failures),
        "providers": [
            {
                "provider": f.provider,
                "code": f.code.value,
                "message": user_message(f.provider, f.code),
                "dashboard_url": dashboard_url(f.provider, f.code),
            }
            for f in failures
        ],
    }
