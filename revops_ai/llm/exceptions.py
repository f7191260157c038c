"""LLM-related exceptions."""

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .models import ProviderFailure


class LLMError(Exception):
    """Base LLM error."""
    pass


class ProviderError(LLMError):
    """Provider error."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        self.message = message
        self.provider = provider
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class AuthenticationError(ProviderError):
    """Invalid or unauthorized credential."""
    pass


class QuotaExceededError(ProviderError):
    """Quota or billing limit reached."""
    pass


class RateLimitError(ProviderError):
    """Rate limit error."""
    pass


class TransientProviderError(ProviderError):
    """Network or availability error worth trying elsewhere."""
    pass


class SoftFailureError(ProviderError):
    """Successful transport with an error described in the body."""

    def __init__(self, message: str, provider: Optional[str] = None, pattern: Optional[str] = None):
        self.pattern = pattern
        super().__init__(message, provider=provider, code="SOFT_FAILURE")


class FallbackChainError(LLMError):
    """Base error for fallback chain."""
    pass


class AllProvidersFailedError(FallbackChainError):
    """All providers in the chain have failed."""

    def __init__(self, failures: List["ProviderFailure"], message: str = "All AI providers failed"):
        self.failures = failures
        self.message = message
        names = ", ".join(f.provider for f in failures) or "none attempted"
        super().__init__(f"{message}: {names}")


class StreamAbortedError(FallbackChainError):
    """A stream failed after chunks were already delivered."""

    def __init__(self, failure: "ProviderFailure", failures: List["ProviderFailure"]):
        self.failure = failure
        self.failures = failures
        super().__init__(f"Stream from {failure.provider} aborted: {failure.message}")
