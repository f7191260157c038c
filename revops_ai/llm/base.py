"""Base LLM provider interface for RevOps AI."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

logger = logging.getLogger(__name__)


class LLMResponse:
    """Response from LLM provider with metadata."""

    def __init__(
        self,
        content: str,
        provider: str = "unknown",
        model: str = "unknown",
        tokens_in: int = 0,
        tokens_out: int = 0,
    ):
        self.content = content
        self.provider = provider
        self.model = model
        self.tokens_in = tokens_in
        self.tokens_out = tokens_out
        self.latency_ms: Optional[float] = None
        self.timestamp = datetime.now(timezone.utc)
        self.metadata: Dict[str, Any] = {}

    def __str__(self) -> str:
        return f"LLMResponse(provider={self.provider}, model={self.model}, length={len(self.content)})"


class BaseLLMProvider(ABC):
    """Abstract base class for LLM providers."""

    def __init__(self, config: Dict[str, Any]):
        """Initialize the provider with configuration."""
        self.config = config
        self.api_key = config.get('api_key')
        self.model = config.get('model', 'default-model')
        self.base_url = config.get('base_url')
        self.timeout_seconds = config.get('timeout_seconds', 60)

    @abstractmethod
    async def generate_content(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        **kwargs
    ) -> LLMResponse:
        """Generate content from prompt.

        Args:
            prompt: The input prompt
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature
            **kwargs: Additional provider-specific parameters

        Returns:
            LLMResponse with generated content
        """
        pass

    async def stream_content(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        **kwargs
    ) -> AsyncIterator[str]:
        """Stream content as text chunks.

        Providers without native streaming yield the whole completion once.
        """
        response = await self.generate_content(
            prompt=prompt,
            max_tokens=max_tokens,
            temperature=temperature,
            **kwargs
        )
        yield response.content

    async def close(self) -> None:
        """Release any network resources held by the provider."""
        return None

    def is_available(self) -> bool:
        """Check if provider is properly configured and available."""
        return bool(self.api_key)

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the configured model."""
        return {
            "provider": self.__class__.__name__,
            "model": self.model,
            "available": self.is_available()
        }
