"""Hosted model provider adapters."""

from typing import Any, Dict, Union

from ..base import BaseLLMProvider
from ..models import ProviderKind
from .anthropic_provider import AnthropicProvider
from .google_provider import GoogleProvider
from .openai_provider import OpenAIProvider

PROVIDER_CLASSES = {
    ProviderKind.OPENAI: OpenAIProvider,
    ProviderKind.ANTHROPIC: AnthropicProvider,
    ProviderKind.GOOGLE: GoogleProvider,
}


def create_provider(kind: Union[str, ProviderKind], config: Dict[str, Any]) -> BaseLLMProvider:
    """Instantiate the adapter for a provider kind."""
    return PROVIDER_CLASSES[ProviderKind(kind)](config)


__all__ = [
    "AnthropicProvider",
    "GoogleProvider",
    "OpenAIProvider",
    "PROVIDER_CLASSES",
    "create_provider",
]
