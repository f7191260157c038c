"""Anthropic provider implementation for RevOps AI."""

import logging
from typing import Any, AsyncIterator, Dict

from ..base import LLMResponse
from ..exceptions import ProviderError
from .http_base import HTTPProvider

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(HTTPProvider):
    """Anthropic Claude messages API over HTTPS."""

    provider_name = "anthropic"
    default_model = "claude-3-5-sonnet-20241022"
    default_base_url = "https://api.anthropic.com"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _payload(self, prompt: str, max_tokens: int, temperature: float, **kwargs) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if kwargs.get("system_message"):
            payload["system"] = kwargs["system_message"]
        return payload

    async def generate_content(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        **kwargs
    ) -> LLMResponse:
        """Generate content using the messages API."""
        data = await self._post_json(
            f"{self.base_url}/v1/messages",
            self._payload(prompt, max_tokens, temperature, **kwargs),
        )

        if data.get("type") == "error":
            error = data.get("error") or {}
            raise ProviderError(error.get("message", "Anthropic error"), provider=self.provider_name)

        content = "".join(
            block.get("text", "") for block in data.get("content") or [] if block.get("type") == "text"
        )
        usage = data.get("usage") or {}

        response = LLMResponse(
            content=content,
            provider=self.provider_name,
            model=data.get("model", self.model),
            tokens_in=usage.get("input_tokens", 0),
            tokens_out=usage.get("output_tokens", 0),
        )
        response.metadata["stop_reason"] = data.get("stop_reason")
        logger.info(f"Anthropic API response received: {len(content)} chars")
        return response

    async def stream_content(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        **kwargs
    ) -> AsyncIterator[str]:
        payload = self._payload(prompt, max_tokens, temperature, **kwargs)
        payload["stream"] = True
        async for event in self._stream_events(f"{self.base_url}/v1/messages", payload):
            event_type = event.get("type")
            if event_type == "error":
                error = event.get("error") or {}
                raise ProviderError(error.get("message", "Anthropic stream error"), provider=self.provider_name)
            if event_type == "content_block_delta":
                text = (event.get("delta") or {}).get("text")
                if text:
                    yield text
