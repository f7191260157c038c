"""OpenAI provider implementation for RevOps AI."""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from ..base import LLMResponse
from ..exceptions import ProviderError
from .http_base import HTTPProvider

logger = logging.getLogger(__name__)


class OpenAIProvider(HTTPProvider):
    """OpenAI chat completions over HTTPS."""

    provider_name = "openai"
    default_model = "gpt-4o"
    default_base_url = "https://api.openai.com/v1"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _messages(self, prompt: str, system_message: Optional[str] = None) -> List[Dict[str, str]]:
        messages = []
        if system_message:
            messages.append({"role": "system", "content": system_message})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def generate_content(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        **kwargs
    ) -> LLMResponse:
        """Generate content using the chat completions API."""
        payload = {
            "model": self.model,
            "messages": self._messages(prompt, kwargs.get("system_message")),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        data = await self._post_json(f"{self.base_url}/chat/completions", payload)

        if "error" in data:
            raise ProviderError(str(data["error"]), provider=self.provider_name)

        choices = data.get("choices") or []
        content = (choices[0].get("message") or {}).get("content", "") if choices else ""
        usage = data.get("usage") or {}

        response = LLMResponse(
            content=content or "",
            provider=self.provider_name,
            model=data.get("model", self.model),
            tokens_in=usage.get("prompt_tokens", 0),
            tokens_out=usage.get("completion_tokens", 0),
        )
        response.metadata["finish_reason"] = choices[0].get("finish_reason") if choices else None
        logger.info(f"OpenAI API response received: {len(response.content)} chars")
        return response

    async def stream_content(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        **kwargs
    ) -> AsyncIterator[str]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": self._messages(prompt, kwargs.get("system_message")),
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": True,
        }
        async for event in self._stream_events(f"{self.base_url}/chat/completions", payload):
            if "error" in event:
                raise ProviderError(str(event["error"]), provider=self.provider_name)
            for choice in event.get("choices") or []:
                text = (choice.get("delta") or {}).get("content")
                if text:
                    yield text
