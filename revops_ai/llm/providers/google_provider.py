"""Google Gemini provider implementation for RevOps AI."""

import logging
from typing import Any, AsyncIterator, Dict

from ..base import LLMResponse
from ..exceptions import ProviderError
from .http_base import HTTPProvider

logger = logging.getLogger(__name__)


def _candidate_text(data: Dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)


class GoogleProvider(HTTPProvider):
    """Gemini generateContent API over HTTPS."""

    provider_name = "google"
    default_model = "gemini-1.5-pro"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key or "",
        }

    def _payload(self, prompt: str, max_tokens: int, temperature: float, **kwargs) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "maxOutputTokens": max_tokens,
                "temperature": temperature,
            },
        }
        if kwargs.get("system_message"):
            payload["systemInstruction"] = {"parts": [{"text": kwargs["system_message"]}]}
        return payload

    async def generate_content(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        **kwargs
    ) -> LLMResponse:
        """Generate content using the generateContent API."""
        data = await self._post_json(
            f"{self.base_url}/models/{self.model}:generateContent",
            self._payload(prompt, max_tokens, temperature, **kwargs),
        )

        if "error" in data:
            error = data["error"]
            raise ProviderError(
                error.get("message", str(error)) if isinstance(error, dict) else str(error),
                provider=self.provider_name,
            )

        usage = data.get("usageMetadata") or {}
        content = _candidate_text(data)
        response = LLMResponse(
            content=content,
            provider=self.provider_name,
            model=self.model,
            tokens_in=usage.get("promptTokenCount", 0),
            tokens_out=usage.get("candidatesTokenCount", 0),
        )
        logger.info(f"Google AI response received: {len(content)} chars")
        return response

    async def stream_content(
        self,
        prompt: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        **kwargs
    ) -> AsyncIterator[str]:
        url = f"{self.base_url}/models/{self.model}:streamGenerateContent?alt=sse"
        async for event in self._stream_events(url, self._payload(prompt, max_tokens, temperature, **kwargs)):
            if "error" in event:
                raise ProviderError(str(event["error"]), provider=self.provider_name)
            text = _candidate_text(event)
            if text:
                yield text
