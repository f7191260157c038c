"""Shared aiohttp plumbing for hosted model providers."""

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp

from ..base import BaseLLMProvider
from ..exceptions import (
    AuthenticationError,
    ProviderError,
    QuotaExceededError,
    RateLimitError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)


class HTTPProvider(BaseLLMProvider):
    """Base for providers reached over HTTPS with JSON and server-sent events."""

    provider_name = "http"
    default_model = "default-model"
    default_base_url = ""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.model = config.get('model') or self.default_model
        self.base_url = (config.get('base_url') or self.default_base_url).rstrip('/')
        self._session: Optional[aiohttp.ClientSession] = None

        if not self.api_key:
            logger.warning(f"{self.provider_name} API key not provided")

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def _raise_for_status(self, status: int, body: str) -> None:
        """Map a non-2xx response onto the provider exception hierarchy."""
        message = f"{self.provider_name} API error {status}: {body[:500]}"
        if status in (401, 403):
            raise AuthenticationError(message, provider=self.provider_name, status_code=status)
        if status == 429:
            lowered = body.lower()
            if "quota" in lowered or "credit" in lowered or "resource_exhausted" in lowered:
                raise QuotaExceededError(message, provider=self.provider_name, status_code=status)
            raise RateLimitError(message, provider=self.provider_name, status_code=status)
        if status >= 500:
            raise TransientProviderError(message, provider=self.provider_name, status_code=status)
        raise ProviderError(message, provider=self.provider_name, status_code=status)

    async def _post_json(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = await self._get_session()
        try:
            async with session.post(url, json=payload, headers=self._headers()) as response:
                if response.status >= 300:
                    self._raise_for_status(response.status, await response.text())
                return await response.json()
        except aiohttp.ClientError as e:
            raise TransientProviderError(
                f"{self.provider_name} network error: {e}", provider=self.provider_name
            ) from e

    async def _stream_events(self, url: str, payload: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        """Yield decoded JSON objects from a server-sent event stream."""
        session = await self._get_session()
        try:
            async with session.post(url, json=payload, headers=self._headers()) as response:
                if response.status >= 300:
                    self._raise_for_status(response.status, await response.text())

                async for raw_line in response.content:
                    line = raw_line.decode("utf-8").strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if not data or data == "[DONE]":
                        continue
                    try:
                        yield json.loads(data)
                    except ValueError:
                        logger.debug(f"Skipping undecodable {self.provider_name} event: {data[:80]}")
        except aiohttp.ClientError as e:
            raise TransientProviderError(
                f"{self.provider_name} network error: {e}", provider=self.provider_name
            ) from e

    def get_model_info(self) -> Dict[str, Any]:
        return {
            "provider": self.provider_name,
            "model": self.model,
            "base_url": self.base_url,
            "configured": bool(self.api_key)
        }
