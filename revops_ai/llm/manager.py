"""Provider manager for RevOps AI.

Builds provider clients from configuration and answers the registry and
health questions the readiness driver asks about them.
"""

import logging
from typing import Dict, List, Mapping, Optional

from ..config.loader import LLMProviderConfig
from ..core.interfaces import ConfigCheckResult, HealthResult
from .base import BaseLLMProvider
from .models import ProviderKind, ProviderRecord
from .providers import create_provider

logger = logging.getLogger(__name__)


class ProviderManager:
    """Holds configured provider clients for one deployment."""

    def __init__(
        self,
        config: Optional[Mapping[str, LLMProviderConfig]] = None,
        providers: Optional[Dict[ProviderKind, BaseLLMProvider]] = None,
    ):
        self.config = dict(config or {})
        self._providers: Dict[ProviderKind, BaseLLMProvider] = dict(providers or {})
        self._unknown: List[str] = []
        if providers is None:
            self._initialize_providers()

    def _initialize_providers(self) -> None:
        for name, provider_config in self.config.items():
            try:
                kind = ProviderKind(name)
            except ValueError:
                logger.warning(f"Ignoring unknown provider '{name}' in configuration")
                self._unknown.append(name)
                continue
            if not provider_config.enabled or not provider_config.api_key:
                continue
            self._providers[kind] = create_provider(kind, provider_config.model_dump(exclude_none=True))
            logger.info(f"{kind.value} provider initialized")

        if not self._providers:
            logger.warning("No AI providers configured")

    @property
    def providers(self) -> Dict[ProviderKind, BaseLLMProvider]:
        return dict(self._providers)

    def records(self) -> List[ProviderRecord]:
        return [
            ProviderRecord(id=kind.value, kind=kind, active=provider.is_available(), model=provider.model)
            for kind, provider in self._providers.items()
        ]

    async def list_active_providers(self, tenant: str) -> List[ProviderRecord]:
        return [r for r in self.records() if r.active]

    async def check_config(self) -> ConfigCheckResult:
        if self._unknown:
            return ConfigCheckResult(
                ok=False,
                code="UNKNOWN_PROVIDER",
                message=f"Unknown providers in configuration: {', '.join(self._unknown)}",
            )
        return ConfigCheckResult(ok=True)

    async def health_check(self) -> HealthResult:
        """Healthy when every configured client is usable, degraded when only some are."""
        available = [p for p in self._providers.values() if p.is_available()]
        if not available:
            return HealthResult(ok=False, message="No provider client is usable")
        return HealthResult(ok=True, degraded=len(available) < len(self._providers))

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()
