"""Contracts for the external services the orchestration core consumes.

Session validation, provider registry, configuration checks, health probes
and deal data live outside this package. The core only sees these narrow
interfaces; ``StaticServices`` is a configurable in-process implementation
used by the CLI, the demo API wiring and tests.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence

from ..llm.models import ProviderRecord
from .fallback_plan import DealRecord


@dataclass(frozen=True)
class SessionResult:
    ok: bool
    code: Optional[str] = None


@dataclass(frozen=True)
class ConfigCheckResult:
    ok: bool
    code: Optional[str] = None
    message: Optional[str] = None
    disabled: bool = False


@dataclass(frozen=True)
class HealthResult:
    ok: bool
    degraded: bool = False
    network_error: bool = False
    message: Optional[str] = None


class SessionValidator(Protocol):
    async def check_session(self) -> SessionResult:
        ...


class ProviderRegistry(Protocol):
    async def list_active_providers(self, tenant: str) -> List[ProviderRecord]:
        ...


class ConfigChecker(Protocol):
    async def check_config(self) -> ConfigCheckResult:
        ...


class HealthProbe(Protocol):
    async def health_check(self) -> HealthResult:
        ...


class DealSource(Protocol):
    async def list_deals(self, tenant: str) -> List[DealRecord]:
        ...


class ReadinessServices(SessionValidator, ProviderRegistry, ConfigChecker, HealthProbe, Protocol):
    """Everything the readiness driver needs."""


@dataclass
class StaticServices:
    """In-process services backed by fixed values."""
    session: SessionResult = field(default_factory=lambda: SessionResult(ok=True))
    providers: Sequence[ProviderRecord] = field(default_factory=list)
    config: ConfigCheckResult = field(default_factory=lambda: ConfigCheckResult(ok=True))
    health: HealthResult = field(default_factory=lambda: HealthResult(ok=True))
    deals: Sequence[DealRecord] = field(default_factory=list)

    async def check_session(self) -> SessionResult:
        return self.session

    async def list_active_providers(self, tenant: str) -> List[ProviderRecord]:
        return [p for p in self.providers if p.active]

    async def check_config(self) -> ConfigCheckResult:
        return self.config

    async def health_check(self) -> HealthResult:
        return self.health

    async def list_deals(self, tenant: str) -> List[DealRecord]:
        return list(self.deals)
