"""Async driver for the readiness state machine.

Runs the four checks in order (session, providers, configuration, health),
turning each outcome into a reducer event and stopping at the first failing
stage. All state lives in the reducer; the driver only performs I/O.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .escalation import EscalationReporter
from .interfaces import ReadinessServices
from .readiness import (
    AppBoot,
    ConfigFailed,
    ConfigOk,
    DisabledByPlan,
    HealthCheckFailed,
    HealthCheckOk,
    NoProviders,
    ProvidersFound,
    ReadinessEvent,
    ReadinessNode,
    ReadinessState,
    Reset,
    SessionInvalid,
    SessionOk,
    UIVariant,
    initial_node,
    is_checking,
    is_usable,
    reduce,
    ui_variant,
)

logger = logging.getLogger(__name__)


class ReadinessSettings(BaseSettings):
    """Readiness check timing.

    All values can be overridden via environment variables with READINESS_ prefix.
    """

    model_config = SettingsConfigDict(env_prefix="READINESS_")

    health_check_timeout: float = Field(
        default=10.0,
        description="Timeout for the health probe (seconds)"
    )
    cache_seconds: float = Field(
        default=60.0,
        description="How long a settled readiness result is reused"
    )


@dataclass(frozen=True)
class ReadinessReport:
    """What callers see: composite usability plus a UI variant."""
    state: ReadinessState
    usable: bool
    variant: UIVariant
    context: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "usable": self.usable,
            "variant": self.variant.value,
            "context": self.context,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReadinessDriver:
    """Drives readiness events from external service checks."""

    def __init__(
        self,
        services: ReadinessServices,
        tenant: str = "default",
        settings: Optional[ReadinessSettings] = None,
        clock: Callable[[], datetime] = _utcnow,
        escalation: Optional[EscalationReporter] = None,
    ):
        self._services = services
        self._tenant = tenant
        self._settings = settings or ReadinessSettings()
        self._clock = clock
        self._escalation = escalation
        self._node = initial_node()
        self._lock = asyncio.Lock()

    @property
    def node(self) -> ReadinessNode:
        return self._node

    @property
    def state(self) -> ReadinessState:
        return self._node.state

    def dispatch(self, event: ReadinessEvent) -> ReadinessNode:
        """Feed one event through the reducer."""
        previous = self._node.state
        self._node = reduce(self._node, event)
        if self._node.state != previous:
            logger.debug(f"Readiness {previous.value} -> {self._node.state.value} on {type(event).__name__}")
        return self._node

    def snapshot(self) -> ReadinessReport:
        context = asdict(self._node.context)
        if context["last_checked_at"] is not None:
            context["last_checked_at"] = context["last_checked_at"].isoformat()
        return ReadinessReport(
            state=self._node.state,
            usable=is_usable(self._node.state),
            variant=ui_variant(self._node.state),
            context=context,
        )

    def _report(self, category: str, code: str, message: Optional[str] = None) -> None:
        if self._escalation is not None:
            self._escalation.report(category, code, {"tenant": self._tenant, "message": message})

    async def run(self) -> ReadinessReport:
        """Run every readiness stage from scratch."""
        async with self._lock:
            await self._run_checks()
            report = self.snapshot()
        logger.info(f"Readiness for tenant '{self._tenant}': {report.state.value} ({report.variant.value})")
        return report

    async def retry(self) -> ReadinessReport:
        """Clear the previous outcome and check again."""
        logger.info(f"Retrying readiness checks for tenant '{self._tenant}'")
        return await self.run()

    async def ensure_fresh(self) -> ReadinessReport:
        """Return the cached result while it is recent, otherwise re-run the checks."""
        checked_at = self._node.context.last_checked_at
        if not is_checking(self._node.state) and checked_at is not None:
            age = (self._clock() - checked_at).total_seconds()
            if age < self._settings.cache_seconds:
                return self.snapshot()
        return await self.run()

    async def _run_checks(self) -> None:
        if self._node.state != ReadinessState.UNINITIALIZED:
            self.dispatch(Reset())
        self.dispatch(AppBoot(at=self._clock()))

        session = await self._services.check_session()
        if not session.ok:
            self.dispatch(SessionInvalid(reason=session.code))
            self._report("session_error", session.code or "SESSION_INVALID")
            return
        self.dispatch(SessionOk())

        try:
            providers = await self._services.list_active_providers(self._tenant)
        except Exception as e:
            logger.error(f"Failed to list providers for tenant '{self._tenant}': {e}")
            self.dispatch(NoProviders(code="PROVIDER_FETCH_ERROR", message=str(e)))
            self._report("invariant", "PROVIDER_FETCH_ERROR", str(e))
            return

        active = [p for p in providers if p.active]
        if not active:
            self.dispatch(NoProviders())
            return
        self.dispatch(ProvidersFound(count=len(active)))

        try:
            config = await self._services.check_config()
        except Exception as e:
            logger.error(f"Configuration check failed: {e}")
            self.dispatch(ConfigFailed(code="CONFIG_CHECK_FAILED", message=str(e)))
            self._report("invariant", "CONFIG_CHECK_FAILED", str(e))
            return

        if config.disabled:
            self.dispatch(DisabledByPlan())
            return
        if not config.ok:
            self.dispatch(ConfigFailed(code=config.code or "CONFIG_ERROR", message=config.message))
            self._report("invariant", config.code or "CONFIG_ERROR", config.message)
            return
        self.dispatch(ConfigOk())

        try:
            health = await asyncio.wait_for(
                self._services.health_check(),
                timeout=self._settings.health_check_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Health check timed out after {self._settings.health_check_timeout}s")
            self.dispatch(HealthCheckFailed(network_error=True, message="Health check timed out"))
            self._report("ux_regression", "HEALTH_CHECK_TIMEOUT")
            return
        except Exception as e:
            logger.warning(f"Health check failed: {e}")
            self.dispatch(HealthCheckFailed(network_error=True, message=str(e)))
            self._report("ux_regression", "HEALTH_CHECK_ERROR", str(e))
            return

        if health.ok:
            self.dispatch(HealthCheckOk(degraded=health.degraded))
            if health.degraded:
                self._report("ux_regression", "AI_DEGRADED", health.message)
        else:
            self.dispatch(HealthCheckFailed(network_error=health.network_error, message=health.message))
            self._report("ux_regression", "HEALTH_CHECK_FAILED", health.message)
