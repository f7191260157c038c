"""Assemble an orchestrator from configuration."""

import logging
from dataclasses import dataclass
from typing import List, Optional

from ..config.loader import RevOpsAIConfig
from ..llm.fallback_chain import FallbackChainConfig, FallbackChainExecutor
from ..llm.manager import ProviderManager
from ..llm.models import ProviderRecord
from ..llm.soft_failure import SoftFailureClassifier
from .escalation import EscalationReporter
from .interfaces import ConfigCheckResult, DealSource, HealthResult, SessionResult
from .orchestrator import AIOrchestrator
from .rate_limiter import RateLimiter, RateLimitStore, create_rate_limit_store
from .readiness_driver import ReadinessDriver, ReadinessSettings
from .usage_log import FireAndForgetUsageLogger, LoggingUsageSink, RedisUsageSink, UsageLogSink

logger = logging.getLogger(__name__)


class ManagedServices:
    """Readiness services backed by the provider manager.

    Sessions are authenticated upstream of this service, so the session check
    always passes here.
    """

    def __init__(self, manager: ProviderManager):
        self.manager = manager

    async def check_session(self) -> SessionResult:
        return SessionResult(ok=True)

    async def list_active_providers(self, tenant: str) -> List[ProviderRecord]:
        return await self.manager.list_active_providers(tenant)

    async def check_config(self) -> ConfigCheckResult:
        return await self.manager.check_config()

    async def health_check(self) -> HealthResult:
        return await self.manager.health_check()


@dataclass
class Runtime:
    """Everything a process needs to serve AI tasks."""
    config: RevOpsAIConfig
    orchestrator: AIOrchestrator
    manager: ProviderManager
    store: RateLimitStore
    usage_logger: FireAndForgetUsageLogger
    usage_sink: UsageLogSink
    escalation: EscalationReporter

    async def close(self) -> None:
        await self.usage_logger.drain()
        await self.manager.close()
        close = getattr(self.store, "close", None)
        if close is not None:
            await close()
        sink_close = getattr(self.usage_sink, "close", None)
        if sink_close is not None:
            await sink_close()


async def _usage_sink() -> UsageLogSink:
    sink = RedisUsageSink.from_env()
    if sink is None:
        return LoggingUsageSink()
    await sink.connect()
    return sink


async def build_runtime(
    config: RevOpsAIConfig,
    manager: Optional[ProviderManager] = None,
    deals: Optional[DealSource] = None,
) -> Runtime:
    """Create the rate-limit store, providers, executor and orchestrator."""
    manager = manager or ProviderManager(config.llm)
    escalation = EscalationReporter.from_config(config.escalation)
    store = await create_rate_limit_store(config.rate_limits)
    sink = await _usage_sink()
    usage_logger = FireAndForgetUsageLogger(sink)

    executor = FallbackChainExecutor(
        manager.providers,
        config=FallbackChainConfig(
            request_timeout=config.orchestration.request_timeout,
            soft_failure_scan_limit=config.soft_failure.scan_limit,
        ),
        classifier=SoftFailureClassifier.from_config(config.soft_failure),
        usage_logger=usage_logger,
    )
    services = ManagedServices(manager)
    driver = ReadinessDriver(
        services,
        tenant=config.orchestration.default_tenant,
        settings=ReadinessSettings(health_check_timeout=config.orchestration.health_check_timeout),
        escalation=escalation,
    )
    orchestrator = AIOrchestrator(
        readiness=driver,
        rate_limiter=RateLimiter(store),
        registry=services,
        executor=executor,
        escalation=escalation,
        deals=deals,
    )
    logger.info(
        f"Runtime ready: providers={executor.get_provider_names()}, "
        f"rate_limits={config.rate_limits.backend}"
    )
    return Runtime(
        config=config,
        orchestrator=orchestrator,
        manager=manager,
        store=store,
        usage_logger=usage_logger,
        usage_sink=sink,
        escalation=escalation,
    )
