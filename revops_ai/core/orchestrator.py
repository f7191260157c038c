"""AI task orchestration.

Ties readiness, rate limiting, provider selection and the fallback chain into
the two operations exposed to callers: run a task, and stream a task. A task
that exhausts its chain is still a successful response carrying guidance and
a rule-based plan; only session, rate-limit and infrastructure problems are
raised.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

from ..llm.error_classifier import build_guidance
from ..llm.exceptions import AllProvidersFailedError, StreamAbortedError
from ..llm.fallback_chain import AttemptContext, FallbackChainExecutor
from ..llm.models import GenerationRequest, ProviderFailure, ProviderKind, RequestKind
from ..llm.selection import build_fallback_chain, resolve_task_category
from ..metrics import CHAIN_EXHAUSTED
from .escalation import EscalationReporter
from .exceptions import InfrastructureError, InvalidTaskRequestError, SessionError
from .fallback_plan import DealRecord, build_fallback_plan
from .interfaces import DealSource, ProviderRegistry
from .rate_limiter import RateLimiter
from .readiness import ReadinessState, error_code_for
from .readiness_driver import ReadinessDriver, ReadinessReport

logger = logging.getLogger(__name__)

ALL_PROVIDERS_FAILED = "ALL_PROVIDERS_FAILED"


@dataclass
class TaskRequest:
    """One AI task submitted by a user."""
    prompt: str
    task: str = "default"
    request_kind: str = RequestKind.QUICK_ACTION.value
    subject: str = "anonymous"
    scope: str = "default"
    tenant: str = "default"
    preferred_provider: Optional[str] = None
    rate_limit_group: str = "ai_generic"
    system_message: Optional[str] = None
    max_tokens: int = 1000
    temperature: float = 0.7
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StreamEvent:
    """``chunk`` events carry text; the single ``done`` event carries the final payload."""
    event: str
    data: Dict[str, Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AIOrchestrator:
    """Runs AI tasks behind the readiness gate with provider fallback."""

    def __init__(
        self,
        readiness: ReadinessDriver,
        rate_limiter: RateLimiter,
        registry: ProviderRegistry,
        executor: FallbackChainExecutor,
        escalation: Optional[EscalationReporter] = None,
        deals: Optional[DealSource] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.readiness = readiness
        self.rate_limiter = rate_limiter
        self.registry = registry
        self.executor = executor
        self.escalation = escalation
        self.deals = deals
        self._clock = clock

    # ========================================================================
    # Validation and gates
    # ========================================================================

    def validate(self, request: TaskRequest) -> None:
        if not request.prompt or not request.prompt.strip():
            raise InvalidTaskRequestError("Prompt must not be empty")
        try:
            RequestKind(request.request_kind)
        except ValueError:
            raise InvalidTaskRequestError(f"Unknown request kind '{request.request_kind}'") from None
        if request.preferred_provider is not None:
            try:
                ProviderKind(request.preferred_provider)
            except ValueError:
                raise InvalidTaskRequestError(
                    f"Unknown provider '{request.preferred_provider}'"
                ) from None
        if request.max_tokens <= 0:
            raise InvalidTaskRequestError("max_tokens must be positive")
        try:
            self.rate_limiter.buckets_for(request.rate_limit_group)
        except ValueError as e:
            raise InvalidTaskRequestError(str(e)) from None

    async def _gate(self, request: TaskRequest) -> Optional[Dict[str, Any]]:
        """Return a refusal payload when readiness blocks the task, else None."""
        report: ReadinessReport = await self.readiness.ensure_fresh()
        if report.state == ReadinessState.SESSION_INVALID:
            raise SessionError(reason=report.context.get("last_error_code"))
        if not report.usable:
            logger.info(f"Task '{request.task}' refused: readiness is {report.state.value}")
            return {"ok": False, "code": error_code_for(report.state), "variant": report.variant.value}

        await self.rate_limiter.enforce(request.subject, request.scope, request.rate_limit_group)
        return None

    async def _chain(self, request: TaskRequest) -> List[ProviderKind]:
        try:
            providers = await self.registry.list_active_providers(request.tenant)
        except Exception as e:
            logger.error(f"Provider registry unavailable for tenant '{request.tenant}': {e}")
            raise InfrastructureError(f"Provider registry unavailable: {e}") from e
        return build_fallback_chain(request.task, providers, preferred=request.preferred_provider)

    @staticmethod
    def _generation_request(request: TaskRequest) -> GenerationRequest:
        return GenerationRequest(
            prompt=request.prompt,
            system_message=request.system_message,
            max_tokens=request.max_tokens,
            temperature=request.temperature,
            extra=dict(request.extra),
        )

    @staticmethod
    def _context(request: TaskRequest) -> AttemptContext:
        return AttemptContext(
            subject=request.subject,
            scope=request.scope,
            request_kind=request.request_kind,
            task=resolve_task_category(request.task).value,
        )

    # ========================================================================
    # Exhaustion
    # ========================================================================

    async def _load_deals(self, tenant: str) -> Sequence[DealRecord]:
        if self.deals is None:
            return []
        try:
            return await self.deals.list_deals(tenant)
        except Exception as e:
            logger.warning(f"Could not load deals for fallback plan (tenant '{tenant}'): {e}")
            return []

    async def _exhausted(self, request: TaskRequest, failures: Sequence[ProviderFailure]) -> Dict[str, Any]:
        category = resolve_task_category(request.task).value
        CHAIN_EXHAUSTED.labels(task=category).inc()
        logger.warning(
            f"All providers failed for task '{category}': "
            f"{[(f.provider, f.code.value) for f in failures]}"
        )
        if self.escalation is not None:
            for failure in failures:
                self.escalation.report(
                    "provider_failure",
                    failure.code.value,
                    {"provider": failure.provider, "task": category, "tenant": request.tenant},
                )

        plan = build_fallback_plan(await self._load_deals(request.tenant), self._clock())
        return {
            "ok": False,
            "code": ALL_PROVIDERS_FAILED,
            "providers": [f.to_dict() for f in failures],
            "guidance": build_guidance(failures),
            "fallbackPlan": plan.to_dict(),
        }

    # ========================================================================
    # Operations
    # ========================================================================

    async def run_task(self, request: TaskRequest) -> Dict[str, Any]:
        """Run one task and return its response payload.

        Raises:
            InvalidTaskRequestError: Malformed request
            SessionError: Session is not valid
            RateLimitExceededError: A usage window is exhausted
            InfrastructureError: Rate-limit store or provider registry unreachable
        """
        self.validate(request)
        refusal = await self._gate(request)
        if refusal is not None:
            return refusal

        chain = await self._chain(request)
        try:
            result = await self.executor.execute(
                chain, self._generation_request(request), self._context(request)
            )
        except AllProvidersFailedError as e:
            return await self._exhausted(request, e.failures)

        return {
            "ok": True,
            "result": result.response.content,
            "provider": result.provider.value,
            "model": result.response.model,
            "latency_ms": round(result.latency_ms or 0.0, 1),
        }

    async def stream_task(self, request: TaskRequest) -> AsyncIterator[StreamEvent]:
        """Stream a task as ``chunk`` events followed by exactly one ``done`` event.

        Errors that ``run_task`` raises are raised before the first event.
        """
        self.validate(request)
        refusal = await self._gate(request)
        if refusal is not None:
            yield StreamEvent(event="done", data=refusal)
            return

        chain = await self._chain(request)
        parts: List[str] = []
        provider: Optional[ProviderKind] = None
        start_time = time.monotonic()
        try:
            async for chunk in self.executor.execute_stream(
                chain, self._generation_request(request), self._context(request)
            ):
                provider = chunk.provider
                parts.append(chunk.text)
                yield StreamEvent(event="chunk", data={"text": chunk.text, "provider": chunk.provider.value})
        except StreamAbortedError as e:
            payload = await self._exhausted(request, e.failures)
            payload["partial"] = True
            yield StreamEvent(event="done", data=payload)
            return
        except AllProvidersFailedError as e:
            yield StreamEvent(event="done", data=await self._exhausted(request, e.failures))
            return

        if provider is None:
            yield StreamEvent(event="done", data=await self._exhausted(request, []))
            return

        yield StreamEvent(event="done", data={
            "ok": True,
            "result": "".join(parts),
            "provider": provider.value,
            "model": self.executor.model_for(provider),
            "latency_ms": round((time.monotonic() - start_time) * 1000, 1),
        })

    async def readiness_report(self, refresh: bool = False) -> ReadinessReport:
        if refresh:
            return await self.readiness.retry()
        return await self.readiness.ensure_fresh()

    async def chain_for(self, task: str, tenant: str = "default", preferred: Optional[str] = None) -> List[str]:
        """Chain a task would use right now, for diagnostics."""
        request = TaskRequest(prompt="-", task=task, tenant=tenant, preferred_provider=preferred)
        return [k.value for k in await self._chain(request)]
