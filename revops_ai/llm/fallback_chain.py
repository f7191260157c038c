"""Sequential provider fallback chain executor.

Walks a precomputed chain of providers one call at a time. Every response is
checked by the soft-failure classifier before it is accepted. The first
accepted response wins; if every provider fails the caller receives an
``AllProvidersFailedError`` carrying the ordered per-provider failures.

Provider attempts are strictly sequential so a struggling vendor is never hit
by fan-out and every failure is attributable to exactly one provider.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.usage_log import FireAndForgetUsageLogger, UsageLogEntry
from ..metrics import PROVIDER_ATTEMPTS, PROVIDER_LATENCY
from .base import BaseLLMProvider, LLMResponse
from .error_classifier import classify_exception
from .exceptions import AllProvidersFailedError, SoftFailureError, StreamAbortedError
from .models import GenerationRequest, ProviderErrorCode, ProviderFailure, ProviderKind
from .soft_failure import SoftFailureClassifier

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration
# ============================================================================


class FallbackChainConfig(BaseSettings):
    """Configuration for the fallback chain executor.

    All values can be overridden via environment variables with FALLBACK_ prefix.
    """

    model_config = SettingsConfigDict(env_prefix="FALLBACK_")

    request_timeout: float = Field(
        default=60.0,
        description="Per-provider call timeout (seconds)"
    )
    stream_chunk_timeout: float = Field(
        default=30.0,
        description="Max wait for the next streamed chunk (seconds)"
    )
    soft_failure_scan_limit: Optional[int] = Field(
        default=500,
        description="Characters of each response inspected for failure phrases"
    )


# ============================================================================
# Results
# ============================================================================


@dataclass
class AttemptContext:
    """Who a chain run is for; copied into usage log entries."""
    subject: str = "anonymous"
    scope: Optional[str] = None
    request_kind: str = "quick_action"
    task: str = "default"


@dataclass
class ChainResult:
    """Winning response plus the failures that preceded it."""
    response: LLMResponse
    provider: ProviderKind
    failures: List[ProviderFailure] = field(default_factory=list)
    attempted: List[ProviderKind] = field(default_factory=list)

    @property
    def latency_ms(self) -> Optional[float]:
        return self.response.latency_ms


@dataclass
class StreamChunk:
    """A piece of streamed text and the provider that produced it."""
    provider: ProviderKind
    text: str


# ============================================================================
# Executor
# ============================================================================


class FallbackChainExecutor:
    """Runs a fallback chain against configured provider clients.

    Example:
        executor = FallbackChainExecutor({
            ProviderKind.OPENAI: openai_provider,
            ProviderKind.ANTHROPIC: anthropic_provider,
        })
        chain = build_fallback_chain("coaching", records)
        result = await executor.execute(chain, GenerationRequest(prompt="..."))
    """

    def __init__(
        self,
        providers: Optional[Dict[ProviderKind, BaseLLMProvider]] = None,
        config: Optional[FallbackChainConfig] = None,
        classifier: Optional[SoftFailureClassifier] = None,
        usage_logger: Optional[FireAndForgetUsageLogger] = None,
    ):
        """Initialize the executor.

        Args:
            providers: Provider clients keyed by kind
            config: Timeouts and classifier settings
            classifier: Soft-failure classifier; built from config when omitted
            usage_logger: Destination for per-attempt usage entries
        """
        self._config = config or FallbackChainConfig()
        self._providers: Dict[ProviderKind, BaseLLMProvider] = dict(providers or {})
        self._classifier = classifier or SoftFailureClassifier(
            scan_limit=self._config.soft_failure_scan_limit
        )
        self._usage_logger = usage_logger

        logger.info(
            f"Initialized FallbackChainExecutor with providers="
            f"{[k.value for k in self._providers]}, timeout={self._config.request_timeout}s"
        )

    # ========================================================================
    # Provider Management
    # ========================================================================

    def add_provider(self, kind: ProviderKind, provider: BaseLLMProvider) -> None:
        self._providers[kind] = provider
        logger.info(f"Added provider '{kind.value}'")

    def remove_provider(self, kind: ProviderKind) -> bool:
        if kind in self._providers:
            del self._providers[kind]
            logger.info(f"Removed provider '{kind.value}'")
            return True
        return False

    def get_provider_names(self) -> List[str]:
        return [k.value for k in self._providers]

    def model_for(self, kind: ProviderKind) -> Optional[str]:
        provider = self._providers.get(kind)
        return provider.model if provider is not None else None

    @property
    def classifier(self) -> SoftFailureClassifier:
        return self._classifier

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()

    # ========================================================================
    # Bookkeeping
    # ========================================================================

    def _record(
        self,
        kind: ProviderKind,
        context: AttemptContext,
        success: bool,
        latency_ms: float,
        response: Optional[LLMResponse] = None,
        failure: Optional[ProviderFailure] = None,
    ) -> None:
        outcome = "success" if success else (failure.code.value if failure else "error")
        PROVIDER_ATTEMPTS.labels(provider=kind.value, outcome=outcome).inc()
        PROVIDER_LATENCY.labels(provider=kind.value).observe(latency_ms / 1000)

        if self._usage_logger is None:
            return

        provider = self._providers.get(kind)
        self._usage_logger.log(UsageLogEntry(
            subject=context.subject,
            scope=context.scope,
            request_kind=context.request_kind,
            provider=kind.value,
            model=response.model if response else getattr(provider, "model", None),
            tokens_in=response.tokens_in if response else 0,
            tokens_out=response.tokens_out if response else 0,
            latency_ms=round(latency_ms, 1),
            success=success,
            error_code=None if success else outcome,
            metadata={"task": context.task},
        ))

    def _missing_provider(self, kind: ProviderKind) -> ProviderFailure:
        return ProviderFailure(
            provider=kind.value,
            code=ProviderErrorCode.UNKNOWN,
            message="No client configured for provider",
        )

    @staticmethod
    def _unique(chain: Iterable[ProviderKind]) -> List[ProviderKind]:
        seen: List[ProviderKind] = []
        for kind in chain:
            if kind not in seen:
                seen.append(kind)
        return seen

    # ========================================================================
    # Single Attempt
    # ========================================================================

    async def _try_provider(
        self,
        kind: ProviderKind,
        provider: BaseLLMProvider,
        request: GenerationRequest,
    ) -> LLMResponse:
        """Call one provider and validate its body."""
        kwargs: Dict[str, Any] = dict(request.extra)
        if request.system_message:
            kwargs["system_message"] = request.system_message

        response = await asyncio.wait_for(
            provider.generate_content(
                prompt=request.prompt,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                **kwargs
            ),
            timeout=self._config.request_timeout
        )

        if not response.content or not response.content.strip():
            raise SoftFailureError("Empty response", provider=kind.value)

        verdict = self._classifier.detect(response.content)
        if verdict.is_failure:
            raise SoftFailureError(
                f"Response contained failure phrase '{verdict.pattern}'",
                provider=kind.value,
                pattern=verdict.pattern,
            )

        response.provider = kind.value
        return response

    # ========================================================================
    # Main Execution
    # ========================================================================

    async def execute(
        self,
        chain: Sequence[ProviderKind],
        request: GenerationRequest,
        context: Optional[AttemptContext] = None,
    ) -> ChainResult:
        """Run the chain until one provider returns an accepted response.

        Args:
            chain: Ordered provider kinds to attempt
            request: Prompt and generation parameters
            context: Subject and task details for usage logging

        Returns:
            ChainResult for the first accepted response

        Raises:
            AllProvidersFailedError: If the chain is empty or every provider failed
        """
        context = context or AttemptContext()
        failures: List[ProviderFailure] = []
        attempted: List[ProviderKind] = []

        for kind in self._unique(chain):
            provider = self._providers.get(kind)
            if provider is None:
                failures.append(self._missing_provider(kind))
                logger.warning(f"Provider '{kind.value}' in chain has no client, skipping")
                continue

            attempted.append(kind)
            start_time = time.monotonic()
            try:
                response = await self._try_provider(kind, provider, request)
            except Exception as e:
                latency_ms = (time.monotonic() - start_time) * 1000
                failure = classify_exception(kind.value, e)
                failure.latency_ms = latency_ms
                failures.append(failure)
                self._record(kind, context, False, latency_ms, failure=failure)
                logger.warning(
                    f"Provider '{kind.value}' failed ({failure.code.value}) after "
                    f"{latency_ms:.1f}ms: {failure.message}"
                )
                continue

            latency_ms = (time.monotonic() - start_time) * 1000
            response.latency_ms = latency_ms
            self._record(kind, context, True, latency_ms, response=response)
            logger.info(
                f"Generated content with provider '{kind.value}' in {latency_ms:.1f}ms "
                f"after {len(failures)} failure(s)"
            )
            return ChainResult(response=response, provider=kind, failures=failures, attempted=attempted)

        raise AllProvidersFailedError(failures=failures)

    async def execute_stream(
        self,
        chain: Sequence[ProviderKind],
        request: GenerationRequest,
        context: Optional[AttemptContext] = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream from the first provider whose output passes the classifier.

        The first ``soft_failure_scan_limit`` characters of each stream are
        held back until they have been classified, so a failure phrase never
        reaches the caller and the next provider can still be tried. A
        failure found after text was released raises ``StreamAbortedError``.

        Raises:
            AllProvidersFailedError: If every provider failed before emitting text
            StreamAbortedError: If the winning stream failed mid-way
        """
        context = context or AttemptContext()
        failures: List[ProviderFailure] = []
        hold_back = self._classifier.scan_limit or 0

        kwargs: Dict[str, Any] = dict(request.extra)
        if request.system_message:
            kwargs["system_message"] = request.system_message

        for kind in self._unique(chain):
            provider = self._providers.get(kind)
            if provider is None:
                failures.append(self._missing_provider(kind))
                continue

            detector = self._classifier.stream_detector()
            pending: List[str] = []
            pending_length = 0
            emitted = False
            start_time = time.monotonic()
            stream = provider.stream_content(
                prompt=request.prompt,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                **kwargs
            )
            try:
                while True:
                    try:
                        chunk = await asyncio.wait_for(
                            stream.__anext__(), timeout=self._config.stream_chunk_timeout
                        )
                    except StopAsyncIteration:
                        break

                    verdict = detector.feed(chunk)
                    if verdict.is_failure:
                        raise SoftFailureError(
                            f"Stream contained failure marker '{verdict.pattern}'",
                            provider=kind.value,
                            pattern=verdict.pattern,
                        )

                    if emitted:
                        yield StreamChunk(provider=kind, text=chunk)
                        continue

                    pending.append(chunk)
                    pending_length += len(chunk)
                    if pending_length >= hold_back:
                        emitted = True
                        yield StreamChunk(provider=kind, text="".join(pending))
                        pending = []

                verdict = detector.finish()
                if verdict.is_failure or not detector.text.strip():
                    raise SoftFailureError(
                        f"Stream contained failure phrase '{verdict.pattern}'"
                        if verdict.is_failure else "Empty response",
                        provider=kind.value,
                        pattern=verdict.pattern,
                    )
                if pending:
                    yield StreamChunk(provider=kind, text="".join(pending))

            except Exception as e:
                latency_ms = (time.monotonic() - start_time) * 1000
                failure = classify_exception(kind.value, e)
                failure.latency_ms = latency_ms
                failures.append(failure)
                self._record(kind, context, False, latency_ms, failure=failure)
                logger.warning(
                    f"Stream from provider '{kind.value}' failed ({failure.code.value}): {failure.message}"
                )
                if emitted:
                    raise StreamAbortedError(failure, failures) from e
                continue
            finally:
                await stream.aclose()

            latency_ms = (time.monotonic() - start_time) * 1000
            self._record(kind, context, True, latency_ms)
            logger.info(f"Streamed content with provider '{kind.value}' in {latency_ms:.1f}ms")
            return

        raise AllProvidersFailedError(failures=failures)

    # ========================================================================
    # Status
    # ========================================================================

    def get_status(self) -> Dict[str, Any]:
        return {
            "providers": {
                kind.value: provider.get_model_info()
                for kind, provider in self._providers.items()
            },
            "request_timeout": self._config.request_timeout,
            "soft_failure_version": self._classifier.version,
            "soft_failure_scan_limit": self._classifier.scan_limit,
        }
