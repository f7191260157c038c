"""AI readiness state machine.

A pure reducer that sequences session validity, provider availability,
configuration validity and a health check into one composite state. The
reducer reads no clock and performs no I/O: the same event sequence always
produces the same node. Timestamps travel inside events.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Union


class ReadinessState(str, Enum):
    """Closed set of readiness states."""
    UNINITIALIZED = "UNINITIALIZED"
    SESSION_CHECKING = "SESSION_CHECKING"
    SESSION_INVALID = "SESSION_INVALID"
    PROVIDER_CHECKING = "PROVIDER_CHECKING"
    PROVIDER_NOT_CONFIGURED = "PROVIDER_NOT_CONFIGURED"
    CONFIG_CHECKING = "CONFIG_CHECKING"
    CONFIG_ERROR = "CONFIG_ERROR"
    HEALTH_CHECK_PENDING = "HEALTH_CHECK_PENDING"
    HEALTH_CHECK_FAILED = "HEALTH_CHECK_FAILED"
    AI_READY = "AI_READY"
    AI_DEGRADED = "AI_DEGRADED"
    AI_DISABLED = "AI_DISABLED"


class UIVariant(str, Enum):
    """What the client should render for a readiness state."""
    LOADING = "loading"
    SESSION_INVALID = "session_invalid"
    CONNECT_PROVIDER = "connect_provider"
    CONFIG_ERROR = "config_error"
    HEALTH_WARNING = "health_warning"
    READY = "ready"
    DEGRADED = "degraded"
    DISABLED = "disabled"


CHECKING_STATES = frozenset({
    ReadinessState.SESSION_CHECKING,
    ReadinessState.PROVIDER_CHECKING,
    ReadinessState.CONFIG_CHECKING,
    ReadinessState.HEALTH_CHECK_PENDING,
})

USABLE_STATES = frozenset({ReadinessState.AI_READY, ReadinessState.AI_DEGRADED})

_UI_VARIANTS = {
    ReadinessState.UNINITIALIZED: UIVariant.LOADING,
    ReadinessState.SESSION_CHECKING: UIVariant.LOADING,
    ReadinessState.PROVIDER_CHECKING: UIVariant.LOADING,
    ReadinessState.CONFIG_CHECKING: UIVariant.LOADING,
    ReadinessState.HEALTH_CHECK_PENDING: UIVariant.LOADING,
    ReadinessState.SESSION_INVALID: UIVariant.SESSION_INVALID,
    ReadinessState.PROVIDER_NOT_CONFIGURED: UIVariant.CONNECT_PROVIDER,
    ReadinessState.CONFIG_ERROR: UIVariant.CONFIG_ERROR,
    ReadinessState.HEALTH_CHECK_FAILED: UIVariant.HEALTH_WARNING,
    ReadinessState.AI_READY: UIVariant.READY,
    ReadinessState.AI_DEGRADED: UIVariant.DEGRADED,
    ReadinessState.AI_DISABLED: UIVariant.DISABLED,
}


# ============================================================================
# Node
# ============================================================================


@dataclass(frozen=True)
class ReadinessContext:
    """Diagnostic fields; never consulted to choose a transition."""
    last_checked_at: Optional[datetime] = None
    has_session: bool = False
    has_providers: bool = False
    provider_count: int = 0
    config_healthy: bool = False
    degraded: bool = False
    last_error_code: Optional[str] = None
    last_error_message: Optional[str] = None
    last_health_check_network_error: bool = False
    disabled_by_plan: bool = False


@dataclass(frozen=True)
class ReadinessNode:
    state: ReadinessState = ReadinessState.UNINITIALIZED
    context: ReadinessContext = field(default_factory=ReadinessContext)


def initial_node() -> ReadinessNode:
    return ReadinessNode()


# ============================================================================
# Events
# ============================================================================


@dataclass(frozen=True)
class AppBoot:
    at: Optional[datetime] = None


@dataclass(frozen=True)
class SessionOk:
    pass


@dataclass(frozen=True)
class SessionInvalid:
    reason: Optional[str] = None


@dataclass(frozen=True)
class SessionExpired:
    pass


@dataclass(frozen=True)
class ProvidersFound:
    count: int


@dataclass(frozen=True)
class NoProviders:
    code: str = "NO_PROVIDERS"
    message: Optional[str] = None


@dataclass(frozen=True)
class ConfigOk:
    pass


@dataclass(frozen=True)
class ConfigFailed:
    code: str
    message: Optional[str] = None


@dataclass(frozen=True)
class HealthCheckOk:
    degraded: bool = False


@dataclass(frozen=True)
class HealthCheckFailed:
    network_error: bool = False
    message: Optional[str] = None


@dataclass(frozen=True)
class DisabledByPlan:
    pass


@dataclass(frozen=True)
class Reset:
    pass


ReadinessEvent = Union[
    AppBoot, SessionOk, SessionInvalid, SessionExpired, ProvidersFound, NoProviders,
    ConfigOk, ConfigFailed, HealthCheckOk, HealthCheckFailed, DisabledByPlan, Reset,
]


# ============================================================================
# Reducer
# ============================================================================


def _session_lost(node: ReadinessNode, code: str, message: str) -> ReadinessNode:
    return ReadinessNode(
        state=ReadinessState.SESSION_INVALID,
        context=replace(
            node.context,
            has_session=False,
            last_error_code=code,
            last_error_message=message,
        ),
    )


def _health_ok(node: ReadinessNode, event: HealthCheckOk) -> ReadinessNode:
    state = ReadinessState.AI_DEGRADED if event.degraded else ReadinessState.AI_READY
    return ReadinessNode(
        state=state,
        context=replace(
            node.context,
            degraded=event.degraded,
            last_health_check_network_error=False,
            last_error_code=None,
            last_error_message=None,
        ),
    )


def _health_failed(node: ReadinessNode, event: HealthCheckFailed) -> ReadinessNode:
    return ReadinessNode(
        state=ReadinessState.HEALTH_CHECK_FAILED,
        context=replace(
            node.context,
            last_health_check_network_error=event.network_error,
            last_error_code="HEALTH_CHECK_FAILED",
            last_error_message=event.message,
        ),
    )


def _providers(
    node: ReadinessNode,
    count: int,
    code: str = "NO_PROVIDERS",
    message: Optional[str] = None,
) -> ReadinessNode:
    if count <= 0:
        return ReadinessNode(
            state=ReadinessState.PROVIDER_NOT_CONFIGURED,
            context=replace(
                node.context,
                has_providers=False,
                provider_count=0,
                last_error_code=code,
                last_error_message=message or "No AI provider is connected",
            ),
        )
    return ReadinessNode(
        state=ReadinessState.CONFIG_CHECKING,
        context=replace(
            node.context,
            has_providers=True,
            provider_count=count,
            last_error_code=None,
            last_error_message=None,
        ),
    )


def _session_ok(node: ReadinessNode) -> ReadinessNode:
    return ReadinessNode(
        state=ReadinessState.PROVIDER_CHECKING,
        context=replace(node.context, has_session=True, last_error_code=None, last_error_message=None),
    )


def _config_ok(node: ReadinessNode) -> ReadinessNode:
    return ReadinessNode(
        state=ReadinessState.HEALTH_CHECK_PENDING,
        context=replace(node.context, config_healthy=True, last_error_code=None, last_error_message=None),
    )


def reduce(node: ReadinessNode, event: ReadinessEvent) -> ReadinessNode:
    """Apply one event. Unhandled (state, event) pairs return the node unchanged."""
    state = node.state

    if isinstance(event, Reset):
        return initial_node()

    if state == ReadinessState.AI_DISABLED:
        return node

    if isinstance(event, DisabledByPlan):
        if state in CHECKING_STATES:
            return ReadinessNode(
                state=ReadinessState.AI_DISABLED,
                context=replace(
                    node.context,
                    disabled_by_plan=True,
                    last_error_code="AI_DISABLED",
                    last_error_message="AI features are not included in the current plan",
                ),
            )
        return node

    if state == ReadinessState.UNINITIALIZED:
        if isinstance(event, AppBoot):
            return ReadinessNode(
                state=ReadinessState.SESSION_CHECKING,
                context=replace(node.context, last_checked_at=event.at),
            )
        return node

    # Losing the session interrupts any in-flight check as well as a usable state
    if state in CHECKING_STATES or state in USABLE_STATES:
        if isinstance(event, SessionInvalid):
            return _session_lost(node, "SESSION_INVALID", event.reason or "Session is not valid")
        if isinstance(event, SessionExpired):
            return _session_lost(node, "SESSION_EXPIRED", "Session expired")

    if state == ReadinessState.SESSION_CHECKING:
        if isinstance(event, SessionOk):
            return _session_ok(node)
        return node

    if state == ReadinessState.SESSION_INVALID:
        if isinstance(event, SessionOk):
            return _session_ok(node)
        return node

    if state in (ReadinessState.PROVIDER_CHECKING, ReadinessState.PROVIDER_NOT_CONFIGURED):
        if isinstance(event, ProvidersFound):
            if state == ReadinessState.PROVIDER_NOT_CONFIGURED and event.count <= 0:
                return node
            return _providers(node, event.count)
        if isinstance(event, NoProviders) and state == ReadinessState.PROVIDER_CHECKING:
            return _providers(node, 0, event.code, event.message)
        return node

    if state in (ReadinessState.CONFIG_CHECKING, ReadinessState.CONFIG_ERROR):
        if isinstance(event, ConfigOk):
            return _config_ok(node)
        if isinstance(event, ConfigFailed) and state == ReadinessState.CONFIG_CHECKING:
            return ReadinessNode(
                state=ReadinessState.CONFIG_ERROR,
                context=replace(
                    node.context,
                    config_healthy=False,
                    last_error_code=event.code,
                    last_error_message=event.message,
                ),
            )
        return node

    if state == ReadinessState.HEALTH_CHECK_PENDING:
        if isinstance(event, HealthCheckOk):
            return _health_ok(node, event)
        if isinstance(event, HealthCheckFailed):
            return _health_failed(node, event)
        return node

    if state == ReadinessState.HEALTH_CHECK_FAILED:
        if isinstance(event, HealthCheckOk):
            return _health_ok(node, event)
        return node

    if state in USABLE_STATES:
        if isinstance(event, HealthCheckOk):
            return _health_ok(node, event)
        if isinstance(event, HealthCheckFailed):
            return _health_failed(node, event)
        return node

    return node


def replay(events: Iterable[ReadinessEvent], node: Optional[ReadinessNode] = None) -> ReadinessNode:
    """Fold an event sequence through the reducer."""
    current = node or initial_node()
    for event in events:
        current = reduce(current, event)
    return current


def is_usable(state: ReadinessState) -> bool:
    """True only when AI features may run (ready or degraded)."""
    return state in USABLE_STATES


def is_checking(state: ReadinessState) -> bool:
    return state in CHECKING_STATES or state == ReadinessState.UNINITIALIZED


def ui_variant(state: ReadinessState) -> UIVariant:
    return _UI_VARIANTS[state]


def error_code_for(state: ReadinessState) -> str:
    """Code reported to callers when a task is refused for readiness reasons."""
    if state == ReadinessState.PROVIDER_NOT_CONFIGURED:
        return "NO_PROVIDERS"
    if state == ReadinessState.SESSION_INVALID:
        return "SESSION_ERROR"
    if state == ReadinessState.AI_DISABLED:
        return "AI_DISABLED"
    return "AI_NOT_READY"
