"""Task-aware provider fallback chain selection.

Each task category has a fixed provider order tuned to what each vendor does
best. The chain for a request is that order filtered down to the providers
the tenant currently has active.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ..config.exceptions import ConfigurationError
from .models import ProviderKind, ProviderRecord, TaskCategory

logger = logging.getLogger(__name__)


ProviderOrder = Tuple[ProviderKind, ...]

# Coaching favours long-context reasoning; planning and analysis favour
# constrained structured output; image work favours the multimodal model.
TASK_AFFINITY: Dict[TaskCategory, ProviderOrder] = {
    TaskCategory.GENERAL: (ProviderKind.OPENAI, ProviderKind.ANTHROPIC, ProviderKind.GOOGLE),
    TaskCategory.PLANNING: (ProviderKind.OPENAI, ProviderKind.ANTHROPIC, ProviderKind.GOOGLE),
    TaskCategory.COACHING: (ProviderKind.ANTHROPIC, ProviderKind.OPENAI, ProviderKind.GOOGLE),
    TaskCategory.ANALYSIS: (ProviderKind.OPENAI, ProviderKind.ANTHROPIC, ProviderKind.GOOGLE),
    TaskCategory.CHART_INSIGHT: (ProviderKind.OPENAI, ProviderKind.GOOGLE, ProviderKind.ANTHROPIC),
    TaskCategory.IMAGE: (ProviderKind.GOOGLE, ProviderKind.OPENAI, ProviderKind.ANTHROPIC),
    TaskCategory.DEFAULT: (ProviderKind.OPENAI, ProviderKind.ANTHROPIC, ProviderKind.GOOGLE),
}

TASK_ALIASES: Dict[str, TaskCategory] = {
    "plan_my_day": TaskCategory.PLANNING,
    "text_analysis": TaskCategory.ANALYSIS,
    "chart": TaskCategory.CHART_INSIGHT,
    "image_suitable": TaskCategory.IMAGE,
}


def validate_affinity_table(table: Mapping[TaskCategory, Sequence[ProviderKind]]) -> None:
    """Ensure every task category maps to a full, duplicate-free provider order.

    Raises:
        ConfigurationError: If a category or provider kind is missing
    """
    missing = [c.value for c in TaskCategory if c not in table]
    if missing:
        raise ConfigurationError(f"Affinity table missing task categories: {missing}")

    all_kinds = set(ProviderKind)
    for category, order in table.items():
        if len(order) != len(set(order)):
            raise ConfigurationError(f"Duplicate provider in affinity order for '{category.value}'")
        if set(order) != all_kinds:
            absent = sorted(k.value for k in all_kinds - set(order))
            raise ConfigurationError(
                f"Affinity order for '{category.value}' is missing providers: {absent}"
            )


validate_affinity_table(TASK_AFFINITY)


def resolve_task_category(task: Union[str, TaskCategory, None]) -> TaskCategory:
    """Map a task name or alias onto a category; unknown names get DEFAULT."""
    if isinstance(task, TaskCategory):
        return task
    if not task:
        return TaskCategory.DEFAULT

    key = task.strip().lower()
    if key in TASK_ALIASES:
        return TASK_ALIASES[key]
    try:
        return TaskCategory(key)
    except ValueError:
        logger.debug(f"Unknown task category '{task}', using default order")
        return TaskCategory.DEFAULT


def active_kinds(providers: Iterable[ProviderRecord]) -> List[ProviderKind]:
    """Active provider kinds in connection order, de-duplicated."""
    kinds: List[ProviderKind] = []
    for record in providers:
        if record.active and record.kind not in kinds:
            kinds.append(record.kind)
    return kinds


def build_fallback_chain(
    task: Union[str, TaskCategory, None],
    providers: Iterable[ProviderRecord],
    preferred: Optional[Union[str, ProviderKind]] = None,
    table: Optional[Mapping[TaskCategory, Sequence[ProviderKind]]] = None,
) -> List[ProviderKind]:
    """Compute the ordered provider attempt sequence for one request.

    Args:
        task: Task category, alias or free-form name
        providers: Provider records snapshot for the tenant
        preferred: Optional provider the caller wants tried first
        table: Alternative affinity table (validated)

    Returns:
        Ordered, duplicate-free list of active provider kinds. Empty when no
        provider is active.
    """
    if table is None:
        table = TASK_AFFINITY
    else:
        validate_affinity_table(table)

    available = set(active_kinds(providers))
    if not available:
        return []

    category = resolve_task_category(task)
    chain = [kind for kind in table[category] if kind in available]

    if preferred is not None:
        try:
            preferred_kind = ProviderKind(preferred)
        except ValueError:
            logger.warning(f"Ignoring unknown preferred provider '{preferred}'")
        else:
            if preferred_kind in available:
                chain = [preferred_kind] + [k for k in chain if k != preferred_kind]

    logger.debug(f"Fallback chain for {category.value}: {[k.value for k in chain]}")
    return chain
