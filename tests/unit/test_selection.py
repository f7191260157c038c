"""Unit tests for task-aware fallback chain selection."""

from itertools import combinations

import pytest

from revops_ai.config.exceptions import ConfigurationError
from revops_ai.llm.models import ProviderKind, ProviderRecord, TaskCategory
from revops_ai.llm.selection import (
    TASK_AFFINITY,
    build_fallback_chain,
    resolve_task_category,
    validate_affinity_table,
)

ALL_KINDS = list(ProviderKind)


def _subsets():
    for size in range(len(ALL_KINDS) + 1):
        for subset in combinations(ALL_KINDS, size):
            yield subset


class TestChainInvariants:

    @pytest.mark.parametrize("category", list(TaskCategory))
    def test_chain_is_ordered_subset_without_duplicates(self, category, make_records):
        for subset in _subsets():
            chain = build_fallback_chain(category, make_records(*subset))
            assert len(chain) == len(set(chain))
            assert set(chain) == set(subset)
            expected = [k for k in TASK_AFFINITY[category] if k in subset]
            assert chain == expected

    def test_empty_when_no_providers(self):
        assert build_fallback_chain("coaching", []) == []

    def test_inactive_providers_are_excluded(self):
        providers = [
            ProviderRecord(id="a", kind=ProviderKind.OPENAI, active=False),
            ProviderRecord(id="b", kind=ProviderKind.GOOGLE),
        ]
        assert build_fallback_chain("general", providers) == [ProviderKind.GOOGLE]

    def test_duplicate_records_collapse(self):
        providers = [
            ProviderRecord(id="a", kind=ProviderKind.OPENAI),
            ProviderRecord(id="b", kind=ProviderKind.OPENAI),
        ]
        assert build_fallback_chain("general", providers) == [ProviderKind.OPENAI]


class TestAffinity:

    def test_coaching_prefers_anthropic(self, all_records):
        assert build_fallback_chain("coaching", all_records) == [
            ProviderKind.ANTHROPIC, ProviderKind.OPENAI, ProviderKind.GOOGLE,
        ]

    def test_chart_insight_order(self, all_records):
        assert build_fallback_chain("chart_insight", all_records) == [
            ProviderKind.OPENAI, ProviderKind.GOOGLE, ProviderKind.ANTHROPIC,
        ]

    def test_image_prefers_google(self, all_records):
        assert build_fallback_chain("image_suitable", all_records)[0] == ProviderKind.GOOGLE

    def test_coaching_with_two_providers(self, make_records):
        chain = build_fallback_chain("coaching", make_records(ProviderKind.OPENAI, ProviderKind.GOOGLE))
        assert chain == [ProviderKind.OPENAI, ProviderKind.GOOGLE]

    def test_preferred_moves_to_front(self, all_records):
        chain = build_fallback_chain("coaching", all_records, preferred="google")
        assert chain == [ProviderKind.GOOGLE, ProviderKind.ANTHROPIC, ProviderKind.OPENAI]

    def test_preferred_not_connected_is_ignored(self, make_records):
        chain = build_fallback_chain("general", make_records(ProviderKind.OPENAI), preferred="anthropic")
        assert chain == [ProviderKind.OPENAI]

    def test_unknown_preferred_is_ignored(self, all_records):
        assert build_fallback_chain("general", all_records, preferred="mistral")[0] == ProviderKind.OPENAI


class TestTaskResolution:

    @pytest.mark.parametrize("task,expected", [
        ("plan_my_day", TaskCategory.PLANNING),
        ("text_analysis", TaskCategory.ANALYSIS),
        ("chart", TaskCategory.CHART_INSIGHT),
        ("COACHING", TaskCategory.COACHING),
        ("something_new", TaskCategory.DEFAULT),
        ("", TaskCategory.DEFAULT),
        (None, TaskCategory.DEFAULT),
    ])
    def test_resolve(self, task, expected):
        assert resolve_task_category(task) == expected


class TestTableValidation:

    def test_builtin_table_is_valid(self):
        validate_affinity_table(TASK_AFFINITY)

    def test_missing_category_rejected(self):
        table = dict(TASK_AFFINITY)
        del table[TaskCategory.IMAGE]
        with pytest.raises(ConfigurationError):
            validate_affinity_table(table)

    def test_duplicate_provider_rejected(self):
        table = dict(TASK_AFFINITY)
        table[TaskCategory.GENERAL] = (ProviderKind.OPENAI, ProviderKind.OPENAI, ProviderKind.GOOGLE)
        with pytest.raises(ConfigurationError):
            validate_affinity_table(table)

    def test_missing_provider_rejected(self):
        table = dict(TASK_AFFINITY)
        table[TaskCategory.GENERAL] = (ProviderKind.OPENAI, ProviderKind.GOOGLE)
        with pytest.raises(ConfigurationError):
            build_fallback_chain("general", [], table=table)
