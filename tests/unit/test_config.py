"""Unit tests for configuration loading and runtime wiring."""

import pytest

from revops_ai.config import ConfigurationError, load_config
from revops_ai.config.loader import RevOpsAIConfig, validate_production_config
from revops_ai.core.interfaces import StaticServices
from revops_ai.core.orchestrator import TaskRequest
from revops_ai.core.rate_limiter import InMemoryRateLimitStore
from revops_ai.core.runtime import build_runtime
from revops_ai.core.usage_log import LoggingUsageSink
from revops_ai.llm.manager import ProviderManager
from revops_ai.llm.models import ProviderKind

PROVIDER_ENV = ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GOOGLE_API_KEY", "REDIS_URL", "DATABASE_URL",
                "RATE_LIMIT_BACKEND", "LOG_LEVEL", "DEBUG")


@pytest.fixture
def clean_env(monkeypatch):
    for name in PROVIDER_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadConfig:

    def test_missing_file_uses_defaults(self, clean_env, tmp_path):
        config = load_config(tmp_path / "absent.yaml")
        assert config.llm == {}
        assert config.rate_limits.backend == "memory"
        assert config.soft_failure.scan_limit == 500
        assert config.api.model_dump() == {"host": "0.0.0.0", "port": 8000, "debug": False}

    def test_yaml_file(self, clean_env, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "llm:\n"
            "  anthropic:\n"
            "    api_key: sk-ant\n"
            "    model: claude-3-5-haiku-latest\n"
            "orchestration:\n"
            "  request_timeout: 15\n"
            "escalation:\n"
            "  categories:\n"
            "    invariant:\n"
            "      max_per_window: 1\n"
            "      escalation_threshold: 2\n"
        )
        config = load_config(path)
        assert config.llm["anthropic"].model == "claude-3-5-haiku-latest"
        assert config.orchestration.request_timeout == 15
        assert config.escalation.categories["invariant"].max_per_window == 1

    def test_environment_overrides(self, clean_env, tmp_path):
        clean_env.setenv("OPENAI_API_KEY", "sk-env")
        clean_env.setenv("RATE_LIMIT_BACKEND", "redis")
        clean_env.setenv("REDIS_URL", "redis://cache:6379/0")

        config = load_config(tmp_path / "absent.yaml")

        assert config.llm["openai"].api_key == "sk-env"
        assert config.rate_limits.backend == "redis"
        assert config.rate_limits.redis_url == "redis://cache:6379/0"

    def test_invalid_yaml(self, clean_env, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("llm: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_invalid_values(self, clean_env, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("orchestration:\n  request_timeout: soon\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_production_warnings(self):
        issues = validate_production_config(RevOpsAIConfig())
        assert any("No provider API keys" in issue for issue in issues)
        assert any("In-memory rate limiting" in issue for issue in issues)


class TestBuildRuntime:

    @pytest.mark.asyncio
    async def test_runtime_runs_tasks(self, clean_env, make_provider):
        provider = make_provider("openai", "Follow up with Acme.")
        manager = ProviderManager(providers={ProviderKind.OPENAI: provider})

        runtime = await build_runtime(RevOpsAIConfig(), manager=manager, deals=StaticServices())
        try:
            assert isinstance(runtime.store, InMemoryRateLimitStore)
            assert isinstance(runtime.usage_sink, LoggingUsageSink)

            payload = await runtime.orchestrator.run_task(TaskRequest(prompt="What next?"))
            assert payload["ok"] is True
            assert payload["provider"] == "openai"
        finally:
            await runtime.close()

        assert provider.closed

    @pytest.mark.asyncio
    async def test_runtime_without_providers_refuses(self, clean_env):
        runtime = await build_runtime(RevOpsAIConfig(), manager=ProviderManager(providers={}))
        try:
            payload = await runtime.orchestrator.run_task(TaskRequest(prompt="What next?"))
            assert payload["code"] == "NO_PROVIDERS"
        finally:
            await runtime.close()
