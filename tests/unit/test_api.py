"""Tests for the HTTP API."""

import json

import pytest
from fastapi.testclient import TestClient

from revops_ai.api import main as api_main
from revops_ai.config.loader import RevOpsAIConfig
from revops_ai.core.escalation import EscalationReporter
from revops_ai.core.interfaces import SessionResult, StaticServices
from revops_ai.core.orchestrator import AIOrchestrator
from revops_ai.core.rate_limiter import InMemoryRateLimitStore, RateLimitBucket, RateLimiter
from revops_ai.core.readiness_driver import ReadinessDriver
from revops_ai.core.runtime import Runtime
from revops_ai.llm.exceptions import QuotaExceededError
from revops_ai.llm.manager import ProviderManager
from revops_ai.llm.models import ProviderKind


@pytest.fixture
def make_client(monkeypatch, make_provider, make_executor, usage_logger, usage_sink, date_clock, fake_clock):
    """Serve the app over a hand-built runtime."""
    clients = []

    def _make(providers, services, groups=None):
        escalation = EscalationReporter(clock=fake_clock)
        store = InMemoryRateLimitStore()
        orchestrator = AIOrchestrator(
            readiness=ReadinessDriver(services, clock=date_clock, escalation=escalation),
            rate_limiter=RateLimiter(store, groups=groups, clock=date_clock),
            registry=services,
            executor=make_executor(providers),
            escalation=escalation,
            deals=services,
            clock=date_clock,
        )
        runtime = Runtime(
            config=RevOpsAIConfig(),
            orchestrator=orchestrator,
            manager=ProviderManager(providers=providers),
            store=store,
            usage_logger=usage_logger,
            usage_sink=usage_sink,
            escalation=escalation,
        )
        monkeypatch.setattr(api_main, "runtime", runtime)
        client = TestClient(api_main.app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


def parse_sse(text):
    events = []
    for block in text.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


class TestHealth:

    def test_health(self, make_client, make_provider, ready_services):
        client = make_client({ProviderKind.OPENAI: make_provider("openai")}, ready_services)
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"]["orchestrator"] == "healthy"
        assert "ai" in data["components"]

    def test_readiness(self, make_client, make_provider, ready_services):
        client = make_client({ProviderKind.OPENAI: make_provider("openai")}, ready_services)
        data = client.get("/ai/readiness").json()
        assert data["state"] == "AI_READY"
        assert data["usable"] is True
        assert data["variant"] == "ready"

    def test_readiness_retry(self, make_client):
        client = make_client({}, StaticServices(providers=[]))
        data = client.post("/ai/readiness/retry").json()
        assert data["usable"] is False
        assert data["variant"] == "connect_provider"

    def test_cors_preflight_uses_allowed_origins(self, make_client, ready_services):
        client = make_client({}, ready_services)
        preflight = {"Access-Control-Request-Method": "POST"}

        allowed = client.options("/ai/tasks", headers={"Origin": "http://localhost:3000", **preflight})
        denied = client.options("/ai/tasks", headers={"Origin": "https://elsewhere.example", **preflight})

        assert allowed.status_code == 200
        assert allowed.headers["access-control-allow-origin"] == "http://localhost:3000"
        assert denied.status_code == 400

    def test_metrics(self, make_client, ready_services):
        client = make_client({}, ready_services)
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "revops_ai_chain_exhausted_total" in response.text


class TestTasks:

    def test_success(self, make_client, make_provider, ready_services):
        client = make_client({ProviderKind.OPENAI: make_provider("openai", "Call Acme today.")}, ready_services)
        response = client.post("/ai/tasks", json={"prompt": "What next?"})

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["result"] == "Call Acme today."
        assert data["provider"] == "openai"

    def test_exhausted_chain_is_not_a_server_error(self, make_client, make_provider, ready_services):
        client = make_client({
            ProviderKind.OPENAI: make_provider("openai", error=QuotaExceededError("insufficient_quota", status_code=429)),
        }, ready_services)
        response = client.post("/ai/tasks", json={"prompt": "Plan my day", "task": "plan_my_day"})

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is False
        assert data["code"] == "ALL_PROVIDERS_FAILED"
        assert data["providers"][0]["code"] == "INSUFFICIENT_QUOTA"
        assert data["fallbackPlan"]["mode"] == "basic"
        assert data["guidance"]["providers"][0]["dashboard_url"].startswith("https://platform.openai.com")

    def test_not_ready(self, make_client, make_provider):
        client = make_client({ProviderKind.OPENAI: make_provider("openai")}, StaticServices(providers=[]))
        data = client.post("/ai/tasks", json={"prompt": "hi"}).json()
        assert data == {"ok": False, "code": "NO_PROVIDERS", "variant": "connect_provider"}

    def test_invalid_request(self, make_client, make_provider, ready_services):
        client = make_client({ProviderKind.OPENAI: make_provider("openai")}, ready_services)
        response = client.post("/ai/tasks", json={"prompt": "hi", "preferred_provider": "mistral"})
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    def test_missing_prompt_is_validation_error(self, make_client, ready_services):
        client = make_client({}, ready_services)
        assert client.post("/ai/tasks", json={}).status_code == 422

    def test_session_error(self, make_client, make_provider, all_records):
        services = StaticServices(providers=all_records, session=SessionResult(ok=False, code="EXPIRED"))
        client = make_client({ProviderKind.OPENAI: make_provider("openai")}, services)
        response = client.post("/ai/tasks", json={"prompt": "hi"})
        assert response.status_code == 401
        assert response.json()["code"] == "SESSION_ERROR"

    def test_rate_limited(self, make_client, make_provider, ready_services):
        groups = {"ai_generic": (RateLimitBucket("ai.generic", 60, 1, "AI requests per minute"),)}
        client = make_client({ProviderKind.OPENAI: make_provider("openai")}, ready_services, groups=groups)

        assert client.post("/ai/tasks", json={"prompt": "one"}).status_code == 200
        response = client.post("/ai/tasks", json={"prompt": "two"})

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "30"
        data = response.json()
        assert data["code"] == "AI_LIMIT_REACHED"
        assert data["limit"]["bucket"] == "ai.generic"


class TestStreaming:

    def test_stream_events(self, make_client, make_provider, ready_services):
        client = make_client({
            ProviderKind.OPENAI: make_provider("openai", chunks=["Call ", "Acme ", "today."]),
        }, ready_services)
        response = client.post("/ai/tasks/stream", json={"prompt": "What next?"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = parse_sse(response.text)
        assert events[-1][0] == "done"
        assert events[-1][1]["result"] == "Call Acme today."
        assert "".join(data["text"] for name, data in events if name == "chunk") == "Call Acme today."

    def test_stream_exhausted(self, make_client, make_provider, ready_services):
        client = make_client({
            ProviderKind.OPENAI: make_provider("openai", "Please check your API key."),
        }, ready_services)
        events = parse_sse(client.post("/ai/tasks/stream", json={"prompt": "hi"}).text)

        assert [name for name, _ in events] == ["done"]
        assert events[0][1]["code"] == "ALL_PROVIDERS_FAILED"
        assert "fallbackPlan" in events[0][1]

    def test_stream_invalid_request(self, make_client, ready_services):
        client = make_client({}, ready_services)
        response = client.post("/ai/tasks/stream", json={"prompt": "hi", "request_kind": "nope"})
        assert response.status_code == 400


class TestDiagnostics:

    def test_chain(self, make_client, ready_services):
        client = make_client({}, ready_services)
        data = client.get("/ai/chain", params={"task": "image_suitable", "preferred": "anthropic"}).json()
        assert data == {"task": "image_suitable", "chain": ["anthropic", "google", "openai"]}

    def test_status(self, make_client, make_provider, ready_services):
        client = make_client({ProviderKind.OPENAI: make_provider("openai")}, ready_services)
        data = client.get("/ai/status").json()
        assert "openai" in data["executor"]["providers"]
        assert data["escalation"]["total"] == 0
        assert data["usage_write_failures"] == 0
