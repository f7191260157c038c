"""FastAPI application for RevOps AI.

Exposes readiness, task execution (plain and streamed) and diagnostics.
Provider failures never produce a 5xx: an exhausted chain is a 200 response
whose payload carries guidance and a fallback plan.
"""

import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from revops_ai import __version__
from revops_ai.config import load_config, setup_logging
from revops_ai.core.exceptions import (
    InfrastructureError,
    InvalidTaskRequestError,
    RateLimitExceededError,
    SessionError,
)
from revops_ai.core.orchestrator import AIOrchestrator, StreamEvent, TaskRequest
from revops_ai.core.runtime import Runtime, build_runtime
from revops_ai.metrics import render_metrics

logger = logging.getLogger(__name__)

# Global instances
runtime: Optional[Runtime] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global runtime

    # Startup
    logger.info("Starting RevOps AI API...")
    if runtime is None:
        try:
            config = load_config(os.getenv("REVOPS_AI_CONFIG", "config.yaml"))
            setup_logging(config)
            runtime = await build_runtime(config)
            await runtime.orchestrator.readiness_report()
            logger.info("RevOps AI API started successfully")
        except Exception as e:
            logger.error(f"Failed to initialize RevOps AI API: {str(e)}")
            raise

    yield

    # Shutdown
    logger.info("Shutting down RevOps AI API...")
    if runtime is not None:
        await runtime.close()
        runtime = None


app = FastAPI(
    title="RevOps AI API",
    version=__version__,
    description="AI provider orchestration and readiness for revenue pipelines",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Pydantic models for API
class TaskPayload(BaseModel):
    """Request model for AI tasks."""
    prompt: str = Field(..., description="User prompt")
    task: str = Field("default", description="Task category or alias")
    request_kind: str = Field("quick_action", description="Feature issuing the request")
    subject: str = Field("anonymous", description="User the request is billed to")
    scope: str = Field("default", description="Organization the user belongs to")
    preferred_provider: Optional[str] = Field(None, description="Provider to try first")
    rate_limit_group: str = Field("ai_generic", description="Usage windows to check")
    system_message: Optional[str] = None
    max_tokens: int = Field(1000, ge=1, le=32000)
    temperature: float = Field(0.7, ge=0.0, le=2.0)

    def to_request(self, tenant: str) -> TaskRequest:
        return TaskRequest(
            prompt=self.prompt,
            task=self.task,
            request_kind=self.request_kind,
            subject=self.subject,
            scope=self.scope,
            tenant=tenant,
            preferred_provider=self.preferred_provider,
            rate_limit_group=self.rate_limit_group,
            system_message=self.system_message,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )


class HealthResponse(BaseModel):
    """Response model for health checks."""
    status: str
    timestamp: datetime
    version: str
    components: Dict[str, str]


class ChainResponse(BaseModel):
    task: str
    chain: List[str]


# Dependencies
def get_runtime() -> Runtime:
    """Get the runtime instance."""
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Orchestrator not initialized"
        )
    return runtime


def get_orchestrator() -> AIOrchestrator:
    return get_runtime().orchestrator


def _tenant() -> str:
    return get_runtime().config.orchestration.default_tenant


# Error mapping
def _error(status_code: int, code: str, message: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "code": code, "message": message},
        headers=headers,
    )


@app.exception_handler(InvalidTaskRequestError)
async def invalid_request_handler(request: Request, exc: InvalidTaskRequestError):
    return _error(status.HTTP_400_BAD_REQUEST, exc.code, str(exc))


@app.exception_handler(SessionError)
async def session_error_handler(request: Request, exc: SessionError):
    return _error(status.HTTP_401_UNAUTHORIZED, exc.code, str(exc))


@app.exception_handler(RateLimitExceededError)
async def rate_limit_handler(request: Request, exc: RateLimitExceededError):
    retry_after = exc.decision.retry_after_seconds or 1
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "ok": False,
            "code": exc.code,
            "message": str(exc),
            "limit": exc.decision.to_dict(),
        },
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(InfrastructureError)
async def infrastructure_handler(request: Request, exc: InfrastructureError):
    logger.error(f"Infrastructure failure: {exc}")
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc.code, "A required service is unavailable")


# Health check endpoints
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    components = {"api": "healthy"}
    if runtime is None:
        components["orchestrator"] = "unavailable"
    else:
        components["orchestrator"] = "healthy"
        report = runtime.orchestrator.readiness.snapshot()
        components["ai"] = report.variant.value

    overall_status = "healthy" if components["orchestrator"] == "healthy" else "degraded"
    return HealthResponse(
        status=overall_status,
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        components=components,
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    payload, content_type = render_metrics()
    return Response(content=payload, media_type=content_type)


# Readiness endpoints
@app.get("/ai/readiness")
async def get_readiness():
    """Composite readiness: usable flag plus the UI variant to render."""
    report = await get_orchestrator().readiness_report()
    return report.to_dict()


@app.post("/ai/readiness/retry")
async def retry_readiness():
    """Re-run every readiness check."""
    report = await get_orchestrator().readiness_report(refresh=True)
    return report.to_dict()


# Task endpoints
@app.post("/ai/tasks")
async def run_task(payload: TaskPayload):
    """Run an AI task through the provider fallback chain."""
    return await get_orchestrator().run_task(payload.to_request(_tenant()))


def _sse(event: StreamEvent) -> str:
    return f"event: {event.event}\ndata: {json.dumps(event.data)}\n\n"


@app.post("/ai/tasks/stream")
async def stream_task(payload: TaskPayload):
    """Stream an AI task as server-sent events.

    Request, session, rate-limit and infrastructure errors are returned as
    regular error responses before the stream opens.
    """
    events = get_orchestrator().stream_task(payload.to_request(_tenant()))
    first = await events.__anext__()

    async def body() -> AsyncIterator[str]:
        try:
            yield _sse(first)
            async for event in events:
                yield _sse(event)
        finally:
            await events.aclose()

    return StreamingResponse(
        body(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.get("/ai/chain", response_model=ChainResponse)
async def get_chain(task: str = "default", preferred: Optional[str] = None):
    """Provider order a task would use right now."""
    chain = await get_orchestrator().chain_for(task, tenant=_tenant(), preferred=preferred)
    return ChainResponse(task=task, chain=chain)


@app.get("/ai/status")
async def get_status() -> Dict[str, Any]:
    """Executor and escalation diagnostics."""
    current = get_runtime()
    return {
        "executor": current.orchestrator.executor.get_status(),
        "escalation": current.escalation.get_metrics(),
        "usage_write_failures": current.usage_logger.failures,
    }
