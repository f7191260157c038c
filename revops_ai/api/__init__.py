"""REST API for RevOps AI.

Provides FastAPI-based endpoints for AI readiness and task execution.
"""

from revops_ai.api.main import app

__all__ = [
    "app",
]
