"""RevOps AI: provider orchestration and readiness for AI-backed pipeline features.

Decides whether an AI feature may run, which upstream model provider to call,
how to recover from responses that look successful but are not, and how to
degrade into a deterministic plan when every provider is unavailable.
"""

__version__ = "0.1.0"
__author__ = "RevOps AI Team"
__license__ = "MIT"

from revops_ai.core.orchestrator import AIOrchestrator, TaskRequest
from revops_ai.core.readiness import ReadinessState, reduce
from revops_ai.config.loader import ConfigurationLoader

__all__ = [
    "__version__",
    "__author__",
    "__license__",
    "AIOrchestrator",
    "TaskRequest",
    "ReadinessState",
    "reduce",
    "ConfigurationLoader",
]
