"""Command Line Interface for RevOps AI.

Provides tools for inspecting provider chains, soft-failure classification,
fallback plans, rate limits and readiness.
"""

from revops_ai.cli.main import cli

__all__ = ["cli"]
