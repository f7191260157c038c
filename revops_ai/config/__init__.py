"""Configuration management.

Handles YAML configuration loading, environment overrides
and logging setup.
"""

from revops_ai.config.loader import (
    ConfigurationLoader,
    RevOpsAIConfig,
    load_config,
    setup_logging,
)
from revops_ai.config.exceptions import ConfigurationError

__all__ = [
    "ConfigurationLoader",
    "RevOpsAIConfig",
    "load_config",
    "setup_logging",
    "ConfigurationError",
]
