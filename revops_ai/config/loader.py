"""Configuration loader for RevOps AI."""

import os
import logging
import logging.handlers
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class LLMProviderConfig(BaseModel):
    """Configuration for one upstream provider."""
    api_key: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = None
    timeout_seconds: int = 60
    enabled: bool = True


class OrchestrationConfig(BaseModel):
    """Fallback chain and readiness timing."""
    request_timeout: float = 60.0
    health_check_timeout: float = 10.0
    default_tenant: str = "default"


class RateLimitBackendConfig(BaseModel):
    """Where rate-limit counters live."""
    backend: str = "memory"
    redis_url: Optional[str] = None
    database_url: Optional[str] = None
    key_prefix: str = "revops_ai:ratelimit"


class SoftFailureConfig(BaseModel):
    """Versioned soft-failure phrase list."""
    version: Optional[str] = None
    phrases: Optional[List[str]] = None
    scan_limit: Optional[int] = 500


class EscalationCategoryConfig(BaseModel):
    """Throttle settings for one telemetry category."""
    max_per_window: int
    escalation_threshold: int
    window_seconds: float = 60.0


class EscalationConfig(BaseModel):
    """Escalation reporter overrides keyed by category."""
    categories: Dict[str, EscalationCategoryConfig] = Field(default_factory=dict)


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size_mb: int = 50
    backup_count: int = 5
    enable_console_logging: bool = True


class APIConfig(BaseModel):
    """API server configuration."""
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False


class RevOpsAIConfig(BaseModel):
    """Main RevOps AI configuration."""

    llm: Dict[str, LLMProviderConfig] = Field(default_factory=dict)
    orchestration: OrchestrationConfig = Field(default_factory=OrchestrationConfig)
    rate_limits: RateLimitBackendConfig = Field(default_factory=RateLimitBackendConfig)
    soft_failure: SoftFailureConfig = Field(default_factory=SoftFailureConfig)
    escalation: EscalationConfig = Field(default_factory=EscalationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: APIConfig = Field(default_factory=APIConfig)


class ConfigurationLoader:
    """Lazily loads and caches configuration."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to configuration file
        """
        self.config_path = Path(config_path).expanduser() if config_path else Path("config.yaml")
        self._config: Optional[RevOpsAIConfig] = None

    def load_config(self) -> RevOpsAIConfig:
        """Load configuration from file and environment."""
        if self._config is None:
            self._config = load_config(self.config_path)
        return self._config

    def __repr__(self) -> str:
        return f"ConfigurationLoader(config_path={self.config_path})"


def load_config(config_path: Optional[Union[str, Path]] = None) -> RevOpsAIConfig:
    """Load RevOps AI configuration from file and environment variables.

    Args:
        config_path: Path to configuration file. Defaults to config.yaml in current directory.

    Returns:
        RevOpsAIConfig instance with loaded configuration

    Raises:
        ConfigurationError: If the file cannot be parsed or the configuration is invalid
    """
    config_path = Path(config_path) if config_path is not None else Path("config.yaml")

    config_data: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse {config_path}: {e}") from e
        logger.info(f"Loaded configuration from {config_path}")
    else:
        logger.info(f"Config file {config_path} not found, using defaults")

    config_data = _apply_environment_overrides(config_data)

    try:
        config = RevOpsAIConfig.model_validate(config_data)
    except ValidationError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    logger.info("Configuration validated successfully")
    return config


_PROVIDER_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GOOGLE_API_KEY",
}


def _apply_environment_overrides(config_data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration.

    Args:
        config_data: Base configuration data from file

    Returns:
        Configuration data with environment overrides applied
    """
    for provider, env_name in _PROVIDER_KEY_ENV.items():
        if os.getenv(env_name):
            config_data.setdefault('llm', {}).setdefault(provider, {})
            config_data['llm'][provider]['api_key'] = os.getenv(env_name)

    if os.getenv('REDIS_URL'):
        config_data.setdefault('rate_limits', {})['redis_url'] = os.getenv('REDIS_URL')

    if os.getenv('DATABASE_URL'):
        config_data.setdefault('rate_limits', {})['database_url'] = os.getenv('DATABASE_URL')

    if os.getenv('RATE_LIMIT_BACKEND'):
        config_data.setdefault('rate_limits', {})['backend'] = os.getenv('RATE_LIMIT_BACKEND')

    if os.getenv('LOG_LEVEL'):
        config_data.setdefault('logging', {})['level'] = os.getenv('LOG_LEVEL')

    if os.getenv('DEBUG'):
        config_data.setdefault('api', {})['debug'] = os.getenv('DEBUG').lower() in ('true', '1', 'yes')

    return config_data


def setup_logging(config: RevOpsAIConfig) -> None:
    """Set up logging based on configuration.

    Args:
        config: RevOps AI configuration instance
    """
    formatter = logging.Formatter(config.logging.format)
    handlers: List[logging.Handler] = []

    if config.logging.file_path:
        log_file = Path(config.logging.file_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=config.logging.max_file_size_mb * 1024 * 1024,
            backupCount=config.logging.backup_count
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if config.logging.enable_console_logging:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.logging.level.upper(), logging.INFO))
    root_logger.handlers = handlers

    logger.info("Logging configured successfully")


def validate_production_config(config: RevOpsAIConfig) -> List[str]:
    """Validate configuration for production deployment.

    Returns:
        List of validation warnings
    """
    issues = []

    if not any(p.api_key for p in config.llm.values()):
        issues.append("No provider API keys configured - every task will use the fallback plan")

    if config.rate_limits.backend == "memory":
        issues.append("In-memory rate limiting is not shared across processes")

    if config.rate_limits.backend == "redis" and not config.rate_limits.redis_url:
        issues.append("Redis rate limiting selected but REDIS_URL is not set")

    if config.rate_limits.backend == "postgres" and not config.rate_limits.database_url:
        issues.append("Postgres rate limiting selected but DATABASE_URL is not set")

    if config.api.debug:
        issues.append("Debug mode is enabled - disable for production")

    if config.logging.level.upper() == 'DEBUG':
        issues.append("Debug logging enabled - may impact performance in production")

    return issues
