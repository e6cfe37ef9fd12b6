"""Application configuration settings.

This module provides centralized configuration management using environment
variables with sensible defaults.
"""

import logging
import os
from dataclasses import dataclass

import structlog


def _get_bool_env(name: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable.

    Args:
        name: Environment variable name.
        default: Default value if not set.

    Returns:
        Boolean value from environment.
    """
    value = os.getenv(name, "").lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def _get_float_env(name: str, default: float) -> float:
    """Get a float value from environment variable, falling back on bad input."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_int_env(name: str, default: int) -> int:
    """Get an integer value from environment variable, falling back on bad input."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        METRICS_BASE_URL: Base URL of the monitoring backend.
        METRICS_TIMEOUT_SECONDS: Overall time budget for one fetch.
        METRICS_RETRY_ATTEMPTS: Attempts per fetch for transient failures.
        POLL_INTERVAL_SECONDS: Interval between scheduled refreshes.
        DEGRADED_FAILURE_THRESHOLD: Consecutive failures before degraded state.
        STALE_AFTER_SECONDS: Age after which the snapshot is shown as stale.
        FALLBACK_SEED: Seed for the fallback roster and synthesized trends.
        DEFAULT_RESPONSE_TIME_MS: Average latency used when duration is unknown.
        COST_PER_1K_TOKENS: USD cost applied per thousand tokens.
        TOP_PERFORMERS_LIMIT: Number of agents in the top performers list.
        CHECK_HEALTH_ON_EMPTY: Check /health when the backend reports no agents.
        LOG_LEVEL: Logging level.
    """

    # Monitoring backend
    METRICS_BASE_URL: str = "http://localhost:4001"
    METRICS_TIMEOUT_SECONDS: float = 10.0
    METRICS_RETRY_ATTEMPTS: int = 2

    # Polling
    POLL_INTERVAL_SECONDS: float = 30.0
    DEGRADED_FAILURE_THRESHOLD: int = 3
    STALE_AFTER_SECONDS: float = 90.0

    # Derivation
    FALLBACK_SEED: int = 42
    DEFAULT_RESPONSE_TIME_MS: float = 0.0
    COST_PER_1K_TOKENS: float = 0.02
    TOP_PERFORMERS_LIMIT: int = 5
    CHECK_HEALTH_ON_EMPTY: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Returns:
            Settings instance populated from environment.
        """
        return cls(
            METRICS_BASE_URL=os.getenv("METRICS_BASE_URL", "http://localhost:4001"),
            METRICS_TIMEOUT_SECONDS=_get_float_env("METRICS_TIMEOUT_SECONDS", 10.0),
            METRICS_RETRY_ATTEMPTS=_get_int_env("METRICS_RETRY_ATTEMPTS", 2),
            POLL_INTERVAL_SECONDS=_get_float_env("POLL_INTERVAL_SECONDS", 30.0),
            DEGRADED_FAILURE_THRESHOLD=_get_int_env("DEGRADED_FAILURE_THRESHOLD", 3),
            STALE_AFTER_SECONDS=_get_float_env("STALE_AFTER_SECONDS", 90.0),
            FALLBACK_SEED=_get_int_env("FALLBACK_SEED", 42),
            DEFAULT_RESPONSE_TIME_MS=_get_float_env("DEFAULT_RESPONSE_TIME_MS", 0.0),
            COST_PER_1K_TOKENS=_get_float_env("COST_PER_1K_TOKENS", 0.02),
            TOP_PERFORMERS_LIMIT=_get_int_env("TOP_PERFORMERS_LIMIT", 5),
            CHECK_HEALTH_ON_EMPTY=_get_bool_env("CHECK_HEALTH_ON_EMPTY", default=True),
            LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        )


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog output filtered at the given level.

    Unknown level names fall back to INFO.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
    )


# Global settings instance
settings = Settings.from_env()
