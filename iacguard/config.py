"""Runtime configuration.

Values come from environment variables prefixed with ``IACGUARD_``
(for example ``IACGUARD_DISABLED_POLICIES='["SEC006"]'``).
"""

import logging
from functools import lru_cache

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings."""

    default_provider: str = "aws"
    default_region: str = "us-east-1"

    # Policy activation: codes listed here are skipped by the registry
    disabled_policies: list[str] = Field(default_factory=list)

    # AI fix suggester (remediation fallback only)
    ai_enabled: bool = False
    ai_model: str = "claude-sonnet-4-20250514"
    ai_temperature: float = 0.0
    ai_max_tokens: int = 4096
    ai_timeout_seconds: float = 30.0

    price_cache_ttl_seconds: float = 900.0
    log_level: str = "INFO"

    class Config:
        env_prefix = "IACGUARD_"
        case_sensitive = False


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings."""
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Configure structlog to drop events below ``level``."""
    name = (level or get_settings().log_level).upper()
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(name)
        ),
    )
