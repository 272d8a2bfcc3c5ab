"""Deploy engine configuration loaded from environment variables."""

from __future__ import annotations

import logging
from enum import Enum

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class PlatformEnv(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application settings loaded from environment variables with DEPLOY_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="DEPLOY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    env: PlatformEnv = PlatformEnv.DEV
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///.deploy/state.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # Role ordering
    strict_element_order: bool = True

    # Role get-or-create retries on a uniqueness conflict
    role_create_retries: int = 3
    retry_backoff_base: float = 0.05
    retry_max_delay: float = 1.0

    # Logging
    structured_logging: bool = False
    log_level: str = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def normalise_log_level(cls, v: str) -> str:
        level = str(v).upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v!r}")
        return level

    def is_local(self) -> bool:
        return self.database_url.startswith("sqlite")


def load_settings(**overrides: object) -> Settings:
    """Load settings from environment, with optional overrides for testing."""
    settings = Settings(**overrides)  # type: ignore[arg-type]

    if settings.debug:
        logger.info("Loaded settings for environment: %s", settings.env.value)

    return settings
