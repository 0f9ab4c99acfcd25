"""Application settings loaded from environment variables.

Environment Configuration:
    TEAMCOACH_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: Database connection string (required)
    TEAMCOACH_INTERNAL_SECRET: Internal API secret (required in staging/prod)

Redis / Celery Configuration:
    REDIS_URL: Redis connection string (required for worker)
    CELERY_BROKER_URL: Celery broker URL (defaults to REDIS_URL)
    CELERY_RESULT_BACKEND: Celery result backend URL (defaults to REDIS_URL)

Identity Provider Configuration (required in staging/prod):
    IDENTITY_JWKS_URL: Full URL to the identity provider's JWKS endpoint
    IDENTITY_ISSUER: Expected JWT issuer (trailing slash stripped)
    IDENTITY_AUDIENCES: Comma-separated list of allowed audiences

Cache Configuration:
    CACHE_TTL_SECONDS: Entry lifetime for every store cache (default 5 minutes)
    CACHE_MAX_ENTRIES: Per-cache capacity before LRU eviction (default 1000)
    CACHE_SWEEP_INTERVAL_SECONDS: Background purge interval, 0 disables (default 10 minutes)

Migration Configuration:
    MAX_LOCAL_HISTORY_BYTES: Largest accepted local-history payload
    CORRUPTION_SAMPLE_CHARS: Prefix of an unsalvageable payload kept for audit
    INACTIVE_ARCHIVE_DAYS: Default age for archiving inactive conversations
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - DATABASE_URL is always required
    - IDENTITY_JWKS_URL, IDENTITY_ISSUER, IDENTITY_AUDIENCES are required in staging and prod
    - TEAMCOACH_INTERNAL_SECRET is required in staging and prod
    - cache and migration limits must be positive
    """

    teamcoach_env: Environment = Field(default=Environment.LOCAL, alias="TEAMCOACH_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]
    teamcoach_internal_secret: str | None = Field(default=None, alias="TEAMCOACH_INTERNAL_SECRET")

    # Redis / Celery settings
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    celery_broker_url: str | None = Field(default=None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")

    # Identity provider settings
    identity_jwks_url: str | None = Field(default=None, alias="IDENTITY_JWKS_URL")
    identity_issuer: str | None = Field(default=None, alias="IDENTITY_ISSUER")
    identity_audiences: str | None = Field(default=None, alias="IDENTITY_AUDIENCES")

    # Cache settings
    cache_ttl_seconds: float = Field(default=300, alias="CACHE_TTL_SECONDS")
    cache_max_entries: int = Field(default=1000, alias="CACHE_MAX_ENTRIES")
    cache_sweep_interval_seconds: float = Field(default=600, alias="CACHE_SWEEP_INTERVAL_SECONDS")

    # Migration / backup limits
    max_local_history_bytes: int = Field(
        default=5 * 1024 * 1024, alias="MAX_LOCAL_HISTORY_BYTES"
    )  # 5 MB, same order as browser localStorage quota
    corruption_sample_chars: int = Field(default=1000, alias="CORRUPTION_SAMPLE_CHARS")
    inactive_archive_days: int = Field(default=90, alias="INACTIVE_ARCHIVE_DAYS")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure required settings are set for the current environment."""
        if self.cache_ttl_seconds <= 0:
            raise ValueError("CACHE_TTL_SECONDS must be > 0")
        if self.cache_max_entries < 1:
            raise ValueError("CACHE_MAX_ENTRIES must be >= 1")
        if self.cache_sweep_interval_seconds < 0:
            raise ValueError("CACHE_SWEEP_INTERVAL_SECONDS must be >= 0")
        if self.max_local_history_bytes < 1:
            raise ValueError("MAX_LOCAL_HISTORY_BYTES must be >= 1")
        if self.corruption_sample_chars < 1:
            raise ValueError("CORRUPTION_SAMPLE_CHARS must be >= 1")
        if self.inactive_archive_days < 1:
            raise ValueError("INACTIVE_ARCHIVE_DAYS must be >= 1")

        if self.teamcoach_env in (Environment.STAGING, Environment.PROD):
            missing_auth = []
            if not self.identity_jwks_url:
                missing_auth.append("IDENTITY_JWKS_URL")
            if not self.identity_issuer:
                missing_auth.append("IDENTITY_ISSUER")
            if not self.identity_audiences:
                missing_auth.append("IDENTITY_AUDIENCES")

            if missing_auth:
                raise ValueError(
                    f"Missing required identity provider settings: {', '.join(missing_auth)} "
                    f"for TEAMCOACH_ENV={self.teamcoach_env.value}"
                )

            if not self.teamcoach_internal_secret:
                raise ValueError(
                    "TEAMCOACH_INTERNAL_SECRET is required for "
                    f"TEAMCOACH_ENV={self.teamcoach_env.value}"
                )

        return self

    @property
    def requires_internal_header(self) -> bool:
        """Whether requests must include the internal secret header."""
        return self.teamcoach_env in (Environment.STAGING, Environment.PROD)

    @property
    def audience_list(self) -> list[str]:
        """Parse comma-separated audiences into a list."""
        if self.identity_audiences:
            return [a.strip() for a in self.identity_audiences.split(",") if a.strip()]
        return []

    @property
    def normalized_issuer(self) -> str | None:
        """Return issuer with trailing slash stripped."""
        if self.identity_issuer:
            return self.identity_issuer.rstrip("/")
        return None

    @property
    def use_json_logs(self) -> bool:
        """Console logs for local development, JSON everywhere else."""
        return self.teamcoach_env != Environment.LOCAL

    @property
    def effective_celery_broker_url(self) -> str | None:
        """Return Celery broker URL, falling back to REDIS_URL if not set."""
        return self.celery_broker_url or self.redis_url

    @property
    def effective_celery_result_backend(self) -> str | None:
        """Return Celery result backend URL, falling back to REDIS_URL if not set."""
        return self.celery_result_backend or self.redis_url


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
