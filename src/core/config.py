"""Configuration management for the booking progress engine."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = Field(default="development", description="Deployment environment name")

    # SQLite Configuration
    sqlite_db_path: str = Field(default="./data/progress.db", description="Path to the SQLite database file")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # Redis Configuration (optional)
    redis_url: str | None = Field(default=None, description="Redis connection URL (e.g., redis://localhost:6379)")

    # Primary rollup (optional remote procedure)
    rollup_service_url: str | None = Field(
        default=None,
        description="Base URL of the remote booking rollup service; the database rollup is used when unset",
    )
    rollup_service_api_key: str | None = Field(default=None, description="API key for the remote rollup service")
    primary_rollup_timeout_seconds: float = Field(
        default=3.0, gt=0, description="Upper bound for a primary booking rollup before falling back"
    )
    rollup_circuit_breaker_threshold: int = Field(
        default=5, ge=1, description="Consecutive primary rollup failures before the primary is skipped"
    )
    rollup_circuit_breaker_cooldown_seconds: float = Field(
        default=60.0, ge=0, description="Seconds the primary rollup stays skipped once the breaker opens"
    )

    # Analytics cache
    analytics_cache_ttl_seconds: int = Field(default=300, ge=1, description="TTL for cached progress analytics")

    @property
    def is_production(self) -> bool:
        """Whether the app runs in production."""
        return self.environment.lower() == "production"

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value


# Application Constants
class Constants:
    """Application-wide constants."""

    # API Configuration
    API_TIMEOUT_SECONDS: int = 30

    # Progress bounds
    PROGRESS_MIN: int = 0
    PROGRESS_MAX: int = 100
    DEFAULT_MILESTONE_WEIGHT: float = 1.0

    # Cache keys
    ANALYTICS_CACHE_KEY_PREFIX: str = "progress:analytics"

    # Pagination Defaults
    DEFAULT_PER_PAGE_LIMIT: int = 500  # Upper bound for child rows fetched per parent

    # Redis Configuration
    REDIS_MAX_CONNECTIONS: int = 10  # Maximum connections in Redis connection pool
    REDIS_INVALIDATION_QUEUE_MAXLEN: int = 1000  # Max items in Redis invalidation queue


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
