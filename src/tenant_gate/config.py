"""Centralized application configuration via environment variables."""

from enum import StrEnum
from functools import lru_cache

from pydantic import BaseModel, SecretStr, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class RateLimitBackend(StrEnum):
    REDIS = "redis"
    MEMORY = "memory"


class RateLimitProfile(BaseModel):
    """Named fixed-window configuration for a family of routes."""

    window_seconds: int
    max_requests: int
    key_prefix: str
    refund_failed_requests: bool = False


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The JWT secret uses SecretStr to prevent accidental logging.
    Database URL is assembled from individual components to match
    the official PostgreSQL Docker image environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # --- App ---
    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "DEBUG"
    # --- CORS ---
    cors_allowed_origins: list[str] = []
    cors_allow_credentials: bool = False
    cors_allowed_methods: list[str] = ["GET", "POST", "PATCH"]
    cors_allowed_headers: list[str] = ["Content-Type", "Authorization"]

    # --- PostgreSQL ---
    postgres_user: str = "tenant_gate"
    postgres_password: SecretStr = SecretStr("secret")
    postgres_db: str = "tenant_gate"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    @computed_field  # type: ignore[prop-decorator]
    @property
    def database_url(self) -> str:
        """Assemble database URL from components.

        Uses psycopg v3 driver which supports both sync (create_engine)
        and async (create_async_engine) modes natively.
        """
        password = self.postgres_password.get_secret_value()
        return (
            f"postgresql+psycopg://{self.postgres_user}:{password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"

    # --- JWT ---
    jwt_secret: SecretStr = SecretStr("change-me-change-me-change-me-change-me")
    jwt_algorithm: str = "HS256"
    jwt_expires_minutes: int = 30 * 24 * 60

    # --- Rate limiting ---
    rate_limit_backend: RateLimitBackend = RateLimitBackend.REDIS
    rate_limit_auth: RateLimitProfile = RateLimitProfile(
        window_seconds=15 * 60,
        max_requests=10,
        key_prefix="rl:auth:",
        refund_failed_requests=True,
    )
    rate_limit_api: RateLimitProfile = RateLimitProfile(
        window_seconds=60, max_requests=100, key_prefix="rl:api:"
    )
    rate_limit_strict: RateLimitProfile = RateLimitProfile(
        window_seconds=60, max_requests=10, key_prefix="rl:strict:"
    )

    # Upper bound for any single counter-store or tenant-state-store call.
    store_timeout_seconds: float = 2.0

    # --- Subscription ---
    trial_days: int = 14

    # --- Worker ---
    worker_max_jobs: int = 2
    worker_job_timeout: int = 300
    trial_sweep_minutes: set[int] = {0, 15, 30, 45}

    @field_validator("jwt_secret")
    @classmethod
    def _secret_long_enough(cls, value: SecretStr) -> SecretStr:
        if len(value.get_secret_value()) < 32:
            msg = "jwt_secret must be at least 32 characters"
            raise ValueError(msg)
        return value

    # --- Convenience properties ---
    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton.

    Usage::

        from tenant_gate.config import get_settings
        settings = get_settings()
    """
    return Settings()


settings = get_settings()
