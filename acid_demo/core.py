"""Application configuration and settings management.

This module defines the application settings loaded from environment
variables and provides a helper for accessing the cached settings object.
"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings
from sqlalchemy.engine import URL


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    Attributes:
        DATABASE_URL: Full database connection string. Takes precedence
            over the discrete ``DB_*`` fields when set.
        DB_HOST: Database server host.
        DB_PORT: Database server port.
        DB_NAME: Database name.
        DB_USERNAME: Database user.
        DB_PASSWORD: Database password.
        DB_POOL_SIZE: Number of pooled connections kept open.
        DB_POOL_TIMEOUT: Seconds to wait for a free pooled connection.
        SQL_ECHO: Log every SQL statement emitted by the engine.
        FORCED_FAILURE_DELAY_SECONDS: Pause before a forced workflow failure.
        FORCED_FAILURE_POLICY: When a forced failure fires, either
            ``when_no_addresses`` or ``after_all_writes``.
        ALLOWED_ORIGINS: Allowed origins for CORS.
        REDIS_URL: Redis connection URL for rate limiting.
        RATE_LIMIT_TIMES: Requests allowed per window on demo routes.
        RATE_LIMIT_SECONDS: Length of the rate limiting window.
        LOG_LEVEL: Root logging level.
    """

    DATABASE_URL: str | None = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "mydb"
    DB_USERNAME: str = "admin"
    DB_PASSWORD: str = "admin123"
    DB_POOL_SIZE: int = 5
    DB_POOL_TIMEOUT: int = 30
    SQL_ECHO: bool = False
    FORCED_FAILURE_DELAY_SECONDS: float = 10.0
    FORCED_FAILURE_POLICY: str = "when_no_addresses"
    ALLOWED_ORIGINS: List[str] = ["*"]
    REDIS_URL: str = "redis://localhost:6379"
    RATE_LIMIT_TIMES: int = 10
    RATE_LIMIT_SECONDS: int = 60
    LOG_LEVEL: str = "INFO"

    class Config:
        """Pydantic configuration for loading environment variables."""

        env_file = ".env"
        extra = "allow"

    @property
    def database_url(self) -> str:
        """Connection string used to build the engine."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return URL.create(
            "postgresql+psycopg2",
            username=self.DB_USERNAME,
            password=self.DB_PASSWORD,
            host=self.DB_HOST,
            port=self.DB_PORT,
            database=self.DB_NAME,
        ).render_as_string(hide_password=False)


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings.

    The settings object is cached to prevent reloading environment
    variables multiple times during application lifetime.
    """

    return Settings()
