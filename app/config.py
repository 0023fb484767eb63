"""
User Profiles API — Application Configuration

Settings come from the process environment, with a local ``.env`` file as a
fallback.  ``DATABASE_URL`` is the only required value.  The application
factory takes a ``Settings`` instance explicitly; ``get_settings()`` is the
process-wide default used when none is passed.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the user profiles service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Database – PostgreSQL via DATABASE_URL or the Cloud SQL connector
    # ------------------------------------------------------------------ #
    DATABASE_URL: str
    DB_USER: str = "profiles_user"
    DB_PASSWORD: str = ""
    DB_NAME: str = "profiles"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 5
    CLOUD_SQL_INSTANCE_CONNECTION: str = ""
    CLOUD_SQL_USE_UNIX_SOCKET: bool = True

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    REQUEST_TIMEOUT_SECONDS: float = 30.0
    API_PREFIX: str = "/api"

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"
    FRONTEND_URL: str = ""

    # ------------------------------------------------------------------ #
    # QR rendering
    # ------------------------------------------------------------------ #
    QR_BOX_SIZE: int = 10
    QR_BORDER: int = 4

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas, plus FRONTEND_URL."""
        origins = [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]
        if self.FRONTEND_URL and self.FRONTEND_URL not in origins:
            origins.append(self.FRONTEND_URL)
        return origins

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @field_validator("DB_POOL_SIZE", "DB_MAX_OVERFLOW")
    @classmethod
    def _pool_sizes_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Pool size must be >= 0, got {v}")
        return v

    @field_validator("QR_BOX_SIZE", "QR_BORDER", "REQUEST_TIMEOUT_SECONDS")
    @classmethod
    def _must_be_positive(cls, v):
        if v <= 0:
            raise ValueError(f"Value must be positive, got {v}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings read from the environment once per process."""
    return Settings()  # type: ignore[call-arg]
