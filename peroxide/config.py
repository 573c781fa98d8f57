"""Application configuration via Pydantic Settings.

All configuration is driven by environment variables.  Every setting has a
safe default, so the service starts without a ``.env`` file; invalid values
raise a ``ValidationError`` at startup so misconfigured deployments fail fast.

Usage::

    from peroxide.config import get_settings

    settings = get_settings()
    print(settings.max_upload_bytes)

The ``get_settings`` function is cached with ``functools.lru_cache``.  To
override settings in tests, build a :class:`Settings` instance directly and
pass it to :func:`peroxide.main.create_app`, or set the relevant environment
variables and call ``get_settings.cache_clear()``.
"""
from __future__ import annotations

import functools
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """PEroxide application settings.

    Environment variables are read case-insensitively with the ``PEROXIDE_``
    prefix (e.g. ``PEROXIDE_MAX_UPLOAD_BYTES``).  A ``.env`` file in the
    working directory is loaded automatically when present.
    """

    model_config = SettingsConfigDict(
        env_prefix="PEROXIDE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Uploads
    upload_dir: Path = Field(
        default=Path("/tmp/peroxide/uploads"),
        description="Directory where uploaded files are held until their scan completes",
    )
    max_upload_bytes: int = Field(
        default=100 * 1024 * 1024,
        ge=1,
        description="Maximum accepted upload size in bytes (default: 100 MiB)",
    )

    # Scan worker
    scan_settle_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        le=5,
        description="Pause before the final 'Scan complete!' entry is written",
    )
    indicator_rules_path: Path | None = Field(
        default=None,
        description="Optional JSON file of custom indicator rules merged with the built-ins",
    )

    # Progress streaming
    progress_poll_interval_seconds: float = Field(
        default=0.1,
        gt=0,
        le=5,
        description="Registry poll interval for the scan-status event stream",
    )

    # HTTP
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Origins allowed by the CORS middleware",
    )

    # Environment
    environment: str = Field(
        default="production",
        description="Deployment environment: development, staging, or production",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode (never set True in production)",
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("development", "staging", "production"):
            raise ValueError("environment must be development, staging, or production")
        return v


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached application settings singleton.

    The first call reads environment variables (and ``.env``).  Subsequent
    calls return the cached instance.  Clear the cache with
    ``get_settings.cache_clear()`` between tests.
    """
    return Settings()
