"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_SYNC_INTERVAL_SECONDS = 10


class Settings(BaseSettings):
    """SheetMirror application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)

    # Paths
    frontend_dir: Path = Path("./public")
    checksum_file: Path = Path("./cache.json")
    mappings_file: Path = Path("./mappings.toml")
    google_credentials_file: Path = Path("./key.json")

    # Remote API quota
    rate_limit_max_ops_per_100s: int = Field(default=80, ge=1)
    rate_limit_window_seconds: float = Field(default=100.0, gt=0)

    # Retries
    retry_max_attempts: int = Field(default=5, ge=1)
    retry_base_delay_seconds: float = Field(default=0.5, ge=0)
    retry_max_delay_seconds: float = Field(default=15.0, ge=0)

    # Scheduler
    full_sync_interval_seconds: float = 300.0
    sync_auto_start: bool = False
    sheet_read_range: str = "A:Z"

    def validate_runtime(self) -> None:
        """Reject settings the scheduler or the token bucket cannot work with."""
        violations: list[str] = []
        if self.full_sync_interval_seconds < MIN_SYNC_INTERVAL_SECONDS:
            violations.append(
                f"FULL_SYNC_INTERVAL_SECONDS must be at least {MIN_SYNC_INTERVAL_SECONDS}"
            )
        if self.retry_max_delay_seconds < self.retry_base_delay_seconds:
            violations.append("RETRY_MAX_DELAY_SECONDS must not be below RETRY_BASE_DELAY_SECONDS")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Invalid configuration: {joined}")
