"""
Configuration settings for the Triple-Helix scheduler.

Uses Pydantic Settings for environment variable management with .env file support.
Every variable is prefixed with HELIX_ (e.g. HELIX_DATA_DIR, HELIX_SYNC_BASE_URL).
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="HELIX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Local Storage
    # ========================================
    data_dir: Path = Field(
        default=Path.home() / ".triple_helix",
        description="Directory holding the local state database",
    )
    state_db_name: str = Field(
        default="state.db",
        description="SQLite file name inside data_dir",
    )

    # ========================================
    # Content Seeding
    # ========================================
    content_manifest_path: Path | None = Field(
        default=None,
        description="JSON manifest of threads and stitch ids per tube (generated when unset)",
    )
    stitches_per_tube: int = Field(
        default=10,
        ge=1,
        description="Stitches per tube in the generated manifest",
    )
    seed_skip_number: int = Field(
        default=3,
        description="Skip number given to every stitch of a fresh state (1 or 3)",
    )

    # ========================================
    # Scheduling
    # ========================================
    rotation_settle_seconds: float = Field(
        default=0.5,
        ge=0.0,
        description="Delay between rotating the active tube and recomputing the completed one",
    )

    # ========================================
    # Remote Sync
    # ========================================
    sync_enabled: bool = Field(
        default=False,
        description="Push state to the remote user-state endpoint",
    )
    sync_base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the remote state service",
    )
    sync_api_key: str | None = Field(
        default=None,
        description="API key sent as X-API-Key",
    )
    sync_state_endpoint: str = Field(
        default="/api/v1/user-state",
        description="Path of the user-state endpoint",
    )
    sync_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Timeout for a single sync attempt",
    )
    sync_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts before falling back to the backup record",
    )
    sync_backoff_base_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Backoff before the second attempt; doubles per attempt",
    )
    sync_backoff_max_seconds: float = Field(
        default=8.0,
        ge=0.0,
        description="Upper bound on the backoff between attempts",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: str = Field(
        default="INFO",
        description="Loguru level for the stderr sink",
    )

    @field_validator("seed_skip_number")
    @classmethod
    def _seed_tier(cls, value: int) -> int:
        if value not in (1, 3):
            raise ValueError(f"seed_skip_number must be 1 or 3, got {value}")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @property
    def state_db_path(self) -> Path:
        return self.data_dir.expanduser() / self.state_db_name

    @property
    def remote_configured(self) -> bool:
        return self.sync_enabled and bool(self.sync_base_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
