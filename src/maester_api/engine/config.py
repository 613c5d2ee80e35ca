# src/maester_api/engine/config.py
"""
Runtime settings, loaded from ``MAESTER_*`` environment variables.
"""
import shlex
from functools import lru_cache
from typing import List

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_prefix="MAESTER_", extra="ignore")

    # Database
    db_path: str = "./data/maester.db"
    db_lock_timeout: float = Field(default=5.0, gt=0)

    # concurrent scans against one tenant get throttled upstream
    max_running_per_tenant: int = Field(default=1, ge=1)

    # Lifecycle reaper
    stale_after_minutes: int = Field(default=30, ge=1)
    completed_expiry_minutes: int = Field(default=60, ge=1)
    hard_expiry_hours: int = Field(default=24, ge=1)
    reaper_interval_seconds: float = Field(default=60.0, gt=0)

    # Compliance engine
    tests_path: str = "/app/maester-tests"
    engine_command: str = "pwsh -NoProfile -NonInteractive -Command"
    engine_timeout_seconds: int = Field(default=3600, ge=1)

    # Token endpoints
    login_authority: str = "https://login.microsoftonline.com"
    graph_url: str = "https://graph.microsoft.com"
    token_timeout_seconds: float = Field(default=30.0, gt=0)

    error_max_length: int = Field(default=500, ge=16)
    log_level: str = "INFO"

    @computed_field
    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.db_path}"

    @computed_field
    @property
    def engine_argv(self) -> List[str]:
        return shlex.split(self.engine_command)


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings"""
    return Settings()


def engine_settings(settings: Settings = None) -> dict:
    """Snapshot handed to every worker so it never reads parent state."""
    return (settings or get_settings()).model_dump()
