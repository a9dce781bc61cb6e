"""All settings, loaded from the environment and the .env file.

Constructed once per process via get_settings() and passed into the
components that need it (mode selector, tracker, orchestrator, credential
manager). Module-level `settings` is the process-wide instance.
"""

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SnapshotMode = Literal["deterministic", "externally_assisted", "auto"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # App
    app_url: str = "http://localhost:8000"
    database_url: str = "sqlite:///./secondlook.db"
    log_level: str = "INFO"

    # Credential encryption (64 hex chars, base64 of 32 bytes, or 32 raw chars)
    encryption_key: str = ""

    # Snapshot scoring
    snapshot_mode: SnapshotMode = "deterministic"
    anthropic_api_key: str = ""
    reasoning_model: str = "claude-sonnet-4-5-20250929"
    reasoning_timeout_seconds: float = 30
    snapshot_job_timeout_seconds: float = 120

    # Data-safety limits
    window_days: int = 90
    max_records_per_entity: int = 100
    min_meaningful_estimates: int = 25
    allow_small_datasets: bool = False

    # Auto-mode gate
    auto_mode_min_events: int = 10
    auto_mode_max_fallback_rate: float = 0.2

    # Fallback telemetry window
    telemetry_max_events: int = 100
    telemetry_window_seconds: int = 3600
    telemetry_min_events_for_rate: int = 5

    # Token refresh
    token_refresh_buffer_seconds: int = 90
    token_refresh_timeout_seconds: float = 15
    jobber_client_id: str = ""
    jobber_client_secret: str = ""
    jobber_token_url: str = "https://api.getjobber.com/api/oauth/token"
    jobber_webhook_secret: str = ""

    @field_validator("snapshot_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
            if v == "orchestrated":
                return "externally_assisted"
        return v

    @property
    def required_min_estimates(self) -> int:
        """Minimum meaningful estimates for a scored snapshot."""
        return 1 if self.allow_small_datasets else self.min_meaningful_estimates

    @property
    def reasoning_configured(self) -> bool:
        return bool(self.anthropic_api_key)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
