"""Realtime client configuration via environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings


class RealtimeSettings(BaseSettings):
    model_config = {"env_prefix": "DARTS_"}

    reconcile_delay_seconds: float = Field(default=0.2, gt=0)
    refresh_debounce_seconds: float = Field(default=0.15, ge=0)
    max_coalesced_refreshes: int = Field(default=5, ge=1)
    poll_interval_seconds: float = Field(default=2.0, gt=0)
    pending_buffer_limit: int = Field(default=200, ge=1)
    log_dir: str = Field(default="backend/logs/darts", min_length=1)
    snapshot_dir: str | None = Field(default=None, min_length=1)
    store_url: str | None = None
    store_api_key: str | None = None
