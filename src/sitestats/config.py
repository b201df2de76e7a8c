"""Runtime settings, read from ``SITESTATS_*`` environment variables or ``.env``."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SITESTATS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # "<gcp-project>.<dataset>" holding the analytics tables
    dataset_id: str = "sitestats"
    default_timezone: str = "Etc/GMT"

    funnel_window_seconds: int = 86400
    min_funnel_steps: int = 2
    max_funnel_steps: int = 10

    redis_url: str | None = None
    session_ttl_seconds: int = 1800

    max_concurrent_queries: int = 8
    errors_page_size: int = 30


__all__ = ["Settings"]
