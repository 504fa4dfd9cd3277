"""Application configuration loaded from environment variables."""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """All configuration is read from the environment (or a .env file)."""

    # --- App ---
    app_name: str = "service-health-sync"
    app_version: str = "0.1.0"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 7071

    # --- Subscriptions ---
    azure_subscription_id: str = ""  # default when a request names none
    scheduled_subscription_ids: Annotated[list[str], NoDecode] = Field(default_factory=list)
    schedule_enabled: bool = False
    sync_interval_seconds: int = 900
    sync_concurrency_limit: int = 4

    # --- Sync policy ---
    retention_days: int = 7
    sync_timeout_seconds: float = 600.0  # keep below the host's execution timeout
    query_max_attempts: int = 5
    storage_max_attempts: int = 3
    cache_write_max_attempts: int = 3
    retry_base_delay: float = 2.0
    retry_max_delay: float = 32.0

    # --- Upstream ---
    resource_graph_endpoint: str = "https://management.azure.com"
    resource_graph_page_size: int = 1000
    http_timeout_seconds: float = 30.0

    # --- Cache storage ---
    cache_backend: Literal["azure", "local", "memory"] = "local"
    storage_account_url: str = ""  # e.g. https://<account>.blob.core.windows.net
    cache_container: str = "service-health-cache"
    cache_prefix: str = "service-health"
    cache_local_directory: str = ".cache"

    # --- Credentials (opaque, pre-acquired bearer tokens) ---
    management_access_token: SecretStr = SecretStr("")
    storage_access_token: SecretStr = SecretStr("")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("scheduled_subscription_ids", mode="before")
    @classmethod
    def _split_ids(cls, value: object) -> object:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
