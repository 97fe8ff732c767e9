from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import DEFAULT_BACKOFF_CEILING, DEFAULT_PAGE_SIZE, DEFAULT_SAFETY_MARGIN


class Settings(BaseSettings):
    """Bootstrap configuration, read from ``WSRELAY_*`` environment variables.

    Core components never read these themselves; the entrypoints pass the
    values in explicitly.
    """

    model_config = SettingsConfigDict(env_prefix="WSRELAY_")

    region: str = "local"
    table_name: str = "Subscriptions"
    endpoint: str = "http://localhost:8000"
    backoff_ceiling: int = Field(default=DEFAULT_BACKOFF_CEILING, ge=0)
    safety_margin: float = Field(default=DEFAULT_SAFETY_MARGIN, ge=0)

    store_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, gt=0)

    # what the dispatcher does with messages that carry no connection id
    unaddressable_policy: Literal["redeliver", "drop"] = "redeliver"
    push_timeout: float = 10.0

    host: str = "0.0.0.0"
    port: int = 8000

    log_level: str = "INFO"
    log_json: bool = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()
