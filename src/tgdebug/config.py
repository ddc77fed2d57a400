"""Runtime configuration.

Settings come from constructor kwargs and `TGDEBUG_*` environment variables.
The bot token is deliberately not a setting: it lives in the cache document
(or is passed on the command line) so it is never echoed by settings dumps.
"""

from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .tz import parse_timezone


class Settings(BaseSettings):
    """Settings for the ingestion engine and CLI.

    Invariant:
        `cache_path` is normalized to an absolute path at init time.
        `backoff_max_seconds >= backoff_base_seconds`.
    """

    model_config = SettingsConfigDict(env_prefix="TGDEBUG_")

    cache_path: Path = Path("~/.config/tgdebug/cache.json")
    api_base: str = "https://api.telegram.org"
    poll_timeout_seconds: int = Field(default=30, gt=0)
    poll_limit: int = Field(default=100, ge=1, le=100)
    backoff_base_seconds: float = Field(default=1.0, gt=0)
    backoff_max_seconds: float = Field(default=30.0, gt=0)
    degraded_after_failures: int = Field(default=3, ge=1)
    raw_log_capacity: int = Field(default=50, ge=1)
    flush_interval_seconds: float = Field(default=0.0, ge=0)
    timezone: str = "UTC"

    @field_validator("cache_path")
    @classmethod
    def _normalize_cache_path(cls, value: Path) -> Path:
        return value.expanduser().resolve()

    @field_validator("api_base")
    @classmethod
    def _strip_api_base(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        parse_timezone(value)
        return value

    @model_validator(mode="after")
    def _validate_backoff(self) -> "Settings":
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_max_seconds must be >= backoff_base_seconds")
        return self
