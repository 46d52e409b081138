"""Runtime configuration via pydantic settings.

everything can be set through SALESMETRICS_* environment variables or a
.env file in the working directory. the defaults give an in-memory database
and the packaged metric catalog, which is what the tests use.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from salesmetrics.models.period import PeriodType


class Settings(BaseSettings):
    """Settings for the engines, the store and the CLI."""

    model_config = SettingsConfigDict(
        env_prefix="SALESMETRICS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # storage
    database_path: Path | None = None  # None = in-memory duckdb
    catalog_dir: Path | None = None  # None = packaged catalog

    # batches
    max_workers: int = Field(default=8, ge=1)

    # app
    log_level: str = "INFO"
    default_period_type: PeriodType = PeriodType.WEEKLY

    # compare mode
    compare_time_window_days: int = Field(default=14, ge=0)
    same_call_window_minutes: int = Field(default=30, ge=0)


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings()
