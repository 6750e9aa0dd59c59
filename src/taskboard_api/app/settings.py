"""Application settings."""

from functools import lru_cache
import os
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings loaded from TASKBOARD_* environment variables."""

    app_name: str = "taskboard"
    app_env: str = "dev"
    app_debug: bool = False
    log_level: str = "INFO"
    store_backend: Literal["postgres", "memory"] = "postgres"
    database_url: str = ""
    fleet_api_url: str = "http://host.docker.internal:3000/internal"
    fleet_api_token: str = ""
    fleet_push_timeout_s: float = Field(default=5.0, gt=0.0)
    fleet_lookup_timeout_s: float = Field(default=3.0, gt=0.0)
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])
    host: str = "0.0.0.0"
    port: int = Field(default=8820, ge=1, le=65535)

    model_config = SettingsConfigDict(
        env_prefix="TASKBOARD_",
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
