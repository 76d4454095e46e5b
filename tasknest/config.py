from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration. Every field can be overridden with TASKNEST_<NAME>."""

    model_config = SettingsConfigDict(env_prefix="TASKNEST_", env_file=".env", extra="ignore")

    database_path: Path = Path("data") / "tasknest.db"

    # Tokens
    secret_key: str = "change-me"
    algorithm: str = "HS256"
    access_token_expire_days: int = 30

    # Profile photos are compressed until they fit this budget
    max_photo_bytes: int = Field(default=1024 * 1024, gt=0)

    log_level: str = "INFO"
    cors_origins: List[str] = ["http://localhost:19006"]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
