import logging
from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .normalize import DEFAULT_CATEGORY


class Env(Enum):
    local = "local"
    dev = "dev"
    prod = "prod"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="KITCHN_", env_file=".env", extra="ignore"
    )

    env: Env = Env.local
    database_url: str = "sqlite:///./kitchn.db"
    log_level: str = "INFO"
    cors_origins: List[str] = ["*"]

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"

    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    drive_api_url: str = "https://www.googleapis.com/drive/v3/"
    drive_timeout: float = 60.0

    # session lifetime without / with "remember me"
    session_hours: int = 12
    remember_days: int = 30
    invitation_days: int = 7

    free_max_groups: int = 1
    free_max_members: int = 10

    default_category: str = DEFAULT_CATEGORY
    max_upload_bytes: int = 10 * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    level = level or get_settings().log_level
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
