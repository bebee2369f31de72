"""Runtime configuration, read from ``PORTAL_*`` environment variables."""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PORTAL_", env_file=".env", extra="ignore")

    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"

    # Unset means a single process with an in-memory live bus.
    redis_url: Optional[str] = None

    # Unset means emails are only logged.
    resend_api_key: Optional[str] = None
    mail_from: str = "World Salon <hello@worldsalon.example>"

    cors_origins: List[str] = ["http://localhost:3000"]

    rate_limit: int = 100
    rate_limit_window: int = 15 * 60

    delivery_timeout: float = 5.0
    # Emails run outside the live delivery timeout and bound themselves.
    email_timeout: float = 10.0

    log_level: str = "INFO"
    log_json: bool = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()
