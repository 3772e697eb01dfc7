"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    telegram_bot_token: str
    telegram_admin_user_ids: str | None = None
    telegram_allowed_user_ids: str | None = None
    supabase_url: str
    supabase_service_key: str
    admin_token: str
    b2_application_key_id: str
    b2_application_key: str
    b2_bucket_id: str
    b2_bucket_name: str
    b2_download_url: str | None = None
    encryption_key: str
    session_timezone: str = "UTC"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_user_ids(raw: str | None) -> set[int] | None:
    """Parse a comma-separated list of Telegram user IDs.

    Returns None when the value is unset, empty, or ``*``, meaning no
    restriction applies.
    """
    if raw is None:
        return None
    cleaned = raw.strip()
    if cleaned in {"", "*"}:
        return None
    ids: set[int] = set()
    for chunk in cleaned.split(","):
        value = chunk.strip()
        if value.isdigit():
            ids.add(int(value))
    return ids or None
