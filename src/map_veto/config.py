"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    admin_token: str
    supabase_url: str | None = None
    supabase_service_key: str | None = None
    environment: str = _ENVIRONMENT

    min_turn_timer_seconds: int = 10
    max_turn_timer_seconds: int = 300
    default_turn_timer_seconds: int = 30
    min_map_pool_size: int = 3
    max_map_pool_size: int = 15
    default_map_pool_size: int = 5
    session_expiry_days: int = 14
    token_ttl_hours: int = 24
    heartbeat_timeout_seconds: int = 30
    trust_forwarded_for: bool = False

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @property
    def uses_supabase(self) -> bool:
        """Return true when Supabase credentials are configured."""
        return bool(self.supabase_url and self.supabase_service_key)


def parse_forwarded_for(raw: str | None) -> str | None:
    """Return the client hop from an X-Forwarded-For header."""
    if raw is None:
        return None
    first = raw.split(",", maxsplit=1)[0].strip()
    return first or None
