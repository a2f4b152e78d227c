"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    bridge_url: str = "http://localhost:3010"
    bridge_token: str | None = None
    api_token: str | None = None
    cors_origins: str | None = None
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3009
    max_sessions: int = 50
    pending_expire_seconds: float = 120.0
    expiry_sweep_interval_seconds: float = 30.0
    pairing_code_delay_seconds: float = 1.2
    restore_delay_seconds: float = 1.5
    max_reconnect_attempts: int = 5
    reconnect_base_seconds: float = 2.0
    unavailable_base_seconds: float = 5.0
    max_backoff_seconds: float = 30.0
    restart_delay_seconds: float = 2.0
    wait_for_credentials_seconds: float = 4.0
    typing_delay_per_char_ms: int = 60
    typing_delay_min_ms: int = 1500
    typing_delay_max_ms: int = 4000
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_cors_origins(raw: str | None) -> list[str]:
    """Parse allowed CORS origins from env; ``*`` or empty allows any."""
    if raw is None:
        return ["*"]
    cleaned = raw.strip()
    if cleaned in {"", "*"}:
        return ["*"]
    origins: list[str] = []
    for chunk in cleaned.split(","):
        value = chunk.strip().rstrip("/")
        if not value:
            continue
        origins.append(value)
    return origins or ["*"]
