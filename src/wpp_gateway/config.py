"""Application configuration."""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")

DEFAULT_BROWSER_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    api_key: str
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8080
    credential_root: str = "./tokens"
    credential_volume_path: str | None = None
    browser_executable_path: str = "/usr/bin/chromium"
    browser_headless: bool = True
    browser_args: str | None = None
    qr_wait_timeout_seconds: float = 30.0
    qr_poll_interval_seconds: float = 0.3
    engine_query_timeout_seconds: float = 5.0
    engine_auto_close_seconds: float = 60.0
    webhook_max_attempts: int = 3
    webhook_timeout_seconds: float = 10.0
    webhook_backoff_base_seconds: float = 1.0
    webhook_shutdown_grace_seconds: float = 2.0
    default_chat_domain: str = "c.us"
    resume_sessions_on_startup: bool = False
    supabase_url: str | None = None
    supabase_service_key: str | None = None
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def resolve_credential_root(settings: Settings) -> Path:
    """Return the credential directory, preferring a mounted volume."""
    volume = (settings.credential_volume_path or "").strip()
    if volume:
        return Path(volume) / "tokens"
    return Path(settings.credential_root)


def parse_browser_args(raw: str | None) -> tuple[str, ...]:
    """Parse comma-separated browser launch flags from env."""
    if raw is None:
        return DEFAULT_BROWSER_ARGS
    args = tuple(chunk.strip() for chunk in raw.split(",") if chunk.strip())
    return args or DEFAULT_BROWSER_ARGS
