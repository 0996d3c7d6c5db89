"""ChatSage liveness-core configuration."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


def _split_logins(raw: str) -> list[str]:
    seen: list[str] = []
    for item in raw.split(","):
        login = item.strip().lower().lstrip("#")
        if login and login not in seen:
            seen.append(login)
    return seen


class Settings(BaseSettings):
    """Environment-driven settings for the liveness / keep-alive core."""

    # EventSub webhook verification
    twitch_eventsub_secret: str = ""
    eventsub_skip_signature_verification: bool = False  # development only

    # Helix (authoritative liveness source)
    twitch_client_id: str = ""
    twitch_client_secret: str = ""
    helix_base_url: str = "https://api.twitch.tv/helix"
    twitch_token_url: str = "https://id.twitch.tv/oauth2/token"
    helix_batch_size: int = 100
    helix_timeout_seconds: float = 10.0

    # Channels
    twitch_channels: str = ""
    allowed_channels: str = ""

    # Cloud Tasks keep-alive queue
    public_url: str = ""
    google_cloud_project: str = ""
    gcp_region: str = "us-central1"
    keep_alive_queue: str = "self-ping"
    keep_alive_service_account: str = ""
    keep_alive_path: str = "/keep-alive"
    task_dispatch_deadline_seconds: int = 10
    task_call_timeout_seconds: float = 10.0
    task_retry_max_attempts: int = 3
    task_retry_base_delay: float = 0.5
    task_retry_max_delay: float = 8.0

    # Keep-alive control loop
    keepalive_ping_delay_seconds: int = 60
    keepalive_failure_threshold: int = 3
    keepalive_ping_timeout_seconds: float = 25.0
    chat_activity_window_seconds: int = 300

    # Replay / duplicate guard
    notification_max_age_seconds: int = 600
    dedup_ttl_seconds: int = 600
    dedup_prune_threshold: int = 1000

    # Startup behaviour
    discover_on_startup: bool = True
    ensure_queue_on_startup: bool = False

    # Admin routes (disabled when empty)
    admin_token: str = ""

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = {"env_file": ".env", "extra": "ignore"}

    @model_validator(mode="after")
    def _load_secret_from_file(self) -> "Settings":
        """TWITCH_EVENTSUB_SECRET may hold a path to a mounted secret file."""
        value = self.twitch_eventsub_secret.strip()
        if value and len(value) < 4096:
            candidate = Path(value)
            try:
                if candidate.is_file():
                    self.twitch_eventsub_secret = candidate.read_text(encoding="utf-8").strip()
            except (OSError, ValueError):
                logger.warning("TWITCH_EVENTSUB_SECRET looks like a path but is unreadable")
        return self

    @property
    def channel_list(self) -> list[str]:
        """Monitored channel logins, lowercase, deduplicated."""
        return _split_logins(self.twitch_channels)

    @property
    def allowed_channel_list(self) -> list[str]:
        return _split_logins(self.allowed_channels)

    @property
    def keep_alive_url(self) -> str:
        return self.public_url.rstrip("/") + self.keep_alive_path

    @property
    def service_account_email(self) -> str:
        if self.keep_alive_service_account:
            return self.keep_alive_service_account
        return f"{self.google_cloud_project}@appspot.gserviceaccount.com"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings instance."""
    return Settings()
