"""Centralized settings for the coach notification service.

Uses pydantic-settings to load from environment variables (prefixed
COACH_) or a ``.env`` file, with defaults suited to local development:
without FCM credentials the service runs in simulation mode.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings

from src.notifications.config import NotificationConfig
from src.notifications.gateway import GatewayConfig


class Settings(BaseSettings):
    """Notification service settings loaded from environment variables."""

    # --- Push gateway (FCM HTTP v1) ---
    fcm_project_id: str = ""
    fcm_access_token: str = ""
    fcm_api_url: str = "https://fcm.googleapis.com"
    fcm_iid_url: str = "https://iid.googleapis.com"
    gateway_timeout_seconds: float = 10.0
    message_ttl_seconds: int = 86400

    # --- Bulk dispatch throttling ---
    bulk_batch_size: int = 100
    bulk_batch_delay_seconds: float = 1.0
    bulk_max_targets: int = 500

    # --- Channels & history ---
    max_channels_per_user: int = 5
    max_channel_errors: int = 5
    history_limit: int = 100

    # --- Scheduler ---
    scheduler_timezone: str = "Europe/Paris"
    scheduler_enabled: bool = True
    default_jobs_enabled: bool = True

    model_config = {
        "env_prefix": "COACH_",
        "env_file": ".env",
        "extra": "ignore",
    }

    def gateway_config(self) -> Optional[GatewayConfig]:
        """Live gateway settings, or None when credentials are incomplete."""
        if not self.fcm_project_id or not self.fcm_access_token:
            return None
        return GatewayConfig(
            project_id=self.fcm_project_id,
            access_token=self.fcm_access_token,
            api_url=self.fcm_api_url,
            iid_url=self.fcm_iid_url,
            timeout_seconds=self.gateway_timeout_seconds,
            ttl_seconds=self.message_ttl_seconds,
        )

    def notification_config(self) -> NotificationConfig:
        return NotificationConfig(
            max_channels_per_user=self.max_channels_per_user,
            max_error_count=self.max_channel_errors,
            history_limit=self.history_limit,
            max_bulk_targets=self.bulk_max_targets,
            batch_size=self.bulk_batch_size,
            batch_delay_seconds=self.bulk_batch_delay_seconds,
            send_timeout_seconds=self.gateway_timeout_seconds,
            scheduler_timezone=self.scheduler_timezone,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
