"""Configuration models for the alerting service.

Each component takes its own pydantic model; ``Settings`` aggregates them
and loads overrides from environment variables (``DEVFLOW_ALERTS_`` prefix,
``__`` as the nesting delimiter) and an optional YAML file.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import NotificationChannel


class AlertServiceConfig(BaseModel):
    """Alert lifecycle settings."""

    max_active_alerts: int = Field(default=1000, ge=1)
    default_cooldown_period: int = Field(
        default=60, ge=0, description="Cooldown in minutes when a rule sets none"
    )
    escalation_timeout: int = Field(
        default=300,
        ge=1,
        description="Seconds before an unacknowledged alert escalates one level",
    )
    feedback_retention_days: int = Field(default=30, ge=1)


class NotificationServiceConfig(BaseModel):
    """Delivery, retry and template cache settings."""

    max_retries: int = Field(default=3, ge=0)
    retry_delay: int = Field(
        default=60000, ge=1, description="Milliseconds between retry sweeps"
    )
    batch_size: int = Field(default=10, ge=1)
    template_cache_size: int = Field(default=100, ge=1)
    send_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Upper bound on a single provider send"
    )


class EmailProviderConfig(BaseModel):
    """SMTP settings."""

    host: str = Field(..., description="SMTP server host")
    port: int = Field(default=587, description="SMTP server port")
    username: Optional[str] = Field(default=None, description="SMTP username")
    password: Optional[str] = Field(default=None, description="SMTP password")
    use_tls: bool = Field(default=True, description="Use STARTTLS")
    from_address: str = Field(..., description="From email address")
    timeout_seconds: float = Field(default=10.0, gt=0)


class SlackProviderConfig(BaseModel):
    """Slack Web API settings."""

    bot_token: str = Field(..., description="Slack bot token")
    api_base_url: str = Field(default="https://slack.com/api")
    username: str = Field(default="DevFlow Alerts", description="Bot display name")
    timeout_seconds: float = Field(default=10.0, gt=0)


class TeamsProviderConfig(BaseModel):
    """Microsoft Teams incoming webhook settings."""

    webhook_url: str = Field(..., description="Teams incoming webhook URL")
    timeout_seconds: float = Field(default=10.0, gt=0)


class WebhookProviderConfig(BaseModel):
    """Generic JSON webhook settings."""

    url: Optional[str] = Field(
        default=None, description="Default URL when the recipient is not a URL"
    )
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = Field(default=10.0, gt=0)


class InAppProviderConfig(BaseModel):
    """In-app notification settings."""

    default_expiration_days: int = Field(default=30, ge=1)
    max_notifications_per_user: int = Field(default=100, ge=1)
    enable_real_time_updates: bool = True
    cleanup_interval_seconds: float = Field(default=3600.0, gt=0)


class FatigueConfig(BaseModel):
    """Alert fatigue and maintenance window settings."""

    enabled: bool = False
    fatigue_threshold: float = Field(default=10.0, gt=0)
    time_window_minutes: int = Field(default=60, ge=1)
    adaptive_threshold_enabled: bool = True
    maintenance_window_enabled: bool = True


class DispatcherConfig(BaseModel):
    """Routing for alerts that do not come from a rule with actions."""

    default_channels: List[NotificationChannel] = Field(default_factory=list)
    default_recipients: Dict[NotificationChannel, List[str]] = Field(
        default_factory=dict
    )


class Settings(BaseSettings):
    """Application settings loaded from environment variables and YAML."""

    model_config = SettingsConfigDict(
        env_prefix="DEVFLOW_ALERTS_", env_nested_delimiter="__", extra="ignore"
    )

    log_level: str = "INFO"
    log_format: str = "json"

    alerts: AlertServiceConfig = AlertServiceConfig()
    notifications: NotificationServiceConfig = NotificationServiceConfig()
    fatigue: FatigueConfig = FatigueConfig()
    dispatcher: DispatcherConfig = DispatcherConfig()

    email: Optional[EmailProviderConfig] = None
    slack: Optional[SlackProviderConfig] = None
    teams: Optional[TeamsProviderConfig] = None
    webhook: Optional[WebhookProviderConfig] = None
    in_app: InAppProviderConfig = InAppProviderConfig()

    def __init__(self, _config_file: Optional[str] = None, **values: Any) -> None:
        file_values: Dict[str, Any] = {}
        if _config_file:
            cfg_path = Path(_config_file)
            if cfg_path.exists():
                loaded = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
                if isinstance(loaded, dict):
                    file_values = loaded
        merged = {**file_values, **values}
        super().__init__(**merged)

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        level = (value or "INFO").upper()
        if level not in valid_levels:
            raise ValueError(f"log_level must be one of {sorted(valid_levels)}")
        return level

    def to_dict(self, mask_secrets: bool = True) -> Dict[str, Any]:
        """Serialize settings for diagnostics (optionally masking secrets)."""
        result = self.model_dump(mode="json")
        if mask_secrets:
            if result.get("email") and result["email"].get("password"):
                result["email"]["password"] = "***MASKED***"
            if result.get("slack"):
                result["slack"]["bot_token"] = "***MASKED***"
            if result.get("teams"):
                result["teams"]["webhook_url"] = "***MASKED***"
        return result


@lru_cache()
def get_settings(config_file: Optional[str] = None) -> Settings:
    """Load settings once per config file path."""
    return Settings(_config_file=config_file)
