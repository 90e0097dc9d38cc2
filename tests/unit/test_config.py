"""Unit tests for settings loading."""

import pydantic
import pytest

from devflow_alerts.config import NotificationServiceConfig, Settings, get_settings
from devflow_alerts.models import NotificationChannel


class TestSettings:
    """Test defaults, environment overrides and YAML files."""

    def test_defaults(self):
        """Out of the box only the in-app channel is configured."""
        settings = Settings()

        assert settings.log_level == "INFO"
        assert settings.alerts.max_active_alerts == 1000
        assert settings.alerts.default_cooldown_period == 60
        assert settings.notifications.max_retries == 3
        assert settings.notifications.retry_delay == 60000
        assert settings.notifications.batch_size == 10
        assert settings.fatigue.enabled is False
        assert settings.email is None
        assert settings.slack is None

    def test_environment_overrides(self, monkeypatch):
        """Nested values are read from DEVFLOW_ALERTS_ variables."""
        monkeypatch.setenv("DEVFLOW_ALERTS_LOG_LEVEL", "debug")
        monkeypatch.setenv("DEVFLOW_ALERTS_ALERTS__MAX_ACTIVE_ALERTS", "5")
        monkeypatch.setenv("DEVFLOW_ALERTS_SLACK__BOT_TOKEN", "xoxb-env")

        settings = Settings()

        assert settings.log_level == "DEBUG"
        assert settings.alerts.max_active_alerts == 5
        assert settings.slack.bot_token == "xoxb-env"

    def test_yaml_file(self, tmp_path):
        """A YAML file supplies settings, explicit values win."""
        config_file = tmp_path / "alerts.yaml"
        config_file.write_text(
            "log_format: console\n"
            "notifications:\n"
            "  batch_size: 25\n"
            "dispatcher:\n"
            "  default_channels: [in_app]\n"
            "  default_recipients:\n"
            "    in_app: [user-1]\n"
            "email:\n"
            "  host: smtp.example.com\n"
            "  from_address: alerts@example.com\n"
            "  password: hunter2\n",
            encoding="utf-8",
        )

        settings = Settings(_config_file=str(config_file), log_format="json")

        assert settings.log_format == "json"
        assert settings.notifications.batch_size == 25
        assert settings.dispatcher.default_channels == [NotificationChannel.IN_APP]
        assert settings.dispatcher.default_recipients == {NotificationChannel.IN_APP: ["user-1"]}
        assert settings.email.port == 587
        assert settings.to_dict()["email"]["password"] == "***MASKED***"
        assert settings.to_dict(mask_secrets=False)["email"]["password"] == "hunter2"

    def test_missing_yaml_file_is_ignored(self, tmp_path):
        """A config path that does not exist falls back to defaults."""
        settings = Settings(_config_file=str(tmp_path / "absent.yaml"))
        assert settings.notifications.batch_size == 10

    def test_invalid_log_level(self):
        """Unknown log levels are rejected."""
        with pytest.raises(pydantic.ValidationError):
            Settings(log_level="verbose")

    def test_component_validation(self):
        """Component models enforce their bounds."""
        with pytest.raises(pydantic.ValidationError):
            NotificationServiceConfig(batch_size=0)

    def test_get_settings_is_cached(self, tmp_path):
        """Settings are loaded once per config path."""
        get_settings.cache_clear()
        path = str(tmp_path / "absent.yaml")
        assert get_settings(path) is get_settings(path)
        get_settings.cache_clear()
