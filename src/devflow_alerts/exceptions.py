"""Exception hierarchy for the alerting service."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class AlertingError(Exception):
    """Base exception for all alerting errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = timestamp or datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message='{self.message}', "
            f"error_code='{self.error_code}'"
            f")"
        )


class ValidationError(AlertingError):
    """Raised when a rule, template or request payload is malformed."""

    def __init__(
        self,
        message: str,
        error_code: str = "VALIDATION_ERROR",
        details: Optional[Dict[str, Any]] = None,
        field_errors: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message, error_code, details)
        self.field_errors = field_errors or {}
        if self.field_errors:
            self.details["field_errors"] = self.field_errors


class ConfigurationError(AlertingError):
    """Raised when a provider or service is misconfigured."""

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIGURATION_ERROR",
        details: Optional[Dict[str, Any]] = None,
        config_key: Optional[str] = None,
    ):
        super().__init__(message, error_code, details)
        self.config_key = config_key
        if config_key:
            self.details["config_key"] = config_key


class ProviderError(AlertingError):
    """Raised by a notification provider when the transport rejects a send."""

    def __init__(
        self,
        message: str,
        channel: Optional[str] = None,
        error_code: str = "PROVIDER_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code, details)
        self.channel = channel
        if channel:
            self.details["channel"] = channel


class TemplateNotFoundError(AlertingError):
    """Raised when no template exists for a channel and alert type."""

    def __init__(self, channel: str, alert_type: str):
        super().__init__(
            f"No template found for channel {channel} and alert type {alert_type}",
            "TEMPLATE_NOT_FOUND",
            {"channel": channel, "alert_type": alert_type},
        )
        self.channel = channel
        self.alert_type = alert_type


class AlertNotFoundError(AlertingError):
    """Raised when a delivery refers to an alert that can no longer be loaded."""

    def __init__(self, alert_id: str):
        super().__init__(
            f"Alert {alert_id} not found", "ALERT_NOT_FOUND", {"alert_id": alert_id}
        )
        self.alert_id = alert_id
