"""
Structured logging configuration for the alerting service.

Recipient addresses and provider credentials are masked before log
records are rendered.
"""

import logging
import sys
from typing import Any, Dict, List, cast

import structlog
from structlog.types import FilteringBoundLogger


class SecretMaskingProcessor:
    """
    Structlog processor that masks credentials and recipient addresses.

    Note: This class has only one public method (__call__) as it is a
    single-purpose structlog processor.
    """

    MASKED_KEYS = {
        "password",
        "bot_token",
        "token",
        "authorization",
        "webhook_url",
        "smtp_password",
    }

    def __call__(
        self, logger: FilteringBoundLogger, method_name: str, event_dict: Dict[str, Any]
    ) -> Dict[str, Any]:
        for key in list(event_dict.keys()):
            if key.lower() in self.MASKED_KEYS and event_dict[key]:
                event_dict[key] = "***MASKED***"
        recipient = event_dict.get("recipient")
        if isinstance(recipient, str) and "@" in recipient:
            local, _, domain = recipient.partition("@")
            event_dict["recipient"] = f"{local[:1]}***@{domain}"
        return event_dict


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    mask_secrets: bool = True,
) -> None:
    """
    Set up structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format (json, console)
        mask_secrets: Whether to mask credentials and recipient addresses
    """
    level = getattr(logging, log_level.upper())

    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if mask_secrets:
        processors.append(SecretMaskingProcessor())

    if log_format == "json":
        processors.extend(
            [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
        )
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        level=level,
        handlers=[logging.StreamHandler(sys.stdout)],
        format="%(message)s",
        force=True,
    )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> FilteringBoundLogger:
    """
    Get a structured logger.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return cast(FilteringBoundLogger, structlog.get_logger(name))
