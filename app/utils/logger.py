"""
Structured logging configuration using structlog.
Notification handling binds base_id/webhook_id as context variables, so every
event logged while a notification is processed carries them.
"""
import logging

import structlog

from app.config import settings

# Event keys whose values must never reach the log output
REDACTED_KEYS = frozenset(
    {"access_token", "refresh_token", "mac_secret_base64", "macSecretBase64", "authorization"}
)


def redact_secrets(logger, method_name, event_dict):
    """Mask OAuth tokens and webhook MAC secrets passed as event fields."""
    for key in REDACTED_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def configure_logging():
    """
    Configure structured logging for the service and the refresh worker.
    JSON lines in production, console rendering elsewhere.
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if settings.app_environment == "production":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
