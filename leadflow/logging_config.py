"""
Structured logging configuration using structlog.

All logs are output as JSON with consistent context fields. Partner
credentials never reach the output: known secret keys are masked by
redact_secrets before rendering.
"""
import structlog
import logging
import sys

from leadflow.config import settings

SECRET_KEYS = frozenset({
    "token",
    "access_token",
    "password",
    "key",
    "param_value",
    "authorization",
    "auth_config",
    "headers",
})

# Libraries that log every request/poll at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "arq.worker", "sqlalchemy.engine")


def redact_secrets(logger, method_name, event_dict):
    """structlog processor masking values stored under secret keys."""
    for name in list(event_dict):
        if name.lower() in SECRET_KEYS:
            event_dict[name] = "[redacted]"
    return event_dict


def configure_logging(level: str | None = None):
    """Configure structlog for JSON output with context."""
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    # Standard library logging carries SQLAlchemy, httpx and arq output
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    if not settings.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger()
