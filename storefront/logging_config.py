"""
Structured logging configuration using structlog.

All logs are output as JSON with consistent context fields. Every line
is tagged with the webhooks subsystem, and signing secrets never make
it into a log line even when a caller binds one by mistake.
"""
import structlog
import logging
import sys


SUBSYSTEM = "webhooks"
REDACTED = "[redacted]"
SECRET_KEYS = frozenset({
    "signing_secret",
    "secret",
    "cron_secret",
    "x-cron-secret",
    "x-webhook-signature",
    "authorization",
})


def add_subsystem(logger, method_name, event_dict):
    """Tag the line so webhook logs can be filtered like Sentry events."""
    event_dict.setdefault("subsystem", SUBSYSTEM)
    return event_dict


def redact_secrets(logger, method_name, event_dict):
    """Mask secret-bearing keys, including inside a logged headers dict."""
    for key, value in event_dict.items():
        if key.lower() in SECRET_KEYS and value:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {
                k: REDACTED if str(k).lower() in SECRET_KEYS and v else v
                for k, v in value.items()
            }
    return event_dict


def configure_logging():
    """Configure structlog for JSON output with context."""
    
    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.INFO,
    )
    
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            add_subsystem,
            redact_secrets,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    
    return structlog.get_logger()


# Create logger instance
logger = configure_logging()


def get_logger(**context):
    """
    Get a logger with additional context bound.
    
    Usage:
        log = get_logger(order_id=order_id, event_type="order_completed")
        log.info("webhook_queued", entry_id=entry.id)
    """
    return logger.bind(**context)
