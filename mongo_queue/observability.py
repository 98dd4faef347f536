"""
Structured Logging & Observability
Production-grade logging that's both human-readable and machine-parseable.
"""
import sys
from loguru import logger
from mongo_queue.config import get_settings


def configure_logging():
    """
    Configure loguru for queue observability.

    In development: Human-readable colorized output
    In production: Structured JSON logs for ingestion (ELK, Datadog, etc.)
    """
    settings = get_settings()

    # Remove default handler
    logger.remove()

    if not settings.enable_structured_logging:
        logger.add(
            sys.stderr,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "{message}"
            ),
            level=settings.log_level,
            colorize=True,
        )
    else:
        logger.add(
            sys.stderr,
            format="{message}",
            level=settings.log_level,
            serialize=True,  # Output as JSON
        )

    logger.info(f"Logging configured: level={settings.log_level}, structured={settings.enable_structured_logging}")


def log_queue_event(
    queue: str,
    event: str,
    level: str = "DEBUG",
    **context
):
    """
    Structured logging for message lifecycle events.

    Args:
        queue: Name of the queue (collection)
        event: What happened (e.g., "add", "claim", "ack", "dead_letter")
        level: Loguru level name
        **context: Additional context (message_id, tries, count, ...)

    Example:
        >>> log_queue_event("jobs", "claim", message_id="65f0...", tries=1)
    """
    log_data = {
        "queue": queue,
        "event": event,
        **context
    }

    logger.bind(**log_data).log(level.upper(), f"{queue} | {event}")
