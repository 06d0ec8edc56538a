"""Logging setup for Mail Sync."""

import logging

import structlog

from mail_sync.config import Settings, get_settings

logger = structlog.get_logger()


def configure_logging(settings: Settings | None = None) -> None:
    """Configure structlog to filter below the configured log level.

    Debug mode logs everything regardless of ``log_level``.

    Args:
        settings: Application settings. If None, uses default settings.
    """
    settings = settings or get_settings()
    if settings.debug:
        level = logging.DEBUG
    else:
        level = getattr(logging, settings.log_level.upper(), logging.INFO)

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )
    logger.info("logging_configured", level=logging.getLevelName(level), debug=settings.debug)
