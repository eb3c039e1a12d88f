"""Logging configuration for processes embedding the store."""

from __future__ import annotations

import logging

import json_log_formatter

from .config import StoreSettings


def setup_logging(settings: StoreSettings) -> None:
    """Configure logging based on configuration.

    Args:
        settings: Store settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
