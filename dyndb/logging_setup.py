"""
Logging setup for applications embedding dyndb.

The library itself only emits records through module loggers; call
setup_logging() from the application entry point to install a handler.
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import DynDbSettings

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(settings: DynDbSettings) -> logging.Handler:
    """Configure root logging based on settings.

    Args:
        settings: dyndb settings (log_level, log_format)

    Returns:
        The installed handler
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    return handler
