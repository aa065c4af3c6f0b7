from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


FALLBACK_LOGGER_NAME = "dynamic_logger"

_CONFIGURED = False


def get_fallback_logger(name: str = FALLBACK_LOGGER_NAME) -> logging.Logger:
    """Stdlib logger used to report instrumentation failures.

    Kept apart from the request sinks so a broken sink cannot hide its own failure.
    """

    return logging.getLogger(name)


def configure_logging(level: int = logging.WARNING) -> logging.Handler:
    """Render fallback diagnostics as JSON on stderr.

    Only the ``dynamic_logger`` logger is touched, never the root logger.
    Safe to call multiple times (no-op after first call).
    """

    global _CONFIGURED
    logger = get_fallback_logger()
    if _CONFIGURED and logger.handlers:
        return logger.handlers[0]

    pre_chain: list[Any] = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=pre_chain,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    logger.handlers = [handler]
    logger.setLevel(level)
    logger.propagate = False

    _CONFIGURED = True
    return handler

