"""Logging setup: structlog over stdlib logging, file output only.

The dashboard owns the terminal, so log records never go to stdout/stderr.
They are written to a file when ``LABDASH_LOG`` is set or ``--debug`` is passed.
"""

from __future__ import annotations

import logging
import os

import structlog

DEFAULT_LOG_FILE = "labdash.log"


def _resolve_level(value: str | None, debug: bool) -> int:
    if debug:
        return logging.DEBUG
    if not value:
        return logging.INFO
    try:
        return int(value)
    except ValueError:
        pass
    return logging._nameToLevel.get(value.upper(), logging.INFO)


def configure_logging(*, debug: bool = False, log_file: str | None = None) -> str | None:
    """Configure logging and return the log file path in use (None if disabled)."""
    env_level = os.environ.get("LABDASH_LOG")
    enabled = debug or bool(env_level)
    resolved_file = log_file or os.environ.get("LABDASH_LOG_FILE") or DEFAULT_LOG_FILE

    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    if enabled:
        formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=False),
            foreign_pre_chain=pre_chain,
        )
        file_handler = logging.FileHandler(resolved_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        root_logger.setLevel(_resolve_level(env_level, debug))
    else:
        # swallow records instead of falling through to logging.lastResort (stderr)
        root_logger.addHandler(logging.NullHandler())
        root_logger.setLevel(logging.CRITICAL)

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return resolved_file if enabled else None
