"""Structured logging for agentstream.

All modules log through ``get_logger(__name__)``. ``configure_logging`` routes
the package namespaces through structlog without touching the root logger, so
an embedding application keeps control over its own handlers.
"""

from __future__ import annotations

import logging
import sys
from typing import IO, Any

import structlog


LogLevel = int | str

LOGGER_NAMESPACES = ("agentstream", "agentstream_config")
"""Top-level logger names owned by this project."""

SHARED_PROCESSORS: list[Any] = [
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def _to_level(level: LogLevel) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        msg = f"Unknown log level: {level!r}"
        raise ValueError(msg)
    return value


def configure_logging(
    level: LogLevel = "INFO",
    *,
    json_logs: bool | None = None,
    stream: IO[str] | None = None,
) -> logging.Handler:
    """Send agentstream's logs to ``stream`` through structlog.

    Calling it again replaces the handler installed by the previous call.

    Args:
        level: Level for the package loggers
        json_logs: Render JSON lines. Defaults to JSON unless ``stream`` is a TTY
        stream: Target stream, stderr by default

    Returns:
        The installed handler
    """
    numeric_level = _to_level(level)
    stream = stream or sys.stderr
    if json_logs is None:
        json_logs = not stream.isatty()
    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=stream.isatty())
    )
    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=SHARED_PROCESSORS,
        )
    )
    for namespace in LOGGER_NAMESPACES:
        package_logger = logging.getLogger(namespace)
        package_logger.handlers = [handler]
        package_logger.setLevel(numeric_level)
        package_logger.propagate = False

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )
    return handler


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Logger for module ``name``, kept under one of the package namespaces."""
    if name.split(".", 1)[0] not in LOGGER_NAMESPACES:
        name = f"agentstream.{name}"
    return structlog.get_logger(name)
