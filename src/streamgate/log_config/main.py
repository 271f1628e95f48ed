"""Logging configuration and utilities."""

import logging
import sys
from typing import Any

import structlog


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Install the structlog processor chain.

    Args:
        level: Minimum log level name
        json_output: Render JSON lines instead of console output
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=False,
    )


def get_context_logger(name: str) -> structlog.BoundLogger:
    """Get a context-aware logger.

    Args:
        name: Logger name

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)


class PlaybackContext:
    """Context manager binding playback fields to every log line in a block."""

    def __init__(self, **context: Any):
        self.context = {k: v for k, v in context.items() if v is not None}

    def __enter__(self):
        structlog.contextvars.bind_contextvars(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        structlog.contextvars.unbind_contextvars(*self.context.keys())


def set_playback_context(**kwargs: Any) -> None:
    """Set playback context in logging."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_playback_context() -> None:
    """Drop every bound context variable."""
    structlog.contextvars.clear_contextvars()


__all__ = [
    "configure_logging",
    "get_context_logger",
    "PlaybackContext",
    "set_playback_context",
    "clear_playback_context",
]
