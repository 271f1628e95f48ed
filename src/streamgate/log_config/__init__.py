"""Logging configuration package."""

from .main import (
    PlaybackContext,
    clear_playback_context,
    configure_logging,
    get_context_logger,
    set_playback_context,
)


__all__ = [
    "configure_logging",
    "get_context_logger",
    "PlaybackContext",
    "set_playback_context",
    "clear_playback_context",
]
