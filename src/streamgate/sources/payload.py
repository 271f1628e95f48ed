"""The playlist wire format shared by ``/sources`` and the player.

::

    {"playlist": [{"sources": [{"type": "hls", "file": "...", "label": "...",
                                "provider": "...", "default": true}]}]}
"""

from dataclasses import replace
from typing import Any, Iterable

from ..types import StreamSourceOption


def dedupe_sources(sources: Iterable[StreamSourceOption]) -> list[StreamSourceOption]:
    """Drop repeated ``file`` values, keeping the first occurrence."""
    seen: set[str] = set()
    result = []
    for source in sources:
        if source.file in seen:
            continue
        seen.add(source.file)
        result.append(source)
    return result


def default_source_index(sources: list[StreamSourceOption]) -> int:
    for index, source in enumerate(sources):
        if source.is_default:
            return index
    return 0


def select_default(sources: list[StreamSourceOption]) -> list[StreamSourceOption]:
    """Return the list with exactly one default: the first flagged entry, else the first entry."""
    if not sources:
        return []
    chosen = default_source_index(sources)
    return [replace(source, is_default=index == chosen) for index, source in enumerate(sources)]


def to_playlist_payload(sources: Iterable[StreamSourceOption]) -> dict[str, Any]:
    return {"playlist": [{"sources": [source.to_payload() for source in sources]}]}


def parse_playlist_payload(payload: Any) -> list[StreamSourceOption]:
    """Playable HLS options from a playlist document, de-duplicated by file.

    Anything malformed is skipped rather than rejected.
    """
    if not isinstance(payload, dict):
        return []
    playlist = payload.get("playlist")
    if not isinstance(playlist, list):
        return []

    options = []
    for item in playlist:
        if not isinstance(item, dict) or not isinstance(item.get("sources"), list):
            continue
        for entry in item["sources"]:
            option = StreamSourceOption.from_payload(entry)
            if option is not None:
                options.append(option)
    return dedupe_sources(options)


__all__ = [
    "dedupe_sources",
    "default_source_index",
    "select_default",
    "to_playlist_payload",
    "parse_playlist_payload",
]
