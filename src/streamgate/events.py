"""Structured logging event names."""

from enum import Enum


class StreamEvents(str, Enum):
    """Event type constants for structured logging."""

    # Parser events
    PARSE_FAILED = "vast.parse.failed"
    PARSE_EMPTY = "vast.parse.empty"
    SKIP_OFFSET_IGNORED = "vast.parse.skip_offset_ignored"

    # Resolver events
    RESOLVE_STARTED = "vast.resolve.started"
    RESOLVE_SUCCESS = "vast.resolve.success"
    RESOLVE_EMPTY = "vast.resolve.empty"
    RESOLVE_TIMEOUT = "vast.resolve.timeout"
    WRAPPER_FOLLOWED = "vast.wrapper.followed"
    WRAPPER_DEPTH_EXCEEDED = "vast.wrapper.depth_exceeded"
    FETCH_FAILED = "vast.fetch.failed"
    DECISION_FAILED = "vast.decision.failed"

    # Tracking events
    BEACON_SENT = "vast.beacon.sent"
    BEACON_FAILED = "vast.beacon.failed"

    # Ad break events
    AD_BREAK_REQUESTED = "adbreak.requested"
    AD_BREAK_STARTED = "adbreak.started"
    AD_BREAK_SKIPPED = "adbreak.skipped"
    AD_BREAK_FINISHED = "adbreak.finished"
    AD_BREAK_ABANDONED = "adbreak.abandoned"
    AD_BREAK_STALE = "adbreak.stale"

    # Proxy events
    PROXY_REJECTED = "proxy.rejected"
    PROXY_UPSTREAM_FAILED = "proxy.upstream.failed"
    PROXY_MANIFEST_REWRITTEN = "proxy.manifest.rewritten"
    PROXY_PASSTHROUGH = "proxy.passthrough"
    TOKEN_REJECTED = "proxy.token.rejected"

    # Source events
    PROVIDER_FAILED = "sources.provider.failed"
    PROVIDER_TIMEOUT = "sources.provider.timeout"
    SOURCES_AGGREGATED = "sources.aggregated"
    SOURCES_REQUEST_REJECTED = "sources.request.rejected"
    PLAYLIST_LOADED = "sources.playlist.loaded"
    SOURCE_SWITCHED = "playback.source.switched"
    SOURCE_FAILED = "playback.source.failed"
    SOURCES_EXHAUSTED = "playback.sources.exhausted"

    # Service events
    APP_STARTED = "app.started"
    UNHANDLED_ERROR = "app.error.unhandled"


__all__ = ["StreamEvents"]
