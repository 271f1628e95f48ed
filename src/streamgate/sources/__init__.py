"""Stream source lookup, aggregation and the playlist wire format."""

from .aggregator import SourceAggregator
from .payload import (
    dedupe_sources,
    default_source_index,
    parse_playlist_payload,
    select_default,
    to_playlist_payload,
)
from .playlist import PlaylistClient
from .providers import (
    OpukProvider,
    PlaylistJsonProvider,
    ResolvedStream,
    SourceListProvider,
    SourceProvider,
    VixsrcProvider,
    extract_master_playlist_url,
    normalize_headers,
    unwrap_source_url,
)
from .request import MediaRequest, MediaType
from .urls import StreamUrlBuilder


__all__ = [
    "SourceAggregator",
    "PlaylistClient",
    "StreamUrlBuilder",
    "MediaRequest",
    "MediaType",
    "ResolvedStream",
    "SourceProvider",
    "OpukProvider",
    "VixsrcProvider",
    "PlaylistJsonProvider",
    "SourceListProvider",
    "extract_master_playlist_url",
    "normalize_headers",
    "unwrap_source_url",
    "dedupe_sources",
    "default_source_index",
    "select_default",
    "to_playlist_payload",
    "parse_playlist_payload",
]
