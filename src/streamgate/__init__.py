"""streamgate: VAST ad resolution, a token-guarded HLS proxy and
multi-source playback orchestration.

Example:
    >>> from streamgate import VastResolver, AdSlot
    >>> resolver = VastResolver(http_client)
    >>> ad = await resolver.resolve(AdSlot.PREROLL, "https://ads.example.com/vast.xml")
"""

from .ad_break import AdBreakMachine, AdBreakPhase, FiredEvents, SourceAdFlags
from .exceptions import (
    AdBreakStateError,
    ConfigError,
    InvalidMediaRequestError,
    NoPlayableSourceError,
    ProxyTargetError,
    ProxyTokenDisabledError,
    ProxyTokenError,
    ProxyTokenInvalidError,
    StreamGateError,
    UpstreamFetchError,
    VastDurationError,
    VastParseError,
)
from .orchestrator import PlaybackOrchestrator
from .parser import VastDocument, VastParser
from .playlist_proxy import ManifestRewriter, ProxyResponse, SecurePlaylistProxy
from .proxy_token import ProxyTokenService
from .ranker import pick_best_candidate, pick_media_url, score_candidate
from .resolver import AdDecisionClient, AdService, VastResolver
from .settings import Settings, get_settings
from .sources import MediaRequest, PlaylistClient, SourceAggregator
from .tracker import BeaconTracker
from .types import (
    ActiveVastAd,
    AdSlot,
    MediaCandidate,
    ProxyTokenPayload,
    StreamSourceOption,
    TrackingEvent,
)


__version__ = "0.1.0"

__all__ = [
    "ActiveVastAd",
    "AdBreakMachine",
    "AdBreakPhase",
    "AdBreakStateError",
    "AdDecisionClient",
    "AdService",
    "AdSlot",
    "BeaconTracker",
    "ConfigError",
    "FiredEvents",
    "InvalidMediaRequestError",
    "ManifestRewriter",
    "MediaCandidate",
    "MediaRequest",
    "NoPlayableSourceError",
    "PlaybackOrchestrator",
    "PlaylistClient",
    "ProxyResponse",
    "ProxyTargetError",
    "ProxyTokenDisabledError",
    "ProxyTokenError",
    "ProxyTokenInvalidError",
    "ProxyTokenPayload",
    "ProxyTokenService",
    "SecurePlaylistProxy",
    "Settings",
    "SourceAdFlags",
    "SourceAggregator",
    "StreamGateError",
    "StreamSourceOption",
    "TrackingEvent",
    "UpstreamFetchError",
    "VastDocument",
    "VastDurationError",
    "VastParseError",
    "VastParser",
    "VastResolver",
    "get_settings",
    "pick_best_candidate",
    "pick_media_url",
    "score_candidate",
]
