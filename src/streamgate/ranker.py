"""Media file ranking.

Picks the most playable ``MediaFile`` for a browser HLS/MP4 player. When a
document carries no usable ``MediaFile`` at all, the raw text is scanned for
the first absolute media URL instead.
"""

import html
import re
from typing import Iterable, Optional
from urllib.parse import urljoin, urlsplit

from .types import MediaCandidate


MEDIA_TYPE_PRIORITY: tuple[str, ...] = (
    "video/mp4",
    "application/x-mpegurl",
    "application/vnd.apple.mpegurl",
    "video/webm",
)

_BARE_MEDIA_URL_RE = re.compile(
    r"""https?://[^"'\s<>]+(?:\.mp4|\.m3u8|\.webm)(?:\?[^"'\s<>]*)?""",
    re.IGNORECASE,
)


def score_candidate(candidate: MediaCandidate) -> float:
    score = 0.0
    media_type = (candidate.type or "").lower()

    if media_type in MEDIA_TYPE_PRIORITY:
        score += 200 - 20 * MEDIA_TYPE_PRIORITY.index(media_type)
    if "mp4" in media_type:
        score += 20
    if "mpegurl" in media_type:
        score += 15

    path = urlsplit(candidate.url).path.lower()
    if path.endswith(".mp4"):
        score += 20
    elif path.endswith(".m3u8"):
        score += 15

    if candidate.bitrate:
        score += min(candidate.bitrate / 100, 20)
    if candidate.width and candidate.height:
        score += min(candidate.width * candidate.height / 100_000, 15)
    return score


def pick_best_candidate(candidates: Iterable[MediaCandidate]) -> Optional[MediaCandidate]:
    """Highest scoring candidate; the first one seen wins a tie."""
    best: Optional[MediaCandidate] = None
    best_score = float("-inf")
    for candidate in candidates:
        score = score_candidate(candidate)
        if score > best_score:
            best, best_score = candidate, score
    return best


def find_bare_media_url(raw: str, base_url: Optional[str] = None) -> Optional[str]:
    """First absolute ``.mp4``/``.m3u8``/``.webm`` URL anywhere in ``raw``."""
    match = _BARE_MEDIA_URL_RE.search(html.unescape(raw or ""))
    if not match:
        return None
    url = match.group(0)
    return urljoin(base_url, url) if base_url else url


def pick_media_url(
    candidates: Iterable[MediaCandidate], raw: str, base_url: Optional[str] = None
) -> Optional[str]:
    best = pick_best_candidate(candidates)
    if best is not None:
        return best.url
    return find_bare_media_url(raw, base_url)


__all__ = [
    "MEDIA_TYPE_PRIORITY",
    "score_candidate",
    "pick_best_candidate",
    "find_bare_media_url",
    "pick_media_url",
]
