"""Core data types shared by the resolver, proxy and playback layers."""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterable, Mapping, Optional


class AdSlot(str, Enum):
    """Ad break position within the main content."""

    PREROLL = "preroll"
    MIDROLL = "midroll"

    @classmethod
    def parse(cls, value: "AdSlot | str | None") -> "AdSlot":
        """Coerce a query value to a slot; anything unknown is a pre-roll."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.strip().lower() == cls.MIDROLL.value:
            return cls.MIDROLL
        return cls.PREROLL


class TrackingEvent(str, Enum):
    """Linear tracking event keys.

    Tracking maps are keyed by the plain ``.value`` strings so lookups work
    with either the enum member or the raw VAST name.
    """

    START = "start"
    FIRST_QUARTILE = "firstQuartile"
    MIDPOINT = "midpoint"
    THIRD_QUARTILE = "thirdQuartile"
    COMPLETE = "complete"
    SKIP = "skip"
    CLOSE_LINEAR = "closeLinear"
    CLICK = "click"


TRACKING_EVENT_KEYS: tuple[str, ...] = tuple(e.value for e in TrackingEvent)


def unique_urls(*groups: Iterable[str]) -> list[str]:
    """Concatenate URL groups, dropping blanks and repeats, keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for group in groups:
        for url in group:
            if url and url not in seen:
                seen.add(url)
                result.append(url)
    return result


@dataclass(frozen=True)
class MediaCandidate:
    """A single VAST ``MediaFile`` entry."""

    url: str
    type: Optional[str] = None
    bitrate: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None


@dataclass
class ActiveVastAd:
    """A fully resolved linear ad, ready to play."""

    slot: AdSlot
    media_url: str
    click_through_url: Optional[str] = None
    duration_seconds: Optional[float] = None
    skip_offset_seconds: Optional[float] = None
    impression_urls: list[str] = field(default_factory=list)
    error_urls: list[str] = field(default_factory=list)
    click_tracking_urls: list[str] = field(default_factory=list)
    tracking: dict[str, list[str]] = field(default_factory=dict)

    def tracking_urls(self, event: TrackingEvent | str) -> list[str]:
        key = event.value if isinstance(event, TrackingEvent) else event
        return list(self.tracking.get(key, []))

    def merge_wrapper_trackers(
        self,
        impression_urls: Iterable[str] = (),
        error_urls: Iterable[str] = (),
        click_tracking_urls: Iterable[str] = (),
        tracking: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> "ActiveVastAd":
        """Return a copy with a wrapper's trackers merged in.

        Wrapper URLs come first; each list is de-duplicated.
        """
        tracking = tracking or {}
        merged: dict[str, list[str]] = {}
        for key in TRACKING_EVENT_KEYS:
            urls = unique_urls(tracking.get(key, ()), self.tracking.get(key, ()))
            if urls:
                merged[key] = urls
        return replace(
            self,
            impression_urls=unique_urls(impression_urls, self.impression_urls),
            error_urls=unique_urls(error_urls, self.error_urls),
            click_tracking_urls=unique_urls(click_tracking_urls, self.click_tracking_urls),
            tracking=merged,
        )

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the ad-decision JSON shape."""
        return {
            "enabled": True,
            "slot": self.slot.value,
            "mediaUrl": self.media_url,
            "clickThroughUrl": self.click_through_url,
            "durationSeconds": self.duration_seconds,
            "skipOffsetSeconds": self.skip_offset_seconds,
            "impressionUrls": list(self.impression_urls),
            "errorUrls": list(self.error_urls),
            "clickTrackingUrls": list(self.click_tracking_urls),
            "tracking": {k: list(v) for k, v in self.tracking.items()},
        }

    @classmethod
    def from_payload(cls, slot: AdSlot, payload: Mapping[str, Any]) -> Optional["ActiveVastAd"]:
        """Build an ad from an ad-decision payload; ``None`` when it carries no ad."""
        if not isinstance(payload, Mapping) or not payload.get("enabled"):
            return None
        media_url = payload.get("mediaUrl")
        if not isinstance(media_url, str) or not media_url.strip():
            return None

        def _urls(value: Any) -> list[str]:
            if not isinstance(value, list):
                return []
            return unique_urls(v.strip() for v in value if isinstance(v, str))

        tracking_raw = payload.get("tracking")
        tracking: dict[str, list[str]] = {}
        if isinstance(tracking_raw, Mapping):
            for key in TRACKING_EVENT_KEYS:
                urls = _urls(tracking_raw.get(key))
                if urls:
                    tracking[key] = urls

        click_through = payload.get("clickThroughUrl")
        return cls(
            slot=slot,
            media_url=media_url.strip(),
            click_through_url=click_through if isinstance(click_through, str) and click_through else None,
            duration_seconds=_positive_number(payload.get("durationSeconds")),
            skip_offset_seconds=_non_negative_number(payload.get("skipOffsetSeconds")),
            impression_urls=_urls(payload.get("impressionUrls")),
            error_urls=_urls(payload.get("errorUrls")),
            click_tracking_urls=_urls(payload.get("clickTrackingUrls")),
            tracking=tracking,
        )


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def _positive_number(value: Any) -> Optional[float]:
    number = _number(value)
    return number if number is not None and number > 0 else None


def _non_negative_number(value: Any) -> Optional[float]:
    number = _number(value)
    return number if number is not None and number >= 0 else None


@dataclass(frozen=True)
class StreamSourceOption:
    """A playable stream choice offered to the viewer."""

    file: str
    label: str = "Auto"
    provider: Optional[str] = None
    is_default: bool = False

    def to_payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": "hls", "file": self.file, "label": self.label}
        if self.provider:
            data["provider"] = self.provider
        if self.is_default:
            data["default"] = True
        return data

    @classmethod
    def from_payload(cls, data: Any) -> Optional["StreamSourceOption"]:
        """Parse one ``sources`` entry; only non-empty HLS entries are accepted."""
        if not isinstance(data, Mapping) or data.get("type") != "hls":
            return None
        file = data.get("file")
        if not isinstance(file, str) or not file.strip():
            return None
        label = data.get("label")
        label = label.strip() if isinstance(label, str) else ""
        provider = data.get("provider")
        return cls(
            file=file.strip(),
            label=label or "Auto",
            provider=provider if isinstance(provider, str) and provider else None,
            is_default=data.get("default") is True,
        )


@dataclass(frozen=True)
class ProxyTokenPayload:
    """Decrypted proxy token contents."""

    target: str
    exp: int
    headers: Mapping[str, str] = field(default_factory=dict)


__all__ = [
    "AdSlot",
    "TrackingEvent",
    "TRACKING_EVENT_KEYS",
    "unique_urls",
    "MediaCandidate",
    "ActiveVastAd",
    "StreamSourceOption",
    "ProxyTokenPayload",
]
