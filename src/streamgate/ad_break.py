"""Client-side ad-break state machine.

Drives one linear ad at a time in front of (pre-roll) or in the middle of
(mid-roll) the main content::

    IDLE -> AWAITING_AD -> PLAYING -> FINISHING -> IDLE
                 |
                 +-> IDLE   (no fill, error, or the request went stale)

Each slot plays at most once per source. Every tracking event fires at most
once per break. Player events are delivered synchronously by the host; work
that has to wait for the network runs as an asyncio task, and its result is
dropped if the source changed in the meantime.
"""

import asyncio
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Protocol

from .events import StreamEvents
from .exceptions import AdBreakStateError
from .log_config import get_context_logger
from .resolver import AdService
from .tracker import BeaconTracker
from .types import ActiveVastAd, AdSlot, TrackingEvent


VAST_ERROR_MEDIA_NOT_PLAYABLE = 405

QUARTILES: tuple[tuple[float, TrackingEvent], ...] = (
    (0.25, TrackingEvent.FIRST_QUARTILE),
    (0.5, TrackingEvent.MIDPOINT),
    (0.75, TrackingEvent.THIRD_QUARTILE),
)


class MediaElement(Protocol):
    """The main content player as seen by the ad machine."""

    current_time: float
    duration: Optional[float]
    source_url: Optional[str]

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, position: float) -> None: ...


class AdMediaElement(Protocol):
    """The overlay player used for ad creatives."""

    current_time: float
    duration: Optional[float]

    def load(self, url: str) -> None: ...

    def play(self) -> None: ...

    def stop(self) -> None: ...


class AdBreakPhase(str, Enum):
    IDLE = "idle"
    AWAITING_AD = "awaiting_ad"
    PLAYING = "playing"
    FINISHING = "finishing"


_TRANSITIONS: dict[AdBreakPhase, frozenset[AdBreakPhase]] = {
    AdBreakPhase.IDLE: frozenset({AdBreakPhase.AWAITING_AD}),
    AdBreakPhase.AWAITING_AD: frozenset({AdBreakPhase.PLAYING, AdBreakPhase.IDLE}),
    AdBreakPhase.PLAYING: frozenset({AdBreakPhase.FINISHING}),
    AdBreakPhase.FINISHING: frozenset({AdBreakPhase.IDLE}),
}


@dataclass
class SourceAdFlags:
    """Which slots have been used up for the current source."""

    has_preroll_played: bool = False
    has_midroll_played: bool = False

    def consumed(self, slot: AdSlot) -> bool:
        return self.has_midroll_played if slot is AdSlot.MIDROLL else self.has_preroll_played

    def mark(self, slot: AdSlot) -> None:
        if slot is AdSlot.MIDROLL:
            self.has_midroll_played = True
        else:
            self.has_preroll_played = True


@dataclass
class FiredEvents:
    """At-most-once guard for the events of a single ad break."""

    keys: set[str] = field(default_factory=set)

    def claim(self, key: "TrackingEvent | str") -> bool:
        """True the first time ``key`` is claimed, False afterwards."""
        key = key.value if isinstance(key, TrackingEvent) else key
        if key in self.keys:
            return False
        self.keys.add(key)
        return True


class AdBreakMachine:
    """Coordinates the main player, the ad player and tracking."""

    def __init__(
        self,
        main: MediaElement,
        ad_player: AdMediaElement,
        ad_service: AdService,
        tracker: BeaconTracker,
        ads_enabled: bool = True,
        open_url: Optional[Callable[[str], None]] = None,
    ):
        self.main = main
        self.ad_player = ad_player
        self.ad_service = ad_service
        self.tracker = tracker
        self.ads_enabled = ads_enabled
        self.open_url = open_url
        self.logger = get_context_logger("ad_break")

        self.phase = AdBreakPhase.IDLE
        self.flags = SourceAdFlags()
        self.fired = FiredEvents()
        self.active_ad: Optional[ActiveVastAd] = None
        self.active_slot: Optional[AdSlot] = None
        self.resume_time = 0.0
        self.skip_countdown: Optional[int] = None
        self._pending: Optional[asyncio.Task] = None
        self._generation = 0

    # State

    @property
    def in_break(self) -> bool:
        return self.phase is not AdBreakPhase.IDLE

    @property
    def can_skip(self) -> bool:
        return self.phase is AdBreakPhase.PLAYING and self.skip_countdown == 0

    def _transition(self, target: AdBreakPhase) -> None:
        if target not in _TRANSITIONS[self.phase]:
            raise AdBreakStateError(self.phase.value, target.value)
        self.phase = target

    # Main player events

    def on_main_play(self) -> Optional[asyncio.Task]:
        """Main content started playing; may start the pre-roll."""
        if self.in_break:
            self.main.pause()
            return None
        if not self.ads_enabled or self.flags.has_preroll_played:
            return None
        return self._request(AdSlot.PREROLL)

    def on_main_timeupdate(self) -> Optional[asyncio.Task]:
        """Main content progressed; may start the mid-roll at the halfway point."""
        if self.in_break or not self.ads_enabled or self.flags.has_midroll_played:
            return None
        duration = self.main.duration
        if not duration or not math.isfinite(duration) or duration <= 0:
            return None
        if self.main.current_time < duration / 2:
            return None
        return self._request(AdSlot.MIDROLL)

    def _request(self, slot: AdSlot) -> asyncio.Task:
        self.resume_time = self.main.current_time
        self.main.pause()
        self._transition(AdBreakPhase.AWAITING_AD)
        self.flags.mark(slot)
        self.active_slot = slot

        self._generation += 1
        self.logger.info(StreamEvents.AD_BREAK_REQUESTED, slot=slot.value, resume_time=self.resume_time)
        self._pending = asyncio.ensure_future(
            self._load(slot, self._generation, self.main.source_url)
        )
        return self._pending

    async def _load(self, slot: AdSlot, generation: int, source_url: Optional[str]) -> None:
        try:
            ad = await self.ad_service.resolve_slot(slot)
        except Exception as e:
            self.logger.warning(StreamEvents.AD_BREAK_ABANDONED, slot=slot.value, error=str(e))
            ad = None

        if generation != self._generation or source_url != self.main.source_url:
            self.logger.debug(StreamEvents.AD_BREAK_STALE, slot=slot.value)
            return
        self._pending = None

        if ad is None or not self.ads_enabled:
            self.logger.info(StreamEvents.AD_BREAK_ABANDONED, slot=slot.value, filled=ad is not None)
            self._transition(AdBreakPhase.IDLE)
            self._resume_main()
            return
        self._start(ad)

    def _start(self, ad: ActiveVastAd) -> None:
        self._transition(AdBreakPhase.PLAYING)
        self.active_ad = ad
        self.fired = FiredEvents()
        self.skip_countdown = (
            math.ceil(max(0.0, ad.skip_offset_seconds)) if ad.skip_offset_seconds is not None else None
        )
        self.logger.info(
            StreamEvents.AD_BREAK_STARTED,
            slot=ad.slot.value,
            media_url=ad.media_url,
            skip_offset=ad.skip_offset_seconds,
        )
        self.ad_player.load(ad.media_url)
        self.ad_player.play()

    # Ad player events

    def _fire(self, key: "TrackingEvent | str", urls: list[str], error_code: Optional[int] = None) -> None:
        if self.fired.claim(key):
            event = key.value if isinstance(key, TrackingEvent) else key
            self.tracker.fire(urls, error_code=error_code, event=event)

    def _fire_started(self, ad: ActiveVastAd) -> None:
        self._fire("impression", ad.impression_urls)
        self._fire(TrackingEvent.START, ad.tracking_urls(TrackingEvent.START))

    def effective_duration(self) -> Optional[float]:
        duration = self.ad_player.duration
        if duration and math.isfinite(duration) and duration > 0:
            return duration
        return self.active_ad.duration_seconds if self.active_ad else None

    def on_ad_playing(self) -> None:
        if self.phase is AdBreakPhase.PLAYING and self.active_ad is not None:
            self._fire_started(self.active_ad)

    def on_ad_timeupdate(self) -> None:
        ad = self.active_ad
        if self.phase is not AdBreakPhase.PLAYING or ad is None:
            return
        self._fire_started(ad)

        position = self.ad_player.current_time
        duration = self.effective_duration()
        if duration:
            for fraction, event in QUARTILES:
                if position >= duration * fraction:
                    self._fire(event, ad.tracking_urls(event))

        if ad.skip_offset_seconds is not None:
            self.skip_countdown = max(0, math.ceil(ad.skip_offset_seconds - position))

    def on_ad_ended(self) -> None:
        ad = self.active_ad
        if self.phase is not AdBreakPhase.PLAYING or ad is None:
            return
        self._fire(TrackingEvent.COMPLETE, ad.tracking_urls(TrackingEvent.COMPLETE))
        self._finish()

    def on_ad_error(self, code: int = VAST_ERROR_MEDIA_NOT_PLAYABLE) -> None:
        ad = self.active_ad
        if self.phase is not AdBreakPhase.PLAYING or ad is None:
            return
        self._fire("error", ad.error_urls, error_code=code)
        self._finish()

    # Viewer actions

    def skip(self) -> bool:
        ad = self.active_ad
        if not self.can_skip or ad is None:
            return False
        self._fire(TrackingEvent.SKIP, ad.tracking_urls(TrackingEvent.SKIP))
        self._fire(TrackingEvent.CLOSE_LINEAR, ad.tracking_urls(TrackingEvent.CLOSE_LINEAR))
        self.logger.info(StreamEvents.AD_BREAK_SKIPPED, slot=ad.slot.value)
        self._finish()
        return True

    def click_through(self) -> bool:
        ad = self.active_ad
        if self.phase is not AdBreakPhase.PLAYING or ad is None or not ad.click_through_url:
            return False
        if self.open_url is not None:
            self.open_url(ad.click_through_url)
        self._fire("clickTracking", ad.click_tracking_urls)
        self._fire(TrackingEvent.CLICK, ad.tracking_urls(TrackingEvent.CLICK))
        return True

    # Teardown

    def _resume_main(self) -> None:
        self.main.seek(self.resume_time)
        self.main.play()

    def _finish(self) -> None:
        self._transition(AdBreakPhase.FINISHING)
        slot = self.active_ad.slot.value if self.active_ad else None
        self.ad_player.stop()
        self.active_ad = None
        self.skip_countdown = None
        self._transition(AdBreakPhase.IDLE)
        self.logger.info(StreamEvents.AD_BREAK_FINISHED, slot=slot, resume_time=self.resume_time)
        self._resume_main()

    def _cancel_pending(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    def reset(self) -> None:
        """Forget all per-source state; called when the source changes."""
        self._cancel_pending()
        self._generation += 1
        if self.phase is AdBreakPhase.PLAYING:
            self.ad_player.stop()
        self.phase = AdBreakPhase.IDLE
        self.flags = SourceAdFlags()
        self.fired = FiredEvents()
        self.active_ad = None
        self.active_slot = None
        self.skip_countdown = None
        self.resume_time = 0.0

    def set_ads_enabled(self, enabled: bool) -> None:
        """Toggle ads; a break in progress is abandoned and main playback resumes."""
        if enabled == self.ads_enabled:
            return
        interrupted = self.in_break
        resume_time = self.resume_time
        self.ads_enabled = enabled
        self.reset()
        if interrupted:
            self.main.seek(resume_time)
            self.main.play()

    def dispose(self) -> None:
        self._cancel_pending()
        self._generation += 1


__all__ = [
    "AdBreakMachine",
    "AdBreakPhase",
    "AdMediaElement",
    "FiredEvents",
    "MediaElement",
    "SourceAdFlags",
    "QUARTILES",
    "VAST_ERROR_MEDIA_NOT_PLAYABLE",
]
