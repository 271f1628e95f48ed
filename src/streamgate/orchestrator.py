"""Playback orchestration across multiple stream sources."""

from typing import Callable, Optional, Sequence

from .ad_break import AdBreakMachine, MediaElement
from .events import StreamEvents
from .exceptions import NoPlayableSourceError
from .log_config import get_context_logger
from .sources.payload import dedupe_sources, default_source_index
from .types import StreamSourceOption


DEFAULT_FATAL_MESSAGE = "Stream playback failed. Please try another source."


class PlaybackOrchestrator:
    """Owns the active source and fails over on player errors.

    A player error moves to the next source in order. Once every source has
    failed, a user-visible error is set and ``on_fatal_error`` is called,
    exactly once per source list.
    """

    def __init__(
        self,
        sources: Sequence[StreamSourceOption],
        main: MediaElement,
        ad_machine: AdBreakMachine,
        load_source: Optional[Callable[[StreamSourceOption], None]] = None,
        on_fatal_error: Optional[Callable[[str], None]] = None,
    ):
        self.main = main
        self.ad_machine = ad_machine
        self.load_source = load_source
        self.on_fatal_error = on_fatal_error
        self.logger = get_context_logger("playback_orchestrator")

        self.sources: list[StreamSourceOption] = []
        self.active_index = 0
        self.error: Optional[str] = None
        self._fatal_reported = False
        self.set_sources(sources)

    @property
    def active_source(self) -> Optional[StreamSourceOption]:
        if 0 <= self.active_index < len(self.sources):
            return self.sources[self.active_index]
        return None

    def set_sources(self, sources: Sequence[StreamSourceOption]) -> None:
        """Replace the source list and start from its default entry.

        Raises:
            NoPlayableSourceError: If ``sources`` is empty
        """
        sources = dedupe_sources(sources)
        if not sources:
            raise NoPlayableSourceError("No playable source found")
        self.sources = sources
        self.error = None
        self._fatal_reported = False
        self._activate(default_source_index(sources))

    def _activate(self, index: int) -> None:
        self.active_index = index
        source = self.sources[index]
        self.ad_machine.reset()
        self.main.source_url = source.file
        if self.load_source is not None:
            self.load_source(source)
        self.logger.info(
            StreamEvents.SOURCE_SWITCHED, index=index, label=source.label, provider=source.provider
        )

    def switch_source(self, index: int) -> bool:
        """Viewer picked a source explicitly."""
        if not 0 <= index < len(self.sources) or index == self.active_index:
            return False
        self.error = None
        self._fatal_reported = False
        self._activate(index)
        return True

    def handle_player_error(self, message: Optional[str] = None) -> bool:
        """Fail over to the next source; returns False once sources are exhausted."""
        next_index = self.active_index + 1
        if next_index < len(self.sources):
            self.logger.warning(
                StreamEvents.SOURCE_FAILED, index=self.active_index, error=message
            )
            self._activate(next_index)
            return True

        self.error = message or DEFAULT_FATAL_MESSAGE
        if not self._fatal_reported:
            self._fatal_reported = True
            self.logger.error(StreamEvents.SOURCES_EXHAUSTED, sources=len(self.sources), error=self.error)
            if self.on_fatal_error is not None:
                self.on_fatal_error(self.error)
        return False

    # Player event passthrough

    def on_play(self):
        return self.ad_machine.on_main_play()

    def on_timeupdate(self):
        return self.ad_machine.on_main_timeupdate()

    def set_ads_enabled(self, enabled: bool) -> None:
        self.ad_machine.set_ads_enabled(enabled)

    def dispose(self) -> None:
        self.ad_machine.dispose()


__all__ = ["PlaybackOrchestrator", "DEFAULT_FATAL_MESSAGE"]
