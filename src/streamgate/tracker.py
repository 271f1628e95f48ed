"""Fire-and-forget delivery of VAST tracking beacons."""

import asyncio
import secrets
import time
from typing import Iterable, Optional

import httpx

from .events import StreamEvents
from .http_client_manager import get_tracking_http_client
from .log_config import get_context_logger
from .metrics import MetricLabels, MetricsCollector, NoOpMetrics, StreamMetrics


BEACON_HEADERS = {"Accept": "image/avif,image/webp,image/*,*/*;q=0.8"}


def _build_dynamic_macros() -> dict[str, str]:
    """Macros regenerated for every beacon."""
    now_ms = str(int(time.time() * 1000))
    return {
        "TIMESTAMP": now_ms,
        "CACHEBUSTING": str(secrets.randbelow(90_000_000) + 10_000_000),
        "RANDOM": str(secrets.randbelow(900000) + 100000),
    }


def apply_macros(url: str, macros: dict[str, str]) -> str:
    """Substitute ``[KEY]``, ``%%KEY%%`` and ``${KEY}`` macro forms."""
    for key, value in macros.items():
        for pattern in (f"[{key}]", f"%%{key}%%", f"${{{key}}}"):
            if pattern in url:
                url = url.replace(pattern, value)
    return url


class BeaconTracker:
    """Sends tracking pixels without ever blocking or failing playback.

    Every URL gets its own task. Failures are logged at debug level and
    counted; they are never raised to the caller.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.client = client or get_tracking_http_client()
        self.metrics = metrics or NoOpMetrics()
        self.logger = get_context_logger("beacon_tracker")
        self._pending: set[asyncio.Task] = set()

    def fire(
        self,
        urls: Iterable[str],
        error_code: Optional[int] = None,
        event: Optional[str] = None,
    ) -> list[asyncio.Task]:
        """Schedule one GET per URL and return immediately.

        Args:
            urls: Tracking URLs, possibly containing macros
            error_code: VAST error code substituted for ``ERRORCODE``
            event: Event name, used only for logs and metrics
        """
        macros = _build_dynamic_macros()
        if error_code is not None:
            macros["ERRORCODE"] = str(error_code)

        tasks = []
        for url in urls:
            if not url:
                continue
            task = asyncio.ensure_future(self._send(apply_macros(url, macros), event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            tasks.append(task)
        return tasks

    async def _send(self, url: str, event: Optional[str]) -> bool:
        labels = {MetricLabels.EVENT_TYPE: event or "unknown"}
        try:
            response = await self.client.get(url, headers=BEACON_HEADERS)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self.logger.debug(StreamEvents.BEACON_FAILED, url=url, tracking_event=event, error=str(e))
            self.metrics.increment(StreamMetrics.BEACONS_FAILED, labels=labels)
            return False

        if response.is_error:
            self.logger.debug(
                StreamEvents.BEACON_FAILED, url=url, tracking_event=event, status_code=response.status_code
            )
            self.metrics.increment(StreamMetrics.BEACONS_FAILED, labels=labels)
            return False

        self.logger.debug(StreamEvents.BEACON_SENT, url=url, tracking_event=event)
        self.metrics.increment(StreamMetrics.BEACONS_SENT, labels=labels)
        return True

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every in-flight beacon to settle."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


__all__ = ["BeaconTracker", "apply_macros", "BEACON_HEADERS"]
