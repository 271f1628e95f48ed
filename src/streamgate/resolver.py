"""VAST ad resolution.

``VastResolver`` walks an ad tag and its wrapper chain down to an inline ad.
The whole walk shares one deadline; wrappers are followed depth-first in
document order and the first inline ad found wins. Trackers declared by the
wrappers along the way are merged in front of the inline ad's own.

``AdService`` is what playback code talks to: it tries the configured ad tag
for a slot and falls back to the ad-decision endpoint.
"""

import asyncio
import time
from typing import Any, Optional

import httpx

from .config import VastResolverConfig
from .events import StreamEvents
from .log_config import PlaybackContext, get_context_logger
from .metrics import MetricLabels, MetricsCollector, NoOpMetrics, StreamMetrics
from .parser import VastDocument, VastParser
from .ranker import pick_media_url
from .routes.helpers import build_url_preserving_unicode
from .settings import AdSettings
from .types import ActiveVastAd, AdSlot


class VastResolver:
    """Fetches and unwraps VAST documents into an :class:`ActiveVastAd`."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        parser: Optional[VastParser] = None,
        config: Optional[VastResolverConfig] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.http_client = http_client
        self.parser = parser or VastParser()
        self.config = config or VastResolverConfig()
        self.metrics = metrics or NoOpMetrics()
        self.logger = get_context_logger("vast_resolver")

    async def resolve(self, slot: AdSlot | str, url: str) -> Optional[ActiveVastAd]:
        """Resolve an ad tag to a playable ad, or ``None`` for no fill.

        Never raises for network, HTTP or XML problems.
        """
        slot = AdSlot.parse(slot)
        started = time.perf_counter()

        with PlaybackContext(ad_slot=slot.value):
            self.logger.debug(StreamEvents.RESOLVE_STARTED, url=url, timeout=self.config.timeout)
            try:
                async with asyncio.timeout(self.config.timeout):
                    resolved = await self._resolve(slot, url, depth=0)
            except TimeoutError:
                self.logger.info(StreamEvents.RESOLVE_TIMEOUT, url=url, timeout=self.config.timeout)
                self._record(slot, "timeout", started)
                return None

            if resolved is None:
                self.logger.info(StreamEvents.RESOLVE_EMPTY, url=url)
                self._record(slot, "empty", started)
                return None

            ad, depth = resolved
            self.logger.info(
                StreamEvents.RESOLVE_SUCCESS,
                media_url=ad.media_url,
                wrapper_depth=depth,
                duration=ad.duration_seconds,
                skip_offset=ad.skip_offset_seconds,
            )
            self._record(slot, "filled", started)
            self.metrics.histogram(
                StreamMetrics.AD_WRAPPER_DEPTH, depth, labels={MetricLabels.SLOT: slot.value}
            )
            return ad

    def _record(self, slot: AdSlot, result: str, started: float) -> None:
        labels = {MetricLabels.SLOT: slot.value, MetricLabels.RESULT: result}
        self.metrics.increment(StreamMetrics.AD_RESOLUTIONS, labels=labels)
        self.metrics.timing(
            StreamMetrics.AD_RESOLVE_DURATION_MS, (time.perf_counter() - started) * 1000, labels=labels
        )

    async def _fetch(self, url: str) -> Optional[str]:
        headers = {"Accept": self.config.accept, **self.config.request_headers}
        try:
            response = await self.http_client.get(url, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self.logger.info(StreamEvents.FETCH_FAILED, url=url, error=str(e))
            return None

        if not response.is_success:
            self.logger.info(StreamEvents.FETCH_FAILED, url=url, status_code=response.status_code)
            return None

        text = response.text
        return text if text.strip() else None

    async def _resolve(
        self, slot: AdSlot, url: str, depth: int
    ) -> Optional[tuple[ActiveVastAd, int]]:
        if depth > self.config.max_wrapper_depth:
            self.logger.info(
                StreamEvents.WRAPPER_DEPTH_EXCEEDED, url=url, max_depth=self.config.max_wrapper_depth
            )
            return None

        xml = await self._fetch(url)
        if xml is None:
            return None

        document = self.parser.parse(xml, base_url=url)
        media_url = pick_media_url(document.media_candidates(), document.raw, url)
        if media_url:
            return self._build_inline(slot, document, media_url), depth

        impressions = document.resolved_values("Impression")
        errors = document.resolved_values("Error")
        click_tracking = document.resolved_values("ClickTracking")
        tracking = document.tracking_events()

        for tag_url in document.resolved_values("VASTAdTagURI"):
            self.logger.debug(StreamEvents.WRAPPER_FOLLOWED, url=tag_url, depth=depth + 1)
            resolved = await self._resolve(slot, tag_url, depth + 1)
            if resolved is not None:
                ad, inline_depth = resolved
                return (
                    ad.merge_wrapper_trackers(impressions, errors, click_tracking, tracking),
                    inline_depth,
                )
        return None

    @staticmethod
    def _build_inline(slot: AdSlot, document: VastDocument, media_url: str) -> ActiveVastAd:
        duration = document.duration_seconds()
        click_throughs = document.resolved_values("ClickThrough")
        return ActiveVastAd(
            slot=slot,
            media_url=media_url,
            click_through_url=click_throughs[0] if click_throughs else None,
            duration_seconds=duration,
            skip_offset_seconds=document.skip_offset_seconds(duration),
            impression_urls=document.resolved_values("Impression"),
            error_urls=document.resolved_values("Error"),
            click_tracking_urls=document.resolved_values("ClickTracking"),
            tracking=document.tracking_events(),
        )


class AdDecisionClient:
    """Client for the ``/ads`` ad-decision endpoint."""

    def __init__(self, http_client: httpx.AsyncClient, decision_url: str, timeout: float = 8.0):
        self.http_client = http_client
        self.decision_url = decision_url
        self.timeout = timeout
        self.logger = get_context_logger("ad_decision_client")

    async def fetch(self, slot: AdSlot | str) -> Optional[ActiveVastAd]:
        slot = AdSlot.parse(slot)
        url = build_url_preserving_unicode(self.decision_url, {"slot": slot.value})
        try:
            async with asyncio.timeout(self.timeout):
                response = await self.http_client.get(
                    url, headers={"Accept": "application/json", "Cache-Control": "no-store"}
                )
        except (TimeoutError, httpx.HTTPError, httpx.InvalidURL) as e:
            self.logger.info(StreamEvents.DECISION_FAILED, url=url, error=str(e) or type(e).__name__)
            return None

        if not response.is_success:
            self.logger.info(StreamEvents.DECISION_FAILED, url=url, status_code=response.status_code)
            return None
        try:
            payload: Any = response.json()
        except ValueError:
            self.logger.info(StreamEvents.DECISION_FAILED, url=url, error="invalid json")
            return None
        return ActiveVastAd.from_payload(slot, payload)


class AdService:
    """Resolves the ad for a slot from the configured tag or the decision endpoint."""

    def __init__(
        self,
        ads: AdSettings,
        resolver: Optional[VastResolver] = None,
        decision_client: Optional[AdDecisionClient] = None,
    ):
        self.ads = ads
        self.resolver = resolver
        self.decision_client = decision_client

    @property
    def enabled(self) -> bool:
        has_tag = self.resolver is not None and self.ads.tag_url_for(AdSlot.PREROLL) is not None
        return has_tag or self.decision_client is not None

    async def resolve_slot(self, slot: AdSlot | str) -> Optional[ActiveVastAd]:
        slot = AdSlot.parse(slot)
        tag_url = self.ads.tag_url_for(slot)
        if tag_url and self.resolver is not None:
            ad = await self.resolver.resolve(slot, tag_url)
            if ad is not None:
                return ad
        if self.decision_client is not None:
            return await self.decision_client.fetch(slot)
        return None

    @classmethod
    def from_settings(
        cls,
        ads: AdSettings,
        http_client: httpx.AsyncClient,
        *,
        server_side: bool = False,
        request_headers: Optional[dict[str, str]] = None,
        parser: Optional[VastParser] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> "AdService":
        """Build a service; the server-side variant never calls the decision endpoint."""
        resolver = VastResolver(
            http_client,
            parser=parser,
            config=VastResolverConfig.from_settings(ads, server_side, request_headers),
            metrics=metrics,
        )
        decision_client = None
        if ads.decision_url and not server_side:
            decision_client = AdDecisionClient(http_client, ads.decision_url, ads.client_timeout)
        return cls(ads, resolver, decision_client)


__all__ = ["VastResolver", "AdDecisionClient", "AdService"]
