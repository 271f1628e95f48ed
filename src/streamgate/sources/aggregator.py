"""Concurrent source aggregation.

Every enabled provider is queried at once, each under its own timeout.
A provider that fails or times out contributes nothing and never affects
its siblings. Results keep provider order, are de-duplicated by upstream
URL and then by file, and carry exactly one default.
"""

import asyncio
from typing import Iterable, Iterator, Optional, Sequence

import httpx

from ..events import StreamEvents
from ..log_config import get_context_logger
from ..metrics import MetricLabels, MetricsCollector, NoOpMetrics, StreamMetrics
from ..proxy_token import ProxyTokenService
from ..settings import Settings
from ..types import StreamSourceOption
from .payload import dedupe_sources, select_default
from .providers import (
    OpukProvider,
    PlaylistJsonProvider,
    ResolvedStream,
    SourceListProvider,
    SourceProvider,
    VixsrcProvider,
    option_from_stream,
)
from .request import MediaRequest
from .urls import StreamUrlBuilder


def _unique_streams(
    results: Iterable[tuple[SourceProvider, list[ResolvedStream]]],
) -> Iterator[tuple[SourceProvider, ResolvedStream]]:
    """Flatten provider results, keeping the first stream for each upstream URL.

    Proxy URLs are tokenized with a fresh IV each time, so duplicates have to
    be caught before they are built.
    """
    seen = set()
    for provider, streams in results:
        for stream in streams:
            if stream.url in seen:
                continue
            seen.add(stream.url)
            yield provider, stream


class SourceAggregator:
    """Fans a media request out to every provider."""

    def __init__(
        self,
        providers: Sequence[SourceProvider],
        url_builder: StreamUrlBuilder,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.providers = list(providers)
        self.url_builder = url_builder
        self.metrics = metrics or NoOpMetrics()
        self.logger = get_context_logger("source_aggregator")

    async def aggregate(
        self, request: MediaRequest, public_origin: Optional[str] = None
    ) -> list[StreamSourceOption]:
        providers = [p for p in self.providers if p.enabled]
        results = await asyncio.gather(*(self._run(p, request) for p in providers))

        options = [
            option_from_stream(stream, self.url_builder.build(stream, public_origin), provider)
            for provider, stream in _unique_streams(zip(providers, results))
        ]
        sources = select_default(dedupe_sources(options))

        self.logger.info(
            StreamEvents.SOURCES_AGGREGATED,
            media_id=request.media_id,
            providers=len(providers),
            sources=len(sources),
        )
        self.metrics.histogram(StreamMetrics.SOURCES_RETURNED, len(sources))
        return sources

    async def _run(self, provider: SourceProvider, request: MediaRequest) -> list[ResolvedStream]:
        labels = {MetricLabels.PROVIDER: provider.name}
        try:
            async with asyncio.timeout(provider.timeout):
                streams = await provider.fetch(request)
        except TimeoutError:
            self.logger.warning(
                StreamEvents.PROVIDER_TIMEOUT, provider=provider.name, timeout=provider.timeout
            )
            self.metrics.increment(StreamMetrics.PROVIDER_RESULTS, labels={**labels, MetricLabels.RESULT: "timeout"})
            return []
        except Exception as e:
            self.logger.warning(
                StreamEvents.PROVIDER_FAILED,
                provider=provider.name,
                error=str(e) or type(e).__name__,
                error_type=type(e).__name__,
            )
            self.metrics.increment(StreamMetrics.PROVIDER_RESULTS, labels={**labels, MetricLabels.RESULT: "error"})
            return []

        result = "filled" if streams else "empty"
        self.metrics.increment(StreamMetrics.PROVIDER_RESULTS, labels={**labels, MetricLabels.RESULT: result})
        return streams

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        token_service: ProxyTokenService,
        metrics: Optional[MetricsCollector] = None,
    ) -> "SourceAggregator":
        providers = [
            OpukProvider(http_client, settings.providers.opuk),
            VixsrcProvider(http_client, settings.providers.vixsrc),
            PlaylistJsonProvider(http_client, settings.providers.playlist),
            SourceListProvider(http_client, settings.providers.sourcelist),
        ]
        return cls(providers, StreamUrlBuilder(token_service, settings.proxy), metrics)


__all__ = ["SourceAggregator"]
