"""Upstream stream providers.

A provider turns a :class:`MediaRequest` into zero or more resolved HLS
URLs, each with the request headers the upstream host insists on. Providers
raise on failure; the aggregator isolates them from one another.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import parse_qs, unquote, urljoin, urlsplit

import httpx

from ..exceptions import UpstreamFetchError
from ..log_config import get_context_logger
from ..routes.helpers import build_url_preserving_unicode, request_origin
from ..settings import DEFAULT_USER_AGENT, ProviderSettings
from ..types import StreamSourceOption
from .payload import parse_playlist_payload
from .request import MediaRequest


JSON_ACCEPT = "application/json, text/plain, */*"
HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

_MASTER_PLAYLIST_BLOCK_RE = re.compile(r"window\.masterPlaylist\s*=\s*\{([\s\S]*?)\};", re.IGNORECASE)
_BLOCK_URL_RE = re.compile(r"""url\s*:\s*['"]([^'"]+)['"]""", re.IGNORECASE)
_BLOCK_TOKEN_RE = re.compile(r"""(?:['"]token['"]|token)\s*:\s*['"]([^'"]+)['"]""", re.IGNORECASE)
_BLOCK_EXPIRES_RE = re.compile(r"""(?:['"]expires['"]|expires)\s*:\s*['"]([^'"]+)['"]""", re.IGNORECASE)
_DIRECT_M3U8_RE = re.compile(r"""https?://[^"'\s]+\.m3u8[^"'\s]*""", re.IGNORECASE)


@dataclass(frozen=True)
class ResolvedStream:
    """An upstream stream before it is made playable.

    ``wrap`` is false for URLs that are already playable as-is.
    """

    url: str
    headers: dict[str, str] = field(default_factory=dict)
    label: Optional[str] = None
    provider: Optional[str] = None
    is_default: bool = False
    wrap: bool = True


def extract_master_playlist_url(html: str, page_url: str) -> Optional[str]:
    """Find the master playlist URL in a vixsrc-style embed page.

    The ``window.masterPlaylist`` block supplies the URL plus the token and
    expiry query parameters; failing that, any absolute ``.m3u8`` URL in the
    page is used.
    """
    block_match = _MASTER_PLAYLIST_BLOCK_RE.search(html)
    if block_match:
        block = block_match.group(1)
        url = _BLOCK_URL_RE.search(block)
        token = _BLOCK_TOKEN_RE.search(block)
        expires = _BLOCK_EXPIRES_RE.search(block)
        if url and token and expires:
            return build_url_preserving_unicode(
                urljoin(page_url, url.group(1)),
                {"token": token.group(1), "expires": expires.group(1), "h": "1", "lang": "en"},
            )

    direct = _DIRECT_M3U8_RE.search(html)
    return direct.group(0) if direct else None


def normalize_headers(headers: Any) -> dict[str, str]:
    """Coerce an upstream header map, or its JSON text, into ``str -> str``.

    Blank or non-string values are dropped.
    """
    if isinstance(headers, str):
        try:
            headers = json.loads(headers)
        except ValueError:
            return {}
    if not isinstance(headers, dict):
        return {}
    return {
        str(key): value
        for key, value in headers.items()
        if isinstance(value, str) and value.strip()
    }


def unwrap_source_url(url: str, headers: Any = None) -> tuple[str, dict[str, str]]:
    """Split a wrapped ``...?url=<target>&headers=<json>`` link into target and headers.

    Headers carried in the link come first; ``headers`` given alongside the
    source override them.
    """
    params = parse_qs(urlsplit(url).query)
    merged = {}
    if params.get("headers"):
        merged.update(normalize_headers(unquote(params["headers"][0])))
    merged.update(normalize_headers(headers))
    target = unquote(params["url"][0]) if params.get("url") else url
    return target, merged


class SourceProvider(ABC):
    """Base class for upstream providers."""

    name: str = "provider"

    def __init__(self, http_client: httpx.AsyncClient, settings: Optional[ProviderSettings] = None):
        self.http_client = http_client
        self.settings = settings or ProviderSettings()
        self.logger = get_context_logger(f"provider.{self.name}")

    @property
    def enabled(self) -> bool:
        return self.settings.enabled and bool(self.settings.base_url)

    @property
    def timeout(self) -> float:
        return self.settings.timeout

    @property
    def base_url(self) -> str:
        return (self.settings.base_url or "").rstrip("/")

    @property
    def label(self) -> str:
        return self.settings.label or self.name.title()

    @property
    def provider_name(self) -> str:
        return self.settings.provider or self.name

    async def _get(self, url: str, headers: dict[str, str]) -> httpx.Response:
        response = await self.http_client.get(
            url, headers={"User-Agent": DEFAULT_USER_AGENT, "Cache-Control": "no-store", **headers}
        )
        if not response.is_success:
            raise UpstreamFetchError(
                f"{self.name} lookup failed", url=url, status_code=response.status_code
            )
        return response

    async def _get_json(self, url: str, headers: dict[str, str]) -> Any:
        response = await self._get(url, {"Accept": JSON_ACCEPT, **headers})
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFetchError(f"{self.name} returned invalid JSON", url=url) from e

    @abstractmethod
    async def fetch(self, request: MediaRequest) -> list[ResolvedStream]:
        """Resolve streams for ``request``; raise on upstream failure."""


class OpukProvider(SourceProvider):
    """JSON ``secure-stream`` API returning a signed playlist URL."""

    name = "opuk"

    def endpoint(self, request: MediaRequest) -> str:
        if request.is_movie:
            suffix = request.media_id
        else:
            suffix = f"{request.media_id}-{request.season}-{request.episode}"
        return f"{self.base_url}/api/secure-stream/{suffix}/"

    async def fetch(self, request: MediaRequest) -> list[ResolvedStream]:
        origin = request_origin(self.base_url)
        referer = f"{origin}/"
        payload = await self._get_json(self.endpoint(request), {"Origin": origin, "Referer": referer})

        if not isinstance(payload, dict) or not payload.get("success"):
            return []
        secure_url = payload.get("secureUrl")
        if not isinstance(secure_url, str) or not secure_url:
            return []
        return [
            ResolvedStream(
                url=secure_url,
                headers={"Origin": origin, "Referer": referer, "User-Agent": DEFAULT_USER_AGENT},
                label=self.label,
                provider=self.provider_name,
            )
        ]


class VixsrcProvider(SourceProvider):
    """Scrapes the master playlist out of an embed page."""

    name = "vixsrc"

    def page_url(self, request: MediaRequest) -> str:
        if request.is_movie:
            return f"{self.base_url}/movie/{request.media_id}"
        return f"{self.base_url}/tv/{request.media_id}/{request.season}/{request.episode}"

    async def fetch(self, request: MediaRequest) -> list[ResolvedStream]:
        page_url = self.page_url(request)
        response = await self._get(page_url, {"Accept": HTML_ACCEPT})
        playlist_url = extract_master_playlist_url(response.text, page_url)
        if not playlist_url:
            return []
        return [
            ResolvedStream(
                url=playlist_url,
                headers={
                    "Origin": request_origin(page_url),
                    "Referer": page_url,
                    "User-Agent": DEFAULT_USER_AGENT,
                },
                label=self.label,
                provider=self.provider_name,
            )
        ]


class PlaylistJsonProvider(SourceProvider):
    """Any upstream already serving the ``{playlist: [{sources: [...]}]}`` shape.

    Its ``file`` URLs are taken to be directly playable.
    """

    name = "playlist"

    async def fetch(self, request: MediaRequest) -> list[ResolvedStream]:
        url = build_url_preserving_unicode(self.base_url, request.query_params())
        payload = await self._get_json(url, {})
        return [
            ResolvedStream(
                url=option.file,
                label=option.label,
                provider=option.provider or self.provider_name,
                is_default=option.is_default,
                wrap=False,
            )
            for option in parse_playlist_payload(payload)
        ]


class SourceListProvider(SourceProvider):
    """Upstream returning ``{sources: [{url, headers, quality}]}``, optionally under ``data``.

    Each source may dictate its own request headers, either alongside the
    URL or packed into a wrapped ``?url=...&headers=...`` link. Missing
    ``Origin`` and ``Referer`` default to the provider's own origin.
    """

    name = "sourcelist"

    async def fetch(self, request: MediaRequest) -> list[ResolvedStream]:
        url = build_url_preserving_unicode(self.base_url, request.query_params())
        payload = await self._get_json(url, {})
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        sources = payload.get("sources") if isinstance(payload, dict) else None
        if not isinstance(sources, list):
            return []

        origin = request_origin(self.base_url)
        streams = []
        for source in sources:
            if not isinstance(source, dict):
                continue
            raw_url = source.get("url")
            if not isinstance(raw_url, str) or not raw_url:
                continue
            target, headers = unwrap_source_url(raw_url, source.get("headers"))
            lowered = {key.lower() for key in headers}
            if "origin" not in lowered:
                headers["Origin"] = origin
            if "referer" not in lowered:
                headers["Referer"] = f"{origin}/"
            quality = source.get("quality")
            streams.append(
                ResolvedStream(
                    url=target,
                    headers=headers,
                    label=f"{self.label} ({quality})" if quality else self.label,
                    provider=self.provider_name,
                )
            )
        return streams


def option_from_stream(stream: ResolvedStream, file: str, provider: SourceProvider) -> StreamSourceOption:
    return StreamSourceOption(
        file=file,
        label=stream.label or provider.label,
        provider=stream.provider or provider.provider_name,
        is_default=stream.is_default,
    )


__all__ = [
    "ResolvedStream",
    "SourceProvider",
    "OpukProvider",
    "VixsrcProvider",
    "PlaylistJsonProvider",
    "SourceListProvider",
    "extract_master_playlist_url",
    "normalize_headers",
    "unwrap_source_url",
    "option_from_stream",
]
