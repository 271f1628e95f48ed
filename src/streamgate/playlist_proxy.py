"""Token-guarded HLS proxy.

The proxy only fetches URLs it is handed inside a valid proxy token. Media
segments, keys and other binary responses are streamed through unchanged.
Playlists are buffered and rewritten so that every URI they reference,
variant playlists, segments and ``URI="..."`` attributes alike, points back
at the proxy with a fresh token carrying the inbound token's expiry and
upstream headers. The player therefore never talks to the upstream host
directly.
"""

import json
import re
from dataclasses import dataclass, field
from typing import AsyncIterator, Mapping, Optional
from urllib.parse import urljoin, urlsplit

import httpx

from .events import StreamEvents
from .exceptions import ProxyTargetError
from .log_config import get_context_logger
from .metrics import MetricLabels, MetricsCollector, NoOpMetrics, StreamMetrics
from .proxy_token import ProxyTokenService
from .routes.helpers import build_url_preserving_unicode
from .settings import ProxySettings


HLS_CONTENT_TYPE = "application/vnd.apple.mpegurl"
MANIFEST_CONTENT_TYPES = ("application/vnd.apple.mpegurl", "application/x-mpegurl")
MANIFEST_CACHE_CONTROL = "private, no-store, max-age=0"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type, Range",
    "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
    "Access-Control-Expose-Headers": "Content-Length, Content-Range, Accept-Ranges",
}

STRIPPED_RESPONSE_HEADERS = frozenset(
    {
        "set-cookie",
        "content-security-policy",
        "content-security-policy-report-only",
        "x-frame-options",
        # hop-by-hop
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

_M3U8_PATH_RE = re.compile(r"\.m3u8($|\?)", re.IGNORECASE)
_URI_ATTRIBUTE_RE = re.compile(r'URI="([^"]+)"')


def is_manifest_like(url: str, content_type: Optional[str]) -> bool:
    """True for HLS playlists, judged by content type or an ``.m3u8`` path."""
    content_type = (content_type or "").lower()
    if any(t in content_type for t in MANIFEST_CONTENT_TYPES):
        return True
    parts = urlsplit(url)
    path_and_query = parts.path + (f"?{parts.query}" if parts.query else "")
    return bool(_M3U8_PATH_RE.search(path_and_query))


def is_http_url(url: str) -> bool:
    parts = urlsplit(url)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def sanitize_response_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy upstream response headers minus cookies, framing/CSP policy and hop-by-hop headers."""
    return {k.lower(): v for k, v in headers.items() if k.lower() not in STRIPPED_RESPONSE_HEADERS}


@dataclass
class ProxyResponse:
    """Framework-neutral proxy response.

    Exactly one of ``body`` or ``stream`` carries the payload.
    """

    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    stream: Optional[AsyncIterator[bytes]] = None

    def __post_init__(self):
        self.headers = {**self.headers, **CORS_HEADERS}

    @classmethod
    def error(cls, status_code: int, message: str) -> "ProxyResponse":
        return cls(
            status_code=status_code,
            headers={"content-type": "application/json", "cache-control": "no-store"},
            body=json.dumps({"error": message}).encode("utf-8"),
        )

    @classmethod
    def preflight(cls) -> "ProxyResponse":
        return cls(status_code=204)


class ManifestRewriter:
    """Rewrites every URI in a playlist into a proxy URL.

    Line structure is preserved exactly: blank lines stay blank, tag lines
    keep their attributes and only URI lines are replaced.
    """

    def __init__(
        self,
        token_service: ProxyTokenService,
        proxy_base_url: str,
        exp: int,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.token_service = token_service
        self.proxy_base_url = proxy_base_url
        self.exp = exp
        self.headers = dict(headers or {})

    def proxy_url(self, target: str) -> str:
        token = self.token_service.create(target, exp=self.exp, headers=self.headers)
        if token is None:
            return target
        return build_url_preserving_unicode(self.proxy_base_url, {"token": token})

    def _wrap(self, reference: str, manifest_url: str) -> str:
        target = urljoin(manifest_url, reference)
        if not is_http_url(target):
            return reference
        return self.proxy_url(target)

    def rewrite_line(self, line: str, manifest_url: str) -> str:
        stripped = line.strip()
        if not stripped:
            return line
        if stripped.startswith("#"):
            if 'URI="' not in line:
                return line
            return _URI_ATTRIBUTE_RE.sub(
                lambda m: f'URI="{self._wrap(m.group(1), manifest_url)}"', line
            )
        return self._wrap(stripped, manifest_url)

    def rewrite(self, text: str, manifest_url: str) -> str:
        return "\n".join(self.rewrite_line(line, manifest_url) for line in text.split("\n"))


class SecurePlaylistProxy:
    """Serves ``/secure-proxy`` requests."""

    def __init__(
        self,
        token_service: ProxyTokenService,
        http_client: httpx.AsyncClient,
        settings: Optional[ProxySettings] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.token_service = token_service
        self.http_client = http_client
        self.settings = settings or ProxySettings()
        self.metrics = metrics or NoOpMetrics()
        self.logger = get_context_logger("secure_proxy")

    def proxy_base_url(self, public_origin: str) -> str:
        origin = (self.settings.public_base_url or public_origin).rstrip("/")
        return f"{origin}{self.settings.path}"

    def _outcome(self, outcome: str) -> None:
        self.metrics.increment(StreamMetrics.PROXY_REQUESTS, labels={MetricLabels.OUTCOME: outcome})

    def _reject(self, status_code: int, message: str) -> ProxyResponse:
        self.logger.info(StreamEvents.PROXY_REJECTED, status_code=status_code, reason=message)
        self._outcome("rejected")
        return ProxyResponse.error(status_code, message)

    def upstream_headers(
        self,
        public_origin: str,
        origin: Optional[str] = None,
        referer: Optional[str] = None,
        range_header: Optional[str] = None,
        token_headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Headers:
        public_origin = public_origin.rstrip("/")
        headers = httpx.Headers(
            {
                "User-Agent": self.settings.user_agent,
                "Accept": "*/*",
                "Origin": origin or public_origin,
                "Referer": referer or f"{public_origin}/",
            }
        )
        if range_header:
            headers["Range"] = range_header
        for name, value in (token_headers or {}).items():
            headers[name] = value
        if self.settings.worker_key:
            headers["x-proxy-key"] = self.settings.worker_key
        return headers

    async def serve(
        self,
        token: Optional[str],
        *,
        public_origin: str,
        origin: Optional[str] = None,
        referer: Optional[str] = None,
        range_header: Optional[str] = None,
    ) -> ProxyResponse:
        if not self.token_service.enabled:
            return self._reject(503, "Secure proxy is disabled")
        if not token:
            return self._reject(400, "Missing token")

        payload = self.token_service.decode(token)
        if payload is None:
            return self._reject(403, "Invalid or expired token")
        try:
            _require_http_target(payload.target)
        except ProxyTargetError as e:
            return self._reject(400, e.message)

        headers = self.upstream_headers(public_origin, origin, referer, range_header, payload.headers)
        request = self.http_client.build_request("GET", payload.target, headers=headers)
        try:
            upstream = await self.http_client.send(request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self.logger.warning(
                StreamEvents.PROXY_UPSTREAM_FAILED, target=payload.target, error=str(e) or type(e).__name__
            )
            self._outcome("upstream_error")
            return ProxyResponse.error(502, "Upstream fetch failed")

        final_url = str(upstream.url)
        response_headers = sanitize_response_headers(upstream.headers)

        if not upstream.is_success or not is_manifest_like(final_url, upstream.headers.get("content-type")):
            self.logger.debug(
                StreamEvents.PROXY_PASSTHROUGH, target=final_url, status_code=upstream.status_code
            )
            self._outcome("passthrough")
            return ProxyResponse(
                status_code=upstream.status_code,
                headers=response_headers,
                stream=_iter_upstream(upstream),
            )

        try:
            await upstream.aread()
        except httpx.HTTPError as e:
            self.logger.warning(StreamEvents.PROXY_UPSTREAM_FAILED, target=final_url, error=str(e))
            self._outcome("upstream_error")
            return ProxyResponse.error(502, "Upstream fetch failed")
        finally:
            await upstream.aclose()

        rewriter = ManifestRewriter(
            self.token_service,
            self.proxy_base_url(public_origin),
            exp=payload.exp,
            headers=payload.headers,
        )
        text = rewriter.rewrite(upstream.text, final_url)

        response_headers.pop("content-length", None)
        response_headers.pop("content-encoding", None)
        response_headers["content-type"] = HLS_CONTENT_TYPE
        response_headers["cache-control"] = MANIFEST_CACHE_CONTROL

        line_count = text.count("\n") + 1
        self.logger.debug(StreamEvents.PROXY_MANIFEST_REWRITTEN, target=final_url, lines=line_count)
        self.metrics.histogram(StreamMetrics.PROXY_MANIFEST_LINES, line_count)
        self._outcome("manifest")
        return ProxyResponse(
            status_code=upstream.status_code,
            headers=response_headers,
            body=text.encode("utf-8"),
        )


def _require_http_target(target: str) -> None:
    if not is_http_url(target):
        raise ProxyTargetError("Invalid target URL", target=target)


async def _iter_upstream(upstream: httpx.Response) -> AsyncIterator[bytes]:
    """Relay raw upstream bytes, closing the upstream when the consumer stops."""
    try:
        if upstream.is_stream_consumed:
            # Already buffered, e.g. a response built in memory
            yield upstream.content
            return
        async for chunk in upstream.aiter_raw():
            yield chunk
    finally:
        await upstream.aclose()


__all__ = [
    "ProxyResponse",
    "ManifestRewriter",
    "SecurePlaylistProxy",
    "is_manifest_like",
    "is_http_url",
    "sanitize_response_headers",
    "CORS_HEADERS",
    "HLS_CONTENT_TYPE",
]
