"""Turns resolved upstream streams into URLs a browser player can load."""

import json
from typing import Optional

from ..proxy_token import ProxyTokenService
from ..routes.helpers import build_url_preserving_unicode
from ..settings import ProxySettings
from .providers import ResolvedStream


class StreamUrlBuilder:
    """Chooses how a stream is exposed to the player.

    In order of preference:

    1. the secure proxy, with the upstream headers sealed into the token,
       when tokens are enabled and a public origin is known;
    2. an external worker proxy addressed as
       ``{base}/m3u8-proxy/playlist.m3u8?url=...&headers=...``;
    3. the raw upstream URL.
    """

    def __init__(self, token_service: ProxyTokenService, settings: Optional[ProxySettings] = None):
        self.token_service = token_service
        self.settings = settings or ProxySettings()

    def secure_proxy_url(self, stream: ResolvedStream, public_origin: Optional[str]) -> Optional[str]:
        origin = self.settings.public_base_url or public_origin
        if not origin or not self.token_service.enabled:
            return None
        token = self.token_service.create(stream.url, headers=stream.headers)
        if token is None:
            return None
        return build_url_preserving_unicode(
            f"{origin.rstrip('/')}{self.settings.path}", {"token": token}
        )

    def worker_proxy_url(self, stream: ResolvedStream) -> Optional[str]:
        if not self.settings.worker_base_url:
            return None
        base = self.settings.worker_base_url.rstrip("/")
        # The .m3u8 suffix lets players detect HLS from the path alone.
        return build_url_preserving_unicode(
            f"{base}/m3u8-proxy/playlist.m3u8",
            {"url": stream.url, "headers": json.dumps(stream.headers, separators=(",", ":"))},
        )

    def build(self, stream: ResolvedStream, public_origin: Optional[str] = None) -> str:
        if not stream.wrap:
            return stream.url
        return (
            self.secure_proxy_url(stream, public_origin)
            or self.worker_proxy_url(stream)
            or stream.url
        )


__all__ = ["StreamUrlBuilder"]
