"""Player-side loader for the ``/sources`` playlist document."""

from typing import Optional

import httpx

from ..events import StreamEvents
from ..exceptions import NoPlayableSourceError, UpstreamFetchError
from ..log_config import get_context_logger
from ..types import StreamSourceOption
from .payload import parse_playlist_payload


class PlaylistClient:
    """Fetches a playlist document and returns its playable options."""

    def __init__(self, http_client: httpx.AsyncClient):
        self.http_client = http_client
        self.logger = get_context_logger("playlist_client")

    async def load(self, playlist_url: str, headers: Optional[dict[str, str]] = None) -> list[StreamSourceOption]:
        """Load and parse a playlist.

        Raises:
            UpstreamFetchError: The playlist could not be fetched or decoded
            NoPlayableSourceError: The playlist has no usable HLS source
        """
        try:
            response = await self.http_client.get(
                playlist_url, headers={"Accept": "application/json", **(headers or {})}
            )
        except httpx.HTTPError as e:
            raise UpstreamFetchError("Playlist request failed", url=playlist_url) from e

        if not response.is_success:
            raise UpstreamFetchError(
                "Playlist request failed", url=playlist_url, status_code=response.status_code
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamFetchError("Playlist is not JSON", url=playlist_url) from e

        sources = parse_playlist_payload(payload)
        if not sources:
            raise NoPlayableSourceError("No playable source found", {"url": playlist_url})
        self.logger.debug(StreamEvents.PLAYLIST_LOADED, url=playlist_url, sources=len(sources))
        return sources


__all__ = ["PlaylistClient"]
