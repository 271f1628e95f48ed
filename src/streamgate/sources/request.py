"""Media identification for source lookups."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..exceptions import InvalidMediaRequestError


class MediaType(str, Enum):
    MOVIE = "movie"
    TV = "tv"


def _is_digits(value: Optional[str]) -> bool:
    return bool(value) and value.isascii() and value.isdigit()


@dataclass(frozen=True)
class MediaRequest:
    """A movie, or one episode of a series, identified by its TMDB id."""

    media_type: MediaType
    media_id: str
    season: Optional[str] = None
    episode: Optional[str] = None

    @classmethod
    def parse(
        cls,
        media_type: Optional[str],
        media_id: Optional[str],
        season: Optional[str] = None,
        episode: Optional[str] = None,
    ) -> "MediaRequest":
        """Validate raw query values.

        Raises:
            InvalidMediaRequestError: Unknown type, or an id, season or
                episode that is not all digits.
        """
        try:
            kind = MediaType((media_type or "").strip().lower())
        except ValueError:
            raise InvalidMediaRequestError("Invalid media type", {"type": media_type}) from None

        media_id = (media_id or "").strip()
        if not _is_digits(media_id):
            raise InvalidMediaRequestError("Invalid media id", {"id": media_id})

        if kind is MediaType.MOVIE:
            return cls(kind, media_id)

        season = (season or "").strip()
        episode = (episode or "").strip()
        if not _is_digits(season) or not _is_digits(episode):
            raise InvalidMediaRequestError(
                "Series requests need a numeric season and episode",
                {"season": season, "episode": episode},
            )
        return cls(kind, media_id, season, episode)

    @property
    def is_movie(self) -> bool:
        return self.media_type is MediaType.MOVIE

    def query_params(self) -> dict[str, str]:
        params = {"type": self.media_type.value, "id": self.media_id}
        if not self.is_movie:
            params["season"] = self.season or ""
            params["episode"] = self.episode or ""
        return params


__all__ = ["MediaType", "MediaRequest"]
