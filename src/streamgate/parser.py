"""VAST XML parser.

Only the handful of VAST elements needed for linear playback are read:
``MediaFile``, ``Linear@skipoffset``, ``Duration``, ``Impression``,
``Error``, ``ClickThrough``, ``ClickTracking``, ``Tracking@event`` and
``VASTAdTagURI``. Element and attribute names are matched by local name,
case-insensitively, so namespaced or oddly cased documents still work.

Third-party ad XML is frequently broken. The parser never raises on bad
input; lxml's recovering parser salvages what it can and an unusable
document simply yields empty results.
"""

import math
import re
from typing import Iterator, Optional
from urllib.parse import urljoin

from lxml import etree

from .config import VastParserConfig
from .events import StreamEvents
from .exceptions import VastDurationError
from .log_config import get_context_logger
from .types import MediaCandidate, TRACKING_EVENT_KEYS, unique_urls


_DURATION_RE = re.compile(r"^(\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,3}))?$")
_CLOCK_OFFSET_RE = re.compile(r"^(\d{1,2}):(\d{2}):(\d{2})(?:\.(\d{1,3}))?$")
_PERCENT_OFFSET_RE = re.compile(r"^(\d+(?:\.\d+)?)%$")
_NON_LETTERS_RE = re.compile(r"[^a-z]")
_CDATA_RE = re.compile(r"(<!\[CDATA\[.*?\]\]>)", re.DOTALL)
_BARE_AMPERSAND_RE = re.compile(r"&(?!(?:amp|lt|gt|quot|apos|#\d+|#x[0-9a-fA-F]+);)")

# Folded (lower-case, letters only) event name -> canonical key
_TRACKING_ALIASES = {_NON_LETTERS_RE.sub("", key.lower()): key for key in TRACKING_EVENT_KEYS}

logger = get_context_logger("vast_parser")


def _clock_seconds(match: re.Match) -> float:
    hours, minutes, seconds, millis = match.groups()
    total = int(hours) * 3600 + int(minutes) * 60 + int(seconds)
    if millis:
        total += int(millis.ljust(3, "0")) / 1000
    return float(total)


def parse_duration_seconds(text: Optional[str]) -> Optional[float]:
    """Parse a VAST ``HH:MM:SS[.mmm]`` duration; ``None`` if absent or malformed."""
    if not text:
        return None
    match = _DURATION_RE.match(text.strip())
    if not match:
        return None
    return _clock_seconds(match)


def parse_skip_offset(value: str, duration_seconds: Optional[float]) -> float:
    """Parse a single ``skipoffset`` attribute value.

    Accepts a clock time (``H:MM:SS[.mmm]``), a percentage of the ad
    duration (``NN%``) or bare seconds.

    Raises:
        VastDurationError: If the value cannot be turned into a
            non-negative offset.
    """
    raw = value.strip()

    match = _CLOCK_OFFSET_RE.match(raw)
    if match:
        return max(0.0, _clock_seconds(match))

    match = _PERCENT_OFFSET_RE.match(raw)
    if match:
        percent = float(match.group(1))
        if not 0 <= percent <= 100:
            raise VastDurationError("Skip offset percentage out of range", value=raw)
        if not duration_seconds or duration_seconds <= 0:
            raise VastDurationError("Percentage skip offset needs a known duration", value=raw)
        return duration_seconds * percent / 100

    try:
        seconds = float(raw)
    except ValueError:
        raise VastDurationError("Unrecognized skip offset", value=raw) from None
    if not math.isfinite(seconds) or seconds < 0:
        raise VastDurationError("Skip offset must be a non-negative number", value=raw)
    return seconds


def escape_bare_ampersands(xml: str) -> str:
    """Escape ``&`` that does not start an entity reference, outside CDATA.

    Ad servers routinely emit query strings with raw ``&`` in element
    text; the recovering parser would otherwise drop the parameter name.
    """
    parts = _CDATA_RE.split(xml)
    # split() with a capturing group puts CDATA sections at odd indexes
    return "".join(
        part if i % 2 else _BARE_AMPERSAND_RE.sub("&amp;", part) for i, part in enumerate(parts)
    )


def _local_name(name: str) -> str:
    return name.rsplit("}", 1)[-1].rsplit(":", 1)[-1].lower()


def _positive_number(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value.strip())
    except ValueError:
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


class VastDocument:
    """A parsed VAST document with whitelist-based accessors."""

    def __init__(self, root: Optional[etree._Element], raw: str, base_url: Optional[str] = None):
        self.root = root
        self.raw = raw
        self.base_url = base_url

    @property
    def is_empty(self) -> bool:
        return self.root is None

    def elements(self, tag_name: str) -> Iterator[etree._Element]:
        """Yield elements whose local name matches ``tag_name`` in document order."""
        if self.root is None:
            return
        wanted = tag_name.lower()
        for element in self.root.iter():
            if isinstance(element.tag, str) and _local_name(element.tag) == wanted:
                yield element

    @staticmethod
    def text_of(element: etree._Element) -> str:
        return "".join(element.itertext()).strip()

    @staticmethod
    def attributes_of(element: etree._Element) -> dict[str, str]:
        return {_local_name(k): v.strip() for k, v in element.attrib.items()}

    def resolve(self, url: str) -> str:
        return urljoin(self.base_url, url) if self.base_url else url

    def tag_values(self, tag_name: str) -> list[str]:
        """Non-empty trimmed text of every ``tag_name`` element."""
        values = (self.text_of(el) for el in self.elements(tag_name))
        return [v for v in values if v]

    def resolved_values(self, tag_name: str) -> list[str]:
        """Like :meth:`tag_values`, resolved against the base URL and de-duplicated."""
        return unique_urls(self.resolve(v) for v in self.tag_values(tag_name))

    def media_candidates(self) -> list[MediaCandidate]:
        candidates = []
        for element in self.elements("MediaFile"):
            url = self.text_of(element)
            if not url:
                continue
            attrs = self.attributes_of(element)
            media_type = attrs.get("type")
            candidates.append(
                MediaCandidate(
                    url=self.resolve(url),
                    type=media_type.lower() if media_type else None,
                    bitrate=_positive_number(attrs.get("bitrate"))
                    or _positive_number(attrs.get("minbitrate")),
                    width=_positive_number(attrs.get("width")),
                    height=_positive_number(attrs.get("height")),
                )
            )
        return candidates

    def tracking_events(self) -> dict[str, list[str]]:
        """Tracking URLs grouped by canonical event key; unknown events are dropped."""
        grouped: dict[str, list[str]] = {}
        for element in self.elements("Tracking"):
            event = self.attributes_of(element).get("event", "")
            key = _TRACKING_ALIASES.get(_NON_LETTERS_RE.sub("", event.lower()))
            url = self.text_of(element)
            if key is None or not url:
                continue
            grouped.setdefault(key, []).append(self.resolve(url))
        return {key: unique_urls(urls) for key, urls in grouped.items()}

    def duration_seconds(self) -> Optional[float]:
        for value in self.tag_values("Duration"):
            seconds = parse_duration_seconds(value)
            if seconds is not None:
                return seconds
        return None

    def skip_offset_seconds(self, duration_seconds: Optional[float] = None) -> Optional[float]:
        """First valid ``Linear@skipoffset`` across the document."""
        if duration_seconds is None:
            duration_seconds = self.duration_seconds()
        for element in self.elements("Linear"):
            value = self.attributes_of(element).get("skipoffset")
            if not value:
                continue
            try:
                return parse_skip_offset(value, duration_seconds)
            except VastDurationError as e:
                logger.debug(StreamEvents.SKIP_OFFSET_IGNORED, error=str(e))
        return None


class VastParser:
    """Parser for VAST XML responses."""

    def __init__(self, config: Optional[VastParserConfig] = None):
        self.logger = get_context_logger("vast_parser")
        self.config = config or VastParserConfig()

    def parse(self, xml: str, base_url: Optional[str] = None) -> VastDocument:
        """Parse VAST text into a :class:`VastDocument`.

        Never raises; a document lxml cannot salvage has no root.
        """
        if not xml or not xml.strip():
            self.logger.debug(StreamEvents.PARSE_EMPTY)
            return VastDocument(None, xml or "", base_url)

        parser = etree.XMLParser(
            recover=self.config.recover_on_error,
            encoding=self.config.encoding,
            resolve_entities=False,
            no_network=True,
            huge_tree=self.config.huge_tree,
        )
        try:
            source = escape_bare_ampersands(xml)
            root = etree.fromstring(source.encode(self.config.encoding, errors="replace"), parser=parser)
        except (etree.XMLSyntaxError, ValueError) as e:
            self.logger.debug(StreamEvents.PARSE_FAILED, error=str(e), xml_preview=xml[:200])
            root = None
        return VastDocument(root, xml, base_url)

    def extract_tag_values(self, xml: str, tag_name: str) -> list[str]:
        return self.parse(xml).tag_values(tag_name)

    def extract_media_candidates(self, xml: str, base_url: Optional[str] = None) -> list[MediaCandidate]:
        return self.parse(xml, base_url).media_candidates()

    def extract_tracking_events(self, xml: str, base_url: Optional[str] = None) -> dict[str, list[str]]:
        return self.parse(xml, base_url).tracking_events()

    def extract_skip_offset_seconds(self, xml: str, duration_seconds: Optional[float]) -> Optional[float]:
        return self.parse(xml).skip_offset_seconds(duration_seconds)


__all__ = [
    "VastParser",
    "VastDocument",
    "escape_bare_ampersands",
    "parse_duration_seconds",
    "parse_skip_offset",
]
