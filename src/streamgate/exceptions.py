"""streamgate exception hierarchy.

Ad and tracking failures are normally absorbed where they happen and never
reach the viewer, so most of these types exist for the few places that do
raise: configuration, token handling, the ad-break state table and source
exhaustion.

Exception Hierarchy:
    StreamGateError (base)
    ├── VastParseError
    │   └── VastDurationError
    ├── ProxyTokenError
    │   ├── ProxyTokenDisabledError
    │   └── ProxyTokenInvalidError
    ├── ProxyTargetError
    ├── UpstreamFetchError
    ├── AdBreakStateError
    ├── NoPlayableSourceError
    ├── InvalidMediaRequestError
    └── ConfigError
"""

from typing import Optional


class StreamGateError(Exception):
    """Base exception for all streamgate errors."""

    def __init__(self, message: str, context: Optional[dict] = None):
        """Initialize the exception.

        Args:
            message: Error message
            context: Optional context dictionary for debugging
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """Return string representation with context."""
        if self.context:
            context_str = "; ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


# Parsing Errors


class VastParseError(StreamGateError):
    """Raised when a VAST value cannot be interpreted."""

    pass


class VastDurationError(VastParseError):
    """Raised when a duration or offset string has an unexpected format.

    Attributes:
        value: The raw string that failed to parse
    """

    def __init__(self, message: str, value: Optional[str] = None, context: Optional[dict] = None):
        if context is None:
            context = {}
        if value is not None:
            context["value"] = value
        super().__init__(message, context)
        self.value = value


# Proxy token errors


class ProxyTokenError(StreamGateError):
    """Base exception for proxy token failures."""

    pass


class ProxyTokenDisabledError(ProxyTokenError):
    """Raised when a token is requested but no signing secret is configured."""

    pass


class ProxyTokenInvalidError(ProxyTokenError):
    """Raised when a token is malformed, forged or expired."""

    pass


class ProxyTargetError(StreamGateError):
    """Raised when a proxy target is not an absolute http(s) URL.

    Attributes:
        target: The rejected target
    """

    def __init__(self, message: str, target: Optional[str] = None, context: Optional[dict] = None):
        if context is None:
            context = {}
        if target is not None:
            context["target"] = target[:200]
        super().__init__(message, context)
        self.target = target


# Network errors


class UpstreamFetchError(StreamGateError):
    """Raised when an upstream request fails.

    Attributes:
        url: Upstream URL
        status_code: HTTP status, when a response was received
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        context: Optional[dict] = None,
    ):
        if context is None:
            context = {}
        if url:
            context["url"] = url
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(message, context)
        self.url = url
        self.status_code = status_code


# Playback errors


class AdBreakStateError(StreamGateError):
    """Raised on an illegal ad-break phase transition."""

    def __init__(self, current: str, target: str):
        super().__init__(
            "Illegal ad break transition", {"current": current, "target": target}
        )
        self.current = current
        self.target = target


class NoPlayableSourceError(StreamGateError):
    """Raised when no stream source is available or all have failed."""

    pass


class InvalidMediaRequestError(StreamGateError):
    """Raised when a media request has missing or non-numeric identifiers."""

    pass


class ConfigError(StreamGateError):
    """Raised when configuration cannot be loaded or is invalid."""

    pass


__all__ = [
    "StreamGateError",
    "VastParseError",
    "VastDurationError",
    "ProxyTokenError",
    "ProxyTokenDisabledError",
    "ProxyTokenInvalidError",
    "ProxyTargetError",
    "UpstreamFetchError",
    "AdBreakStateError",
    "NoPlayableSourceError",
    "InvalidMediaRequestError",
    "ConfigError",
]
