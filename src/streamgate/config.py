"""Component configuration dataclasses.

These are plain dataclasses so components can be built in tests without a
settings file; ``from_settings`` bridges from the pydantic settings tree.
"""

from dataclasses import dataclass, field
from typing import Optional

from .settings import AdSettings


@dataclass
class VastParserConfig:
    """Configuration for the VAST XML parser.

    Attributes:
        recover_on_error: Let lxml recover from malformed markup instead of
            giving up on the whole document.
        encoding: Encoding used when handing text to lxml.
        huge_tree: Allow very large or deeply nested documents.

    Examples:
        >>> config = VastParserConfig(recover_on_error=False)
        >>> parser = VastParser(config)
    """

    recover_on_error: bool = True
    encoding: str = "utf-8"
    huge_tree: bool = False


@dataclass
class VastResolverConfig:
    """Configuration for wrapper-chain resolution.

    Attributes:
        timeout: One deadline, in seconds, shared by every fetch in a chain.
        max_wrapper_depth: Deepest wrapper level followed; the initial tag is
            depth 0, so the default allows the tag plus three wrappers.
        accept: Accept header for ad tag requests.
        request_headers: Extra headers (origin, referer, user-agent)
            forwarded with every ad tag request.
    """

    timeout: float = 8.0
    max_wrapper_depth: int = 3
    accept: str = "application/xml,text/xml,text/plain,*/*"
    request_headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_settings(
        cls,
        ads: AdSettings,
        server_side: bool = False,
        request_headers: Optional[dict[str, str]] = None,
    ) -> "VastResolverConfig":
        return cls(
            timeout=ads.server_timeout if server_side else ads.client_timeout,
            max_wrapper_depth=ads.max_wrapper_depth,
            request_headers=dict(request_headers or {}),
        )


__all__ = ["VastParserConfig", "VastResolverConfig"]
