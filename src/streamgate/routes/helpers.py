"""Route helper utilities."""

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def build_url_preserving_unicode(base_url: str, params: dict[str, str] | None = None) -> str:
    """Merge query parameters into a URL, keeping non-ASCII characters readable.

    Existing parameters are kept in place; ``params`` override values with
    the same name and new names are appended.

    Args:
        base_url: Base URL, may already carry a query string
        params: Query parameters to add or replace

    Returns:
        Complete URL with parameters
    """
    if not params:
        return base_url

    parts = urlsplit(base_url)
    merged: dict[str, str] = dict(parse_qsl(parts.query, keep_blank_values=True))
    merged.update(params)
    query = urlencode(merged, safe=":/@!$'()*+,;")
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def request_origin(url: str) -> str:
    """``scheme://host[:port]`` of an absolute URL."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


__all__ = ["build_url_preserving_unicode", "request_origin"]
