"""HTTP client pooling and lifecycle management.

Three pools are kept, keyed by their effective configuration:

* ``main``: ad tags, ad decisions and provider lookups.
* ``tracking``: beacon pixels; short timeout and lenient TLS so broken
  tracker certificates never block an ad.
* ``upstream``: secure proxy fetches; library default timeouts, redirects
  followed so the final URL decides manifest handling.
"""

from typing import Any, Optional

import httpx

from .settings import HttpSettings, get_settings


_http_clients: dict[tuple[Any, ...], httpx.AsyncClient] = {}


def _load_http_config(kind: str, http: Optional[HttpSettings] = None) -> dict[str, Any]:
    """Resolve pool parameters for a client kind ("main", "tracking" or "upstream")."""
    http = http or get_settings().http
    cfg: dict[str, Any] = {
        "timeout": http.timeout,
        "max_connections": http.max_connections,
        "max_keepalive_connections": http.max_keepalive_connections,
        "keepalive_expiry": http.keepalive_expiry,
        "verify": http.verify_ssl,
    }
    if kind == "tracking":
        cfg["timeout"] = http.tracking_timeout
        cfg["verify"] = http.tracking_verify_ssl
    elif kind == "upstream":
        cfg["timeout"] = None
    return cfg


def _client_cache_key(kind: str, cfg: dict[str, Any]) -> tuple[Any, ...]:
    return (
        kind,
        cfg["verify"],
        cfg["timeout"],
        cfg["max_connections"],
        cfg["max_keepalive_connections"],
        cfg["keepalive_expiry"],
    )


def _get_client(kind: str, http: Optional[HttpSettings] = None, **overrides: Any) -> httpx.AsyncClient:
    cfg = _load_http_config(kind, http)
    cfg.update({k: v for k, v in overrides.items() if v is not None})

    key = _client_cache_key(kind, cfg)
    client = _http_clients.get(key)
    if client is None or client.is_closed:
        kwargs: dict[str, Any] = {
            "limits": httpx.Limits(
                max_keepalive_connections=cfg["max_keepalive_connections"],
                max_connections=cfg["max_connections"],
                keepalive_expiry=cfg["keepalive_expiry"],
            ),
            "verify": cfg["verify"],
            "follow_redirects": True,
        }
        if cfg["timeout"] is not None:
            kwargs["timeout"] = cfg["timeout"]
        client = httpx.AsyncClient(**kwargs)
        _http_clients[key] = client
    return client


def get_main_http_client(
    http: Optional[HttpSettings] = None, *, timeout: float | None = None
) -> httpx.AsyncClient:
    """Get the pooled client for ad tags and provider lookups."""
    return _get_client("main", http, timeout=timeout)


def get_tracking_http_client(
    http: Optional[HttpSettings] = None, *, timeout: float | None = None
) -> httpx.AsyncClient:
    """Get the pooled client for tracking pixel requests."""
    return _get_client("tracking", http, timeout=timeout)


def get_upstream_http_client(http: Optional[HttpSettings] = None) -> httpx.AsyncClient:
    """Get the pooled client for secure proxy upstream fetches."""
    return _get_client("upstream", http)


async def close_http_clients() -> None:
    """Close and forget every pooled client."""
    clients = list(_http_clients.values())
    _http_clients.clear()
    for client in clients:
        await client.aclose()


__all__ = [
    "get_main_http_client",
    "get_tracking_http_client",
    "get_upstream_http_client",
    "close_http_clients",
]
