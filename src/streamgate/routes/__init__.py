"""HTTP surface: FastAPI application factory and route helpers."""

from .helpers import build_url_preserving_unicode, request_origin


__all__ = ["build_url_preserving_unicode", "request_origin"]
