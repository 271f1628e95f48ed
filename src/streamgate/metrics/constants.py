"""
Metric name constants.

Names are dotted here and sanitized by the Prometheus collector.
"""


class StreamMetrics:
    """Metric name constants for streamgate operations."""

    # Ad resolution
    AD_RESOLUTIONS = "streamgate.ads.resolutions"
    AD_WRAPPER_DEPTH = "streamgate.ads.wrapper_depth"
    AD_RESOLVE_DURATION_MS = "streamgate.ads.resolve.duration"

    # Tracking beacons
    BEACONS_SENT = "streamgate.beacons.sent"
    BEACONS_FAILED = "streamgate.beacons.failed"

    # Secure proxy
    PROXY_REQUESTS = "streamgate.proxy.requests"
    PROXY_MANIFEST_LINES = "streamgate.proxy.manifest.lines"

    # Source aggregation
    PROVIDER_RESULTS = "streamgate.sources.provider.results"
    SOURCES_RETURNED = "streamgate.sources.returned"


class MetricLabels:
    """Standard label names for metrics."""

    SLOT = "slot"  # preroll, midroll
    RESULT = "result"  # filled, empty, timeout, error
    OUTCOME = "outcome"  # manifest, passthrough, rejected, upstream_error
    PROVIDER = "provider"
    EVENT_TYPE = "event_type"


__all__ = ["StreamMetrics", "MetricLabels"]
