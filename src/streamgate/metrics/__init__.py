"""
Metrics collection for streamgate.

Example:
    >>> from streamgate.metrics import NoOpMetrics, PrometheusMetrics
    >>> metrics = NoOpMetrics()
    >>> metrics.increment('streamgate.ads.resolutions')  # No-op
"""

from .base import MetricsCollector, NoOpMetrics
from .constants import MetricLabels, StreamMetrics
from .prometheus import PrometheusMetrics

__all__ = [
    "MetricsCollector",
    "NoOpMetrics",
    "PrometheusMetrics",
    "StreamMetrics",
    "MetricLabels",
]
