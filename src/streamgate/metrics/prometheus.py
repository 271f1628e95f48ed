"""
Prometheus metrics collector backed by prometheus_client.
"""

from typing import Any

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from .base import MetricsCollector


class PrometheusMetrics(MetricsCollector):
    """
    Prometheus metrics collector.

    Counter, Histogram and Gauge instruments are created lazily on first use,
    keyed by the sanitized metric name. Label names are fixed by the first
    call for a given metric.

    Example:
        >>> from streamgate.metrics import PrometheusMetrics
        >>> metrics = PrometheusMetrics(registry=CollectorRegistry())
        >>> metrics.increment('streamgate.proxy.requests', labels={'outcome': 'manifest'})
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or REGISTRY
        self._instruments: dict[tuple[str, str], Any] = {}

    @staticmethod
    def _sanitize_metric_name(metric: str) -> str:
        """Convert dotted names into valid Prometheus names."""
        return metric.replace(".", "_").replace("-", "_")

    def _instrument(self, kind: type, metric: str, labels: dict[str, str]) -> Any:
        name = self._sanitize_metric_name(metric)
        key = (kind.__name__, name)
        if key not in self._instruments:
            self._instruments[key] = kind(
                name,
                f"{kind.__name__} for {metric}",
                sorted(labels),
                registry=self.registry,
            )
        instrument = self._instruments[key]
        return instrument.labels(**labels) if labels else instrument

    def increment(
        self, metric: str, value: int = 1, labels: dict[str, str] | None = None
    ) -> None:
        self._instrument(Counter, metric, labels or {}).inc(value)

    def histogram(
        self, metric: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        self._instrument(Histogram, metric, labels or {}).observe(value)

    def gauge(
        self, metric: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        self._instrument(Gauge, metric, labels or {}).set(value)


__all__ = ["PrometheusMetrics"]
