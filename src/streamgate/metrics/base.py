"""
Pluggable metrics interface.

Components record through a MetricsCollector so the service can run with
Prometheus enabled or with the zero-cost NoOpMetrics default.
"""

from abc import ABC, abstractmethod


class MetricsCollector(ABC):
    """Abstract metrics sink used by resolvers, proxies and aggregators."""

    @abstractmethod
    def increment(
        self, metric: str, value: int = 1, labels: dict[str, str] | None = None
    ) -> None:
        """
        Increment a counter metric.

        Args:
            metric: Metric name (e.g., 'streamgate.ads.resolutions')
            value: Amount to increment (default: 1)
            labels: Optional labels (e.g., {'slot': 'preroll', 'result': 'filled'})
        """

    @abstractmethod
    def histogram(
        self, metric: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        """Record an observation into a histogram."""

    @abstractmethod
    def gauge(
        self, metric: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        """Set a gauge to an absolute value."""

    def timing(
        self, metric: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        """Record a duration in milliseconds (histogram shorthand)."""
        self.histogram(metric, value, labels)


class NoOpMetrics(MetricsCollector):
    """Default collector; drops everything."""

    def increment(
        self, metric: str, value: int = 1, labels: dict[str, str] | None = None
    ) -> None:
        pass

    def histogram(
        self, metric: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        pass

    def gauge(
        self, metric: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        pass


__all__ = ["MetricsCollector", "NoOpMetrics"]
