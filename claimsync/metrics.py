"""
Prometheus metrics for the claim sync service.

Exposes counters and gauges in Prometheus text format.
"""
from typing import Dict


class Metric:
    """Single unlabeled sample with HELP/TYPE header."""

    kind = "untyped"

    def __init__(self, name: str, description: str):
        self.name = name
        self.description = description
        self.value = 0

    def render(self) -> str:
        return "\n".join([
            f"# HELP {self.name} {self.description}",
            f"# TYPE {self.name} {self.kind}",
            f"{self.name} {self.value}"
        ])


class Counter(Metric):
    """Monotonic counter."""

    kind = "counter"

    def inc(self, amount: int = 1):
        if amount < 0:
            raise ValueError("Counters can only increase")
        self.value += amount


class Gauge(Metric):
    """Point-in-time value."""

    kind = "gauge"

    def set(self, value: float):
        self.value = value


class MetricsRegistry:
    """Named metrics rendered together for /metrics."""

    def __init__(self):
        self.metrics: Dict[str, Metric] = {}

    def _register(self, metric: Metric) -> Metric:
        if metric.name in self.metrics:
            raise ValueError(f"Metric already registered: {metric.name}")
        self.metrics[metric.name] = metric
        return metric

    def register_counter(self, name: str, description: str) -> Counter:
        return self._register(Counter(name, description))

    def register_gauge(self, name: str, description: str) -> Gauge:
        return self._register(Gauge(name, description))

    def render(self) -> str:
        return "\n\n".join(metric.render() for metric in self.metrics.values()) + "\n"


# Global registry
registry = MetricsRegistry()

claims_stored_total = registry.register_counter(
    "claimsync_claims_stored_total",
    "Total number of claims stored through the write path"
)

addresses_registered_total = registry.register_counter(
    "claimsync_addresses_registered_total",
    "Total number of new unresolved addresses registered"
)

download_attempts_total = registry.register_counter(
    "claimsync_download_attempts_total",
    "Total number of resolution attempts started"
)

downloads_resolved_total = registry.register_counter(
    "claimsync_downloads_resolved_total",
    "Total number of addresses resolved into claims"
)

downloads_failed_total = registry.register_counter(
    "claimsync_downloads_failed_total",
    "Total number of failed resolution ticks"
)

entries_stuck = registry.register_gauge(
    "claimsync_entries_stuck",
    "Unresolved entries that exhausted their attempts"
)
