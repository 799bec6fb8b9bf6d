"""Prometheus metrics for Covenant.

Metrics are kept in process and exposed at ``/metrics`` in the Prometheus
text format.

Metrics collected:
    - covenant_requests_total: dispatched requests by transport and outcome
    - covenant_request_duration_seconds: gate chain plus handler latency
    - covenant_gate_failures_total: rejected requests by gate and error type
    - covenant_cache_lookups_total: credential cache hits, misses and errors
    - covenant_health_status: dependency health (1=healthy, 0=unhealthy)
"""

from __future__ import annotations

import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock

LabelValues = tuple[str, ...]


def _label_block(names: tuple[str, ...], values: LabelValues, extra: str = "") -> str:
    pairs = [f'{name}="{value}"' for name, value in zip(names, values, strict=False)]
    if extra:
        pairs.append(extra)
    return "{" + ",".join(pairs) + "}" if pairs else ""


@dataclass
class _Metric:
    name: str
    description: str
    labels: tuple[str, ...] = ()
    _values: dict[LabelValues, float] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock)

    kind = "untyped"

    def get(self, *label_values: str) -> float:
        with self._lock:
            return self._values.get(label_values, 0.0)

    def _add(self, label_values: LabelValues, amount: float) -> None:
        with self._lock:
            self._values[label_values] = self._values.get(label_values, 0.0) + amount

    def collect(self) -> str:
        """Render the metric in Prometheus text format."""
        lines = [
            f"# HELP {self.name} {self.description}",
            f"# TYPE {self.name} {self.kind}",
        ]
        with self._lock:
            if not self._values:
                lines.append(f"{self.name} 0")
            for label_values, value in sorted(self._values.items()):
                lines.append(f"{self.name}{_label_block(self.labels, label_values)} {value}")
        return "\n".join(lines)


class Counter(_Metric):
    """Monotonic counter."""

    kind = "counter"

    def inc(self, *label_values: str, amount: float = 1.0) -> None:
        self._add(label_values, amount)

    def total(self) -> float:
        with self._lock:
            return sum(self._values.values())


class Gauge(_Metric):
    kind = "gauge"

    def set(self, value: float, *label_values: str) -> None:
        with self._lock:
            self._values[label_values] = value


@dataclass
class Histogram:
    """Histogram with fixed cumulative buckets."""

    name: str
    description: str
    buckets: tuple[float, ...] = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
    labels: tuple[str, ...] = ()
    _observations: dict[LabelValues, list[float]] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock)

    def observe(self, value: float, *label_values: str) -> None:
        with self._lock:
            self._observations.setdefault(label_values, []).append(value)

    @contextmanager
    def time(self, *label_values: str) -> Generator[None, None, None]:
        """Time the enclosed block and record it as one observation."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.observe(time.perf_counter() - start, *label_values)

    def count(self, *label_values: str) -> int:
        with self._lock:
            return len(self._observations.get(label_values, []))

    def collect(self) -> str:
        lines = [
            f"# HELP {self.name} {self.description}",
            f"# TYPE {self.name} histogram",
        ]
        with self._lock:
            for label_values, samples in sorted(self._observations.items()):
                for bucket in sorted(self.buckets):
                    within = sum(1 for sample in samples if sample <= bucket)
                    block = _label_block(self.labels, label_values, f'le="{bucket}"')
                    lines.append(f"{self.name}_bucket{block} {within}")
                block = _label_block(self.labels, label_values, 'le="+Inf"')
                lines.append(f"{self.name}_bucket{block} {len(samples)}")
                plain = _label_block(self.labels, label_values)
                lines.append(f"{self.name}_sum{plain} {sum(samples)}")
                lines.append(f"{self.name}_count{plain} {len(samples)}")
        return "\n".join(lines)


class MetricsRegistry:
    """All Covenant metrics."""

    def __init__(self) -> None:
        self.requests_total = Counter(
            name="covenant_requests_total",
            description="Total number of dispatched requests",
            labels=("transport", "outcome"),
        )
        self.request_duration_seconds = Histogram(
            name="covenant_request_duration_seconds",
            description="Gate chain and handler duration in seconds",
            labels=("transport",),
        )
        self.gate_failures_total = Counter(
            name="covenant_gate_failures_total",
            description="Total number of requests rejected by a gate",
            labels=("gate", "type"),
        )
        self.cache_lookups_total = Counter(
            name="covenant_cache_lookups_total",
            description="Credential cache lookups by result",
            labels=("prefix", "result"),  # hit, miss, error
        )
        self.health_status = Gauge(
            name="covenant_health_status",
            description="Health status of dependencies (1=healthy, 0=unhealthy)",
            labels=("dependency",),
        )

    def collect_all(self) -> str:
        """Collect all metrics in Prometheus format."""
        metrics = [
            self.requests_total.collect(),
            self.request_duration_seconds.collect(),
            self.gate_failures_total.collect(),
            self.cache_lookups_total.collect(),
            self.health_status.collect(),
        ]
        return "\n\n".join(metrics) + "\n"


metrics = MetricsRegistry()


def get_metrics() -> MetricsRegistry:
    """Return the process-wide metrics registry."""
    return metrics
