"""Prometheus-style metrics for guarded calls.

Callers only see the final disposition of a call. Individual attempts,
retries, circuit rejections and rate-limit waits are exposed here as a side
channel, labelled by dependency.

Every relay metric is labelled, so values are only ever written through a
child bound to a label set: ``metric.labels(dependency="billing")``.

Metric types:
- Counter: Monotonically increasing value
- Gauge: Last value set (the circuit state)
- Histogram: Distribution of values (attempt latency)

Example:
    >>> from relay.observability.metrics import MetricsRegistry, CallMetrics
    >>>
    >>> registry = MetricsRegistry()
    >>> metrics = CallMetrics(registry)
    >>> metrics.record_attempt("billing", "success", latency=0.12)
    >>> print(registry.export_prometheus())
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Labels:
    """Immutable label set for metrics."""

    _labels: tuple[tuple[str, str], ...]

    @classmethod
    def from_dict(cls, d: dict[str, str] | None) -> "Labels":
        """Create from dictionary."""
        if not d:
            return cls(())
        return cls(tuple(sorted(d.items())))

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary."""
        return dict(self._labels)


class Metric(ABC):
    """Base class for metrics: one series per label set."""

    type_name = "untyped"

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._lock = threading.Lock()
        self._series: dict[Labels, Any] = {}

    @abstractmethod
    def _sample(self, series: Any) -> dict[str, Any]:
        """Export fields for one series."""
        ...

    def collect(self) -> list[dict[str, Any]]:
        """Collect metric values for export."""
        with self._lock:
            return [
                {"name": self.name, "type": self.type_name, "labels": labels.to_dict(), **self._sample(series)}
                for labels, series in self._series.items()
            ]


class _ScalarMetric(Metric):
    def _sample(self, series: float) -> dict[str, Any]:
        return {"value": series}

    def _get(self, labels: Labels) -> float:
        with self._lock:
            return self._series.get(labels, 0.0)


class Counter(_ScalarMetric):
    """A monotonically increasing counter."""

    type_name = "counter"

    def labels(self, **kwargs: str) -> "CounterChild":
        """Get counter with specific labels."""
        return CounterChild(self, Labels.from_dict(kwargs))

    def _inc(self, labels: Labels, value: float) -> None:
        with self._lock:
            self._series[labels] = self._series.get(labels, 0.0) + value


class CounterChild:
    """Counter with fixed labels."""

    def __init__(self, counter: Counter, labels: Labels):
        self._counter = counter
        self._labels = labels

    def inc(self, value: float = 1.0) -> None:
        """Increment the counter."""
        if value < 0:
            raise ValueError("Counter can only increase")
        self._counter._inc(self._labels, value)

    @property
    def value(self) -> float:
        return self._counter._get(self._labels)


class Gauge(_ScalarMetric):
    """A value that can go up or down."""

    type_name = "gauge"

    def labels(self, **kwargs: str) -> "GaugeChild":
        """Get gauge with specific labels."""
        return GaugeChild(self, Labels.from_dict(kwargs))

    def _set(self, labels: Labels, value: float) -> None:
        with self._lock:
            self._series[labels] = value


class GaugeChild:
    """Gauge with fixed labels."""

    def __init__(self, gauge: Gauge, labels: Labels):
        self._gauge = gauge
        self._labels = labels

    def set(self, value: float) -> None:
        self._gauge._set(self._labels, value)

    @property
    def value(self) -> float:
        return self._gauge._get(self._labels)


@dataclass
class _Distribution:
    buckets: dict[float, int]
    sum: float = 0.0
    count: int = 0

    def add(self, value: float) -> None:
        self.sum += value
        self.count += 1
        for bound in self.buckets:
            if value <= bound:
                self.buckets[bound] += 1


class Histogram(Metric):
    """A distribution of values with cumulative buckets."""

    type_name = "histogram"
    DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float("inf"))

    def __init__(self, name: str, description: str = "", buckets: tuple[float, ...] | None = None):
        super().__init__(name, description)
        self._buckets = buckets or self.DEFAULT_BUCKETS

    def labels(self, **kwargs: str) -> "HistogramChild":
        """Get histogram with specific labels."""
        return HistogramChild(self, Labels.from_dict(kwargs))

    def _observe(self, labels: Labels, value: float) -> None:
        with self._lock:
            series = self._series.get(labels)
            if series is None:
                series = self._series[labels] = _Distribution(dict.fromkeys(self._buckets, 0))
            series.add(value)

    def _sample(self, series: _Distribution) -> dict[str, Any]:
        return {"buckets": dict(series.buckets), "sum": series.sum, "count": series.count}


class HistogramChild:
    """Histogram with fixed labels."""

    def __init__(self, histogram: Histogram, labels: Labels):
        self._histogram = histogram
        self._labels = labels

    def observe(self, value: float) -> None:
        self._histogram._observe(self._labels, value)


class MetricsRegistry:
    """Registry of all metrics for collection and export."""

    def __init__(self):
        self._metrics: dict[str, Metric] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, description: str = "") -> Counter:
        """Get or create a counter."""
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = Counter(name, description)
            return self._metrics[name]

    def gauge(self, name: str, description: str = "") -> Gauge:
        """Get or create a gauge."""
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = Gauge(name, description)
            return self._metrics[name]

    def histogram(
        self,
        name: str,
        description: str = "",
        buckets: tuple[float, ...] | None = None,
    ) -> Histogram:
        """Get or create a histogram."""
        with self._lock:
            if name not in self._metrics:
                self._metrics[name] = Histogram(name, description, buckets)
            return self._metrics[name]

    def collect(self) -> list[dict[str, Any]]:
        """Collect all metrics."""
        with self._lock:
            metrics = list(self._metrics.values())
        results = []
        for metric in metrics:
            results.extend(metric.collect())
        return results

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []

        for data in self.collect():
            name = data["name"]
            labels = data.get("labels", {})

            if labels:
                label_str = "{" + ",".join(f'{k}="{v}"' for k, v in labels.items()) + "}"
            else:
                label_str = ""

            if data["type"] in ("counter", "gauge"):
                lines.append(f"{name}{label_str} {data['value']}")

            elif data["type"] == "histogram":
                for bucket, count in data["buckets"].items():
                    le = "+Inf" if bucket == float("inf") else bucket
                    bucket_labels = f'{label_str[:-1]},le="{le}"}}' if label_str else f'{{le="{le}"}}'
                    lines.append(f"{name}_bucket{bucket_labels} {count}")

                lines.append(f"{name}_sum{label_str} {data['sum']}")
                lines.append(f"{name}_count{label_str} {data['count']}")

        return "\n".join(lines)


# Gauge encoding of circuit states
CIRCUIT_STATE_VALUES = {"closed": 0.0, "half_open": 1.0, "open": 2.0}


class CallMetrics:
    """Pre-defined metrics for guarded calls."""

    def __init__(self, registry: MetricsRegistry | None = None):
        self.registry = registry or MetricsRegistry()
        reg = self.registry

        self.attempts = reg.counter(
            "relay_attempts_total",
            "Transport attempts by outcome",
        )
        self.calls = reg.counter(
            "relay_calls_total",
            "Logical calls by final status",
        )
        self.retries = reg.counter(
            "relay_retries_total",
            "Retries scheduled after retryable failures",
        )
        self.circuit_rejections = reg.counter(
            "relay_circuit_rejections_total",
            "Calls rejected by an open circuit",
        )
        self.rate_limit_waits = reg.counter(
            "relay_rate_limit_waits_total",
            "Admission checks deferred by the rate limiter",
        )
        self.attempt_latency = reg.histogram(
            "relay_attempt_latency_seconds",
            "Transport attempt latency in seconds",
        )
        self.circuit_state = reg.gauge(
            "relay_circuit_state",
            "Circuit state (0=closed, 1=half_open, 2=open)",
        )

    def record_attempt(self, dependency: str, outcome: str, latency: float) -> None:
        """Record a settled transport attempt."""
        self.attempts.labels(dependency=dependency, outcome=outcome).inc()
        self.attempt_latency.labels(dependency=dependency).observe(latency)

    def record_call(self, dependency: str, status: str) -> None:
        """Record the final disposition of a logical call."""
        self.calls.labels(dependency=dependency, status=status).inc()

    def record_retry(self, dependency: str) -> None:
        self.retries.labels(dependency=dependency).inc()

    def record_circuit_rejection(self, dependency: str) -> None:
        self.circuit_rejections.labels(dependency=dependency).inc()

    def record_rate_limit_wait(self, dependency: str) -> None:
        self.rate_limit_waits.labels(dependency=dependency).inc()

    def record_circuit_state(self, dependency: str, state: str) -> None:
        self.circuit_state.labels(dependency=dependency).set(CIRCUIT_STATE_VALUES[state])
