"""Observability package for relay.

Key components:
- metrics: Prometheus-style counters, gauges and histograms for guarded calls

Structured logging lives in ``relay.core.logging``.
"""

from .metrics import (
    CallMetrics,
    Counter,
    Gauge,
    Histogram,
    MetricsRegistry,
)

__all__ = [
    "CallMetrics",
    "Counter",
    "Gauge",
    "Histogram",
    "MetricsRegistry",
]
