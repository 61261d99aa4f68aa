"""
Metrics - In-process counters, gauges and histograms.

Exposed in Prometheus text format on the metrics endpoint and as JSON
through the CLI.

## Usage

    from k8s_duplicator.observability.metrics import metrics

    metrics.increment("reconcile_total")
    metrics.increment("operations_total", labels={"operation": "create", "result": "ok"})
    metrics.set_gauge("workqueue_depth", 3)
    metrics.timing("reconcile_duration_seconds", 0.042)

    output = metrics.export_prometheus()
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

LabelKey = Tuple[Tuple[str, str], ...]


@dataclass
class MetricPoint:
    """A single metric data point."""

    name: str
    value: float
    timestamp: float
    labels: Dict[str, str] = field(default_factory=dict)


def _labels_key(labels: Optional[Dict[str, str]]) -> LabelKey:
    if not labels:
        return ()
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


class Counter:
    """A monotonically increasing counter."""

    kind = "counter"

    def __init__(self, name: str, help_text: str = ""):
        self.name = name
        self.help_text = help_text
        self._values: Dict[LabelKey, float] = defaultdict(float)
        self._lock = Lock()

    def inc(self, value: float = 1, labels: Optional[Dict[str, str]] = None) -> None:
        if value < 0:
            raise ValueError("Counters can only increase")
        with self._lock:
            self._values[_labels_key(labels)] += value

    def get(self, labels: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._values.get(_labels_key(labels), 0)

    def total(self) -> float:
        """Sum across every label combination."""
        with self._lock:
            return sum(self._values.values())

    def export(self) -> List[MetricPoint]:
        now = time.time()
        with self._lock:
            items = list(self._values.items())
        return [MetricPoint(self.name, value, now, dict(key)) for key, value in items]


class Gauge:
    """A gauge that can go up and down."""

    kind = "gauge"

    def __init__(self, name: str, help_text: str = ""):
        self.name = name
        self.help_text = help_text
        self._values: Dict[LabelKey, float] = {}
        self._lock = Lock()

    def set(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self._values[_labels_key(labels)] = value

    def inc(self, value: float = 1, labels: Optional[Dict[str, str]] = None) -> None:
        key = _labels_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0) + value

    def dec(self, value: float = 1, labels: Optional[Dict[str, str]] = None) -> None:
        self.inc(-value, labels)

    def get(self, labels: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._values.get(_labels_key(labels), 0)

    def export(self) -> List[MetricPoint]:
        now = time.time()
        with self._lock:
            items = list(self._values.items())
        return [MetricPoint(self.name, value, now, dict(key)) for key, value in items]


class Histogram:
    """A histogram for timing distributions, in seconds."""

    kind = "histogram"

    DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, float("inf"))

    def __init__(self, name: str, help_text: str = "", buckets: Optional[tuple] = None):
        self.name = name
        self.help_text = help_text
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._counts: Dict[LabelKey, Dict[float, int]] = defaultdict(lambda: defaultdict(int))
        self._sums: Dict[LabelKey, float] = defaultdict(float)
        self._totals: Dict[LabelKey, int] = defaultdict(int)
        self._lock = Lock()

    def observe(self, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        key = _labels_key(labels)
        with self._lock:
            self._sums[key] += value
            self._totals[key] += 1
            # Stored per bucket, accumulated on export
            for bucket in self.buckets:
                if value <= bucket:
                    self._counts[key][bucket] += 1
                    break

    def count(self, labels: Optional[Dict[str, str]] = None) -> int:
        with self._lock:
            return self._totals.get(_labels_key(labels), 0)

    def sum(self, labels: Optional[Dict[str, str]] = None) -> float:
        with self._lock:
            return self._sums.get(_labels_key(labels), 0.0)

    def export(self) -> List[MetricPoint]:
        points = []
        now = time.time()

        with self._lock:
            keys = list(self._totals.keys())
            for key in keys:
                labels = dict(key)
                cumulative = 0
                for bucket in self.buckets:
                    cumulative += self._counts[key].get(bucket, 0)
                    le = "+Inf" if bucket == float("inf") else str(bucket)
                    points.append(
                        MetricPoint(f"{self.name}_bucket", cumulative, now, {**labels, "le": le})
                    )
                points.append(MetricPoint(f"{self.name}_sum", self._sums[key], now, labels))
                points.append(MetricPoint(f"{self.name}_count", self._totals[key], now, labels))

        return points


class MetricsRegistry:
    """
    Central registry for all metrics.

    Names passed to the convenience methods are unprefixed; the registry
    adds ``<prefix>_`` on registration.
    """

    def __init__(self, prefix: str = "duplicator"):
        self.prefix = prefix
        self._counters: Dict[str, Counter] = {}
        self._gauges: Dict[str, Gauge] = {}
        self._histograms: Dict[str, Histogram] = {}
        self._lock = Lock()

        self._register_common_metrics()

    def _register_common_metrics(self) -> None:
        # Reconcile cycles
        self.counter("reconcile_total", "Reconcile cycles started")
        self.counter("reconcile_errors_total", "Reconcile cycles that ended in a retryable error")
        self.histogram("reconcile_duration_seconds", "Reconcile cycle duration")
        self.counter("operations_total", "Per-object store operations by outcome")

        # Cluster inventory as of the last cycle
        self.gauge("source_secrets", "Secrets annotated for duplication")
        self.gauge("duplicate_secrets", "Managed duplicates")
        self.gauge("eligible_namespaces", "Namespaces that are not terminating")

        # Scheduling
        self.gauge("workqueue_depth", "Requests waiting in the work queue")
        self.counter("workqueue_retries_total", "Requests re-queued with backoff")
        self.counter("watch_events_total", "Watch events received")
        self.counter("watch_errors_total", "Watch streams that failed and were restarted")
        self.gauge("leader", "1 when this instance holds the leader lease")

    def counter(self, name: str, help_text: str = "") -> Counter:
        """Get or create a counter."""
        full_name = f"{self.prefix}_{name}"
        with self._lock:
            if full_name not in self._counters:
                self._counters[full_name] = Counter(full_name, help_text)
            return self._counters[full_name]

    def gauge(self, name: str, help_text: str = "") -> Gauge:
        """Get or create a gauge."""
        full_name = f"{self.prefix}_{name}"
        with self._lock:
            if full_name not in self._gauges:
                self._gauges[full_name] = Gauge(full_name, help_text)
            return self._gauges[full_name]

    def histogram(self, name: str, help_text: str = "") -> Histogram:
        """Get or create a histogram."""
        full_name = f"{self.prefix}_{name}"
        with self._lock:
            if full_name not in self._histograms:
                self._histograms[full_name] = Histogram(full_name, help_text)
            return self._histograms[full_name]

    # Convenience methods
    def increment(self, name: str, value: float = 1, labels: Optional[Dict[str, str]] = None) -> None:
        self.counter(name).inc(value, labels)

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        self.gauge(name).set(value, labels)

    def timing(self, name: str, seconds: float, labels: Optional[Dict[str, str]] = None) -> None:
        self.histogram(name).observe(seconds, labels)

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []

        with self._lock:
            families = (
                list(self._counters.values())
                + list(self._gauges.values())
                + list(self._histograms.values())
            )

        for family in families:
            lines.append(f"# HELP {family.name} {family.help_text}")
            lines.append(f"# TYPE {family.name} {family.kind}")
            for point in family.export():
                lines.append(f"{point.name}{self._format_labels(point.labels)} {point.value}")

        return "\n".join(lines) + "\n"

    def export_json(self) -> Dict[str, Any]:
        """Export metrics as JSON, one entry per label combination."""
        result: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "counters": {},
            "gauges": {},
            "histograms": {},
        }

        with self._lock:
            counters = list(self._counters.items())
            gauges = list(self._gauges.items())
            histograms = list(self._histograms.items())

        for name, counter in counters:
            result["counters"][name] = self._points_json(counter.export())
        for name, gauge in gauges:
            result["gauges"][name] = self._points_json(gauge.export())
        for name, histogram in histograms:
            result["histograms"][name] = {
                "sum": histogram.sum(),
                "count": histogram.count(),
            }

        return result

    @staticmethod
    def _points_json(points: List[MetricPoint]) -> Any:
        if not points:
            return 0
        if len(points) == 1 and not points[0].labels:
            return points[0].value
        return [{"labels": p.labels, "value": p.value} for p in points]

    def _format_labels(self, labels: Dict[str, str]) -> str:
        if not labels:
            return ""
        pairs = []
        for k, v in sorted(labels.items()):
            escaped = v.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
            pairs.append(f'{k}="{escaped}"')
        return "{" + ",".join(pairs) + "}"


# Global metrics instance
metrics = MetricsRegistry()
