"""
In-process metrics registry.

Counters, gauges and latency histograms are keyed by name plus a sorted label
tuple. The module-level functions operate on one shared registry, which the
admin metrics endpoint and the monitoring collectors both read.
"""
from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterator, List, Optional, Tuple

Labels = Tuple[Tuple[str, str], ...]
MetricKey = Tuple[str, Labels]

RECENT_SAMPLES = 500
MAX_EVENTS = 200


def _labels_tuple(labels: Optional[Dict[str, str]]) -> Labels:
    return tuple(sorted(labels.items())) if labels else ()


@dataclass
class Histogram:
    count: int = 0
    total: float = 0.0
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    recent: Deque[float] = field(default_factory=lambda: deque(maxlen=RECENT_SAMPLES))

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min_value = value if self.min_value is None else min(self.min_value, value)
        self.max_value = value if self.max_value is None else max(self.max_value, value)
        self.recent.append(value)

    def percentile(self, fraction: float) -> Optional[float]:
        """Nearest-rank percentile over the most recent samples."""
        if not self.recent:
            return None
        ordered = sorted(self.recent)
        return ordered[max(0, math.ceil(fraction * len(ordered)) - 1)]

    def snapshot(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "avg": self.total / self.count if self.count else 0.0,
            "min": self.min_value,
            "max": self.max_value,
            "p95": self.percentile(0.95),
        }


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.counters: Dict[MetricKey, float] = {}
        self.gauges: Dict[MetricKey, float] = {}
        self.histograms: Dict[MetricKey, Histogram] = {}
        self.events: Deque[Dict[str, Any]] = deque(maxlen=MAX_EVENTS)

    def increment(self, name: str, amount: float, labels: Optional[Dict[str, str]]) -> None:
        key = (name, _labels_tuple(labels))
        with self._lock:
            self.counters[key] = self.counters.get(key, 0.0) + amount

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]]) -> None:
        with self._lock:
            self.gauges[(name, _labels_tuple(labels))] = value

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]]) -> None:
        key = (name, _labels_tuple(labels))
        with self._lock:
            self.histograms.setdefault(key, Histogram()).observe(value)

    def record_event(self, name: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.events.append({"name": name, "timestamp": time.time(), "payload": payload})

    def _series(self, store: Dict[MetricKey, Any], name: str) -> Iterator[Any]:
        return (value for (metric, _), value in store.items() if metric == name)

    def counter_total(self, name: str) -> float:
        """Sum of a counter across every label combination."""
        with self._lock:
            return sum(self._series(self.counters, name))

    def histogram_totals(self, name: str) -> Tuple[int, float]:
        with self._lock:
            histograms = list(self._series(self.histograms, name))
            return sum(h.count for h in histograms), sum(h.total for h in histograms)

    def snapshot(self) -> Dict[str, Any]:
        def group(store: Dict[MetricKey, Any], render) -> Dict[str, List[Dict[str, Any]]]:
            grouped: Dict[str, List[Dict[str, Any]]] = {}
            for (name, labels), value in store.items():
                grouped.setdefault(name, []).append({"labels": dict(labels), **render(value)})
            return grouped

        with self._lock:
            return {
                "counters": group(self.counters, lambda value: {"value": value}),
                "gauges": group(self.gauges, lambda value: {"value": value}),
                "histograms": group(self.histograms, lambda histogram: {"stats": histogram.snapshot()}),
                "events": list(self.events),
            }

    def reset(self) -> None:
        with self._lock:
            self.counters.clear()
            self.gauges.clear()
            self.histograms.clear()
            self.events.clear()


registry = MetricsRegistry()


def increment_counter(name: str, amount: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
    registry.increment(name, amount, labels)


def set_gauge(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    registry.set_gauge(name, value, labels)


def observe_latency(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    registry.observe(name, value, labels)


def record_event(name: str, payload: Dict[str, Any]) -> None:
    registry.record_event(name, payload)


def get_metrics_snapshot() -> Dict[str, Any]:
    return registry.snapshot()


def reset_metrics() -> None:
    """Testing helper."""
    registry.reset()


def http_traffic_totals() -> Dict[str, float]:
    """Cumulative request, error and latency totals recorded by the request hooks."""
    latency_count, latency_sum = registry.histogram_totals("http_request_latency_ms")
    return {
        "requests": registry.counter_total("http_requests_total"),
        "errors": registry.counter_total("http_errors_total"),
        "latency_count": latency_count,
        "latency_sum_ms": latency_sum,
    }
