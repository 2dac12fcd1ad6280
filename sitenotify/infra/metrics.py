# sitenotify/infra/metrics.py
from __future__ import annotations
import time
from collections import defaultdict
from threading import Lock
from typing import Dict
from dataclasses import dataclass, field
from sitenotify.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Counter:
    """Simple counter metric"""
    value: int = 0

    def inc(self, amount: int = 1) -> None:
        self.value += amount


@dataclass
class Histogram:
    """Track distribution of values (e.g., dispatch durations)"""
    values: list[float] = field(default_factory=list)

    def observe(self, value: float) -> None:
        self.values.append(value)

    def get_stats(self) -> dict:
        if not self.values:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}

        sorted_values = sorted(self.values)
        count = len(sorted_values)

        return {
            "count": count,
            "min": sorted_values[0],
            "max": sorted_values[-1],
            "avg": sum(sorted_values) / count,
            "p95": sorted_values[min(int(count * 0.95), count - 1)],
        }


class MetricsCollector:
    """In-process metrics for dispatch outcomes."""

    def __init__(self):
        self._counters: Dict[str, Counter] = defaultdict(Counter)
        self._histograms: Dict[str, Histogram] = defaultdict(Histogram)
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key].inc(amount)

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms[key].observe(value)

    def get_metrics(self) -> dict:
        with self._lock:
            counters = {k: v.value for k, v in self._counters.items()}
            histograms = {k: v.get_stats() for k, v in self._histograms.items()}

        return {
            "counters": counters,
            "histograms": histograms,
        }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.info("Metrics reset")

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        """Create a metric key from name and labels"""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector"""
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    """Increment a counter metric"""
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    """Record a histogram value"""
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """Context manager to time operations"""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self.start_time: float | None = None

    def __enter__(self):
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            observe_histogram(self.metric_name, time.monotonic() - self.start_time, **self.labels)


class DispatchMetrics:
    """Notification-level metrics tracking"""

    @staticmethod
    def delivered(channel: str, notification_type: str) -> None:
        inc_counter("notifications_sent_total", channel=channel, type=notification_type)

    @staticmethod
    def failed(channel: str, notification_type: str) -> None:
        inc_counter("notifications_failed_total", channel=channel, type=notification_type)

    @staticmethod
    def subscription_cleared() -> None:
        inc_counter("push_subscriptions_cleared_total")

    @staticmethod
    def deduped(notification_type: str, count: int) -> None:
        if count:
            inc_counter("notifications_deduped_total", count, type=notification_type)

    @staticmethod
    def opted_out(notification_type: str) -> None:
        inc_counter("notifications_opted_out_total", type=notification_type)

    @staticmethod
    def log_write_failed() -> None:
        inc_counter("notification_log_write_failures_total")
