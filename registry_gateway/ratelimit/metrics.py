"""
Metrics Collection for Admission Control

Tracks counters, gauges and histograms for grants, throttled callers and
registry submissions. In-memory implementation with thread-safe updates.
"""

import logging
import threading
from typing import Dict, Any, Optional
from collections import defaultdict
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

MAX_HISTOGRAM_SAMPLES = 1000


class MetricsCollector:
    """
    Thread-safe metrics collector.

    Tracks:
    - Grants and throttled admissions per limiter
    - Abandoned waits
    - Registry submissions, failures and latency
    - Free slots in the current window
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.counters = defaultdict(int)
        self.gauges = {}
        self.histograms = defaultdict(list)
        self.start_time = datetime.now(timezone.utc)

    def increment_counter(self, name: str, labels: Optional[Dict[str, str]] = None, value: int = 1):
        """
        Increment a counter metric.

        Args:
            name: Metric name
            labels: Optional labels dict
            value: Increment value (default: 1)
        """
        key = self._make_key(name, labels)

        with self.lock:
            self.counters[key] += value

    def set_gauge(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 0):
        """Set a gauge metric value."""
        key = self._make_key(name, labels)

        with self.lock:
            self.gauges[key] = value

    def observe_histogram(self, name: str, labels: Optional[Dict[str, str]] = None, value: float = 0):
        """Add an observation to a histogram, keeping the most recent samples only."""
        key = self._make_key(name, labels)

        with self.lock:
            samples = self.histograms[key]
            samples.append(value)
            if len(samples) > MAX_HISTOGRAM_SAMPLES:
                del samples[:-MAX_HISTOGRAM_SAMPLES]

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        key = self._make_key(name, labels)

        with self.lock:
            return self.counters.get(key, 0)

    def get_gauge(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        key = self._make_key(name, labels)

        with self.lock:
            return self.gauges.get(key)

    def get_histogram_stats(self, name: str, labels: Optional[Dict[str, str]] = None) -> Dict[str, float]:
        """Get histogram statistics (min, max, avg, p50, p95, p99)."""
        key = self._make_key(name, labels)

        with self.lock:
            values = list(self.histograms.get(key, []))

        return self._summarize(values)

    def get_all_metrics(self) -> Dict[str, Any]:
        """Get all metrics as a dict."""
        with self.lock:
            counters = dict(self.counters)
            gauges = dict(self.gauges)
            histograms = {key: list(values) for key, values in self.histograms.items()}
            start_time = self.start_time

        return {
            "counters": counters,
            "gauges": gauges,
            "histograms": {key: self._summarize(values) for key, values in histograms.items()},
            "metadata": {
                "start_time": start_time.isoformat(),
                "uptime_seconds": (datetime.now(timezone.utc) - start_time).total_seconds(),
            },
        }

    def reset_metrics(self):
        """Reset all metrics (useful for testing)."""
        with self.lock:
            self.counters.clear()
            self.gauges.clear()
            self.histograms.clear()
            self.start_time = datetime.now(timezone.utc)

    @staticmethod
    def _summarize(values) -> Dict[str, float]:
        if not values:
            return {}

        sorted_values = sorted(values)
        count = len(sorted_values)

        return {
            "count": count,
            "min": sorted_values[0],
            "max": sorted_values[-1],
            "avg": sum(sorted_values) / count,
            "p50": sorted_values[int(count * 0.5)],
            "p95": sorted_values[int(count * 0.95)],
            "p99": sorted_values[int(count * 0.99)],
        }

    @staticmethod
    def _make_key(name: str, labels: Optional[Dict[str, str]] = None) -> str:
        """Create a unique key from metric name and labels."""
        if not labels:
            return name

        # Sort labels for consistent keys
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}:{label_str}"


# Global metrics collector
_metrics_collector: Optional[MetricsCollector] = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """
    Get the global metrics collector instance.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector

    with _collector_lock:
        if _metrics_collector is None:
            _metrics_collector = MetricsCollector()

    return _metrics_collector


# Convenience functions for common metrics

def record_grant(limiter: str):
    """Record an admitted request."""
    get_metrics_collector().increment_counter("admission_grants_total", {"limiter": limiter})


def record_throttled(limiter: str):
    """Record a caller that had to wait for capacity."""
    get_metrics_collector().increment_counter("admission_throttled_total", {"limiter": limiter})


def record_wait_abandoned(limiter: str):
    """Record a wait that timed out or was cancelled without a grant."""
    get_metrics_collector().increment_counter("admission_wait_abandoned_total", {"limiter": limiter})


def update_available_slots(limiter: str, available: int):
    get_metrics_collector().set_gauge("admission_available_slots", {"limiter": limiter}, available)


def record_submission(endpoint: str):
    """Record a successful registry submission."""
    get_metrics_collector().increment_counter("registry_submissions_total", {"endpoint": endpoint})


def record_submission_failed(endpoint: str, status_code: Optional[int] = None):
    """Record a failed registry submission."""
    labels = {"endpoint": endpoint}
    if status_code is not None:
        labels["status_code"] = str(status_code)

    get_metrics_collector().increment_counter("registry_submission_failures_total", labels)


def record_submission_latency(endpoint: str, latency_ms: float):
    get_metrics_collector().observe_histogram("registry_submission_latency_ms", {"endpoint": endpoint}, latency_ms)


def get_metrics_summary() -> Dict[str, Any]:
    """
    Get a summary of all metrics.

    Returns:
        Dict with metrics summary
    """
    return get_metrics_collector().get_all_metrics()
