"""
Metrics Collection
Counters, gauges and timers for the automation engine.
"""
import time
import logging
from typing import Dict, Any, Optional
from collections import defaultdict
from threading import Lock


logger = logging.getLogger("DeskPilotMetrics")


class MetricsCollector:
    """
    Collects and aggregates engine metrics.
    Thread-safe; one collector per system instance.
    """

    def __init__(self, max_samples: int = 100):
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}
        self.timers: Dict[str, list] = defaultdict(list)
        self.max_samples = max_samples
        self._lock = Lock()

    def increment(self, metric_name: str, value: int = 1, tags: Optional[Dict] = None) -> None:
        """
        Increment a counter metric.

        Args:
            metric_name: Name of the metric
            value: Value to increment by
            tags: Optional tags for the metric
        """
        with self._lock:
            key = self._make_key(metric_name, tags)
            self.counters[key] += value

    def gauge(self, metric_name: str, value: float, tags: Optional[Dict] = None) -> None:
        """Set a gauge metric (current value)."""
        with self._lock:
            key = self._make_key(metric_name, tags)
            self.gauges[key] = value

    def timing(self, metric_name: str, duration_ms: float, tags: Optional[Dict] = None) -> None:
        """Record a timing metric, keeping the most recent samples only."""
        with self._lock:
            key = self._make_key(metric_name, tags)
            self.timers[key].append(duration_ms)

            if len(self.timers[key]) > self.max_samples:
                self.timers[key] = self.timers[key][-self.max_samples:]

    def _make_key(self, metric_name: str, tags: Optional[Dict] = None) -> str:
        if not tags:
            return metric_name

        tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
        return f"{metric_name}[{tag_str}]"

    def get_summary(self) -> Dict[str, Any]:
        """
        Get a summary of all collected metrics.

        Returns:
            Dict: counters, gauges and per-timer statistics
        """
        with self._lock:
            summary = {
                "counters": dict(self.counters),
                "gauges": dict(self.gauges),
                "timers": {}
            }

            for key, values in self.timers.items():
                if values:
                    summary["timers"][key] = {
                        "count": len(values),
                        "min": min(values),
                        "max": max(values),
                        "mean": sum(values) / len(values),
                        "p50": self._percentile(values, 50),
                        "p95": self._percentile(values, 95)
                    }

            return summary

    @staticmethod
    def _percentile(values: list, percentile: int) -> float:
        if not values:
            return 0.0

        sorted_values = sorted(values)
        index = int((percentile / 100.0) * len(sorted_values))
        index = min(index, len(sorted_values) - 1)
        return sorted_values[index]

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self.counters.clear()
            self.gauges.clear()
            self.timers.clear()
            logger.info("[METRICS] All metrics reset")


class Timer:
    """
    Context manager for timing code blocks.

    Example:
        with Timer(collector, "cycle_duration_ms"):
            ...
    """

    def __init__(self, collector: MetricsCollector, metric_name: str, tags: Optional[Dict] = None):
        self.collector = collector
        self.metric_name = metric_name
        self.tags = tags
        self.start_time = None
        self.duration_ms = None

    def __enter__(self):
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.monotonic() - self.start_time) * 1000
        self.collector.timing(self.metric_name, self.duration_ms, self.tags)


class EngineMetrics:
    """
    High-level metrics for the automation engine.
    """

    def __init__(self, collector: Optional[MetricsCollector] = None):
        self.collector = collector or MetricsCollector()

    def record_cycle(self, report) -> None:
        """Record a finished (or aborted) cycle from its CycleReport."""
        self.collector.increment("cycles_total", tags={"trigger": report.trigger})
        self.collector.timing("cycle_duration_ms", report.duration_ms)

        if report.aborted:
            self.collector.increment("cycles_aborted")
            return

        for outcome, count in report.outcomes.items():
            if count:
                self.collector.increment("executions_total", value=count, tags={"outcome": outcome})

        self.collector.increment("tickets_evaluated", value=report.tickets_evaluated)
        self.collector.gauge("tickets_deferred_last", report.tickets_deferred)
        self.collector.gauge("tickets_failed_last", report.tickets_failed)
        if report.audit_failures:
            self.collector.increment("audit_failures", value=report.audit_failures)

    def record_error(self, component: str, error_type: str) -> None:
        """Record an error."""
        self.collector.increment("errors_total")
        self.collector.increment(f"error_{component}_{error_type}")

    def get_summary(self) -> Dict[str, Any]:
        """Get metrics summary."""
        return self.collector.get_summary()
