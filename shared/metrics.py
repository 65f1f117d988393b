"""
Shared metrics configuration for the CampusNest listings cache guard.
"""

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry
from typing import Dict, Any, Optional
import threading


class MetricsCollector:
    """Centralized metrics collector for the cache guard.

    Metrics are only exported when a registry is supplied; without one the
    collectors stay unregistered so several instances can coexist in tests.
    Local tallies mirror the counters for ``snapshot()``.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._tallies: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up cache guard metrics."""
        self._metrics["filter_checks_total"] = Counter(
            "filter_checks_total",
            "Membership filter checks",
            ["result"],
            registry=self.registry
        )

        self._metrics["filter_keys"] = Gauge(
            "filter_keys",
            "Keys inserted into the membership filter",
            registry=self.registry
        )

        self._metrics["cache_requests_total"] = Counter(
            "cache_requests_total",
            "Cache lookups",
            ["cache", "result"],
            registry=self.registry
        )

        self._metrics["cache_writes_total"] = Counter(
            "cache_writes_total",
            "Cache writes",
            ["cache"],
            registry=self.registry
        )

        self._metrics["cache_errors_total"] = Counter(
            "cache_errors_total",
            "Cache backend errors",
            ["operation"],
            registry=self.registry
        )

        self._metrics["lock_acquisitions_total"] = Counter(
            "lock_acquisitions_total",
            "Stampede guard lock attempts",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["backing_store_fetches_total"] = Counter(
            "backing_store_fetches_total",
            "Backing store fetches",
            ["path"],
            registry=self.registry
        )

        self._metrics["guarded_fetch_duration_seconds"] = Histogram(
            "guarded_fetch_duration_seconds",
            "Duration of guarded lookups on cache miss",
            registry=self.registry
        )

    def _tally(self, name: str) -> None:
        with self._lock:
            self._tallies[name] = self._tallies.get(name, 0) + 1

    def increment_filter_block(self):
        self._metrics["filter_checks_total"].labels(result="block").inc()
        self._tally("filter_block")

    def increment_filter_pass(self):
        self._metrics["filter_checks_total"].labels(result="pass").inc()
        self._tally("filter_pass")

    def increment_cache_hit(self, cache: str = "entity"):
        self._metrics["cache_requests_total"].labels(cache=cache, result="hit").inc()
        self._tally(f"{cache}_cache_hit")

    def increment_cache_miss(self, cache: str = "entity"):
        self._metrics["cache_requests_total"].labels(cache=cache, result="miss").inc()
        self._tally(f"{cache}_cache_miss")

    def increment_cache_write(self, cache: str = "entity"):
        self._metrics["cache_writes_total"].labels(cache=cache).inc()
        self._tally(f"{cache}_cache_write")

    def increment_cache_error(self, operation: str):
        self._metrics["cache_errors_total"].labels(operation=operation).inc()
        self._tally("cache_error")

    def record_lock_outcome(self, outcome: str):
        """Record a lock attempt: acquired, timeout or unavailable."""
        self._metrics["lock_acquisitions_total"].labels(outcome=outcome).inc()
        self._tally(f"lock_{outcome}")

    def record_store_fetch(self, path: str):
        """Record a backing store fetch: guarded, fallback or direct."""
        self._metrics["backing_store_fetches_total"].labels(path=path).inc()
        self._tally(f"store_fetch_{path}")

    def set_filter_keys(self, count: int):
        self._metrics["filter_keys"].set(count)

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def snapshot(self) -> Dict[str, Any]:
        """Return local counter tallies with the entity cache hit ratio."""
        with self._lock:
            tallies = dict(self._tallies)
        hits = tallies.get("entity_cache_hit", 0)
        misses = tallies.get("entity_cache_miss", 0)
        total = hits + misses
        tallies["hit_ratio"] = hits / total if total else 0.0
        return tallies


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
