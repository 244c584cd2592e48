"""Prometheus-compatible metrics for coordinator observability.

Tracks pairing throughput, queue depth, relay traffic and sweeper
reclamation in memory and renders them in the Prometheus text exposition
format for the /metrics endpoint.

Architecture:
    MatchmakingService → MetricsCollector → /metrics, /metrics/summary
"""

import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Reasons passed to MatchmakingService.dissolve_pair
PAIR_END_REASONS = (
    "disconnect",
    "find_match",
    "end_chat",
    "dead_connection",
    "dead_partner",
    "idle",
)


@dataclass
class HistogramBucket:
    """Histogram bucket (cumulative count of observations <= le)."""

    le: float
    count: int = 0


def _wait_buckets() -> list[HistogramBucket]:
    # Queue waits range from instant matches to the eviction limit
    bounds = [0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0]
    return [HistogramBucket(le=b) for b in bounds] + [HistogramBucket(le=float("inf"))]


@dataclass
class Histogram:
    """Histogram metric with fixed bucket boundaries."""

    name: str
    help: str
    buckets: list[HistogramBucket] = field(default_factory=_wait_buckets)
    sum: float = 0.0
    count: int = 0

    def observe(self, value: float) -> None:
        """Record an observation.

        Args:
            value: Observed value in seconds
        """
        self.sum += value
        self.count += 1

        for bucket in self.buckets:
            if value <= bucket.le:
                bucket.count += 1

    def quantile(self, q: float) -> float | None:
        """Approximate quantile by linear interpolation inside the target bucket.

        Args:
            q: Quantile to calculate (0.0 to 1.0)

        Returns:
            Approximate quantile value, or None if no data
        """
        if self.count == 0:
            return None

        target_rank = q * self.count
        prev_count = 0
        prev_le = 0.0
        for bucket in self.buckets:
            if bucket.count >= target_rank:
                if bucket.le == float("inf"):
                    return prev_le
                in_bucket = bucket.count - prev_count
                if in_bucket == 0:
                    return bucket.le
                fraction = (target_rank - prev_count) / in_bucket
                return prev_le + fraction * (bucket.le - prev_le)
            prev_count = bucket.count
            prev_le = bucket.le

        return prev_le


@dataclass
class Counter:
    """Counter metric (monotonically increasing)."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        """Increment counter."""
        self.value += amount


@dataclass
class Gauge:
    """Gauge metric (can go up or down)."""

    name: str
    help: str
    value: float = 0.0

    def set(self, value: float) -> None:
        """Set gauge value."""
        self.value = value


def _series_key(name: str, labels: dict[str, str] | None = None) -> str:
    """Series identity in exposition form, e.g. pairs_ended_total{reason="idle"}."""
    if not labels:
        return name
    label_pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
    return name + "{" + ",".join(label_pairs) + "}"


class MetricsCollector:
    """Thread-safe metrics collector with Prometheus-compatible output.

    Thread-safety: All public methods are thread-safe via mutex.
    """

    def __init__(self) -> None:
        """Initialize metrics collector."""
        self._lock = threading.RLock()

        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}

        self._init_connection_metrics()
        self._init_pairing_metrics()
        self._init_relay_metrics()
        self._init_sweeper_metrics()

        logger.debug("MetricsCollector initialized")

    def _init_connection_metrics(self) -> None:
        self._counters["connections_total"] = Counter(
            name="connections_total",
            help="Total participant connections accepted",
        )
        self._gauges["participants_online"] = Gauge(
            name="participants_online",
            help="Participants currently connected",
        )

    def _init_pairing_metrics(self) -> None:
        self._counters["match_requests_total"] = Counter(
            name="match_requests_total",
            help="Total find_match requests",
        )
        self._counters["pairs_formed_total"] = Counter(
            name="pairs_formed_total",
            help="Total pairs formed by the matcher",
        )
        for reason in PAIR_END_REASONS:
            labels = {"reason": reason}
            self._counters[_series_key("pairs_ended_total", labels)] = Counter(
                name="pairs_ended_total",
                help="Total pairs dissolved, by reason",
                labels=labels,
            )
        self._gauges["queue_length"] = Gauge(
            name="queue_length",
            help="Participants waiting for a match",
        )
        self._gauges["active_pairs"] = Gauge(
            name="active_pairs",
            help="Pairs currently active",
        )
        self._histograms["queue_wait_seconds"] = Histogram(
            name="queue_wait_seconds",
            help="Time from enqueue to match in seconds",
        )

    def _init_relay_metrics(self) -> None:
        self._counters["relayed_messages_total"] = Counter(
            name="relayed_messages_total",
            help="Handshake messages forwarded to a partner",
        )
        self._counters["relay_dropped_total"] = Counter(
            name="relay_dropped_total",
            help="Handshake messages dropped because the sender had no partner",
        )

    def _init_sweeper_metrics(self) -> None:
        self._counters["sweeps_total"] = Counter(
            name="sweeps_total",
            help="Completed sweeper runs",
        )
        self._counters["queue_evictions_total"] = Counter(
            name="queue_evictions_total",
            help="Waiting entries evicted for exceeding the maximum wait",
        )
        self._counters["stale_pairs_total"] = Counter(
            name="stale_pairs_total",
            help="Pairs reclaimed by the sweeper",
        )
        self._counters["dead_entries_total"] = Counter(
            name="dead_entries_total",
            help="Queue entries and connections with dead transports reclaimed",
        )

    def inc(self, name: str, amount: float = 1.0, labels: dict[str, str] | None = None) -> None:
        """Increment a counter by name and optional label set.

        Raises:
            KeyError: If the counter or label combination is unknown
        """
        with self._lock:
            self._counters[_series_key(name, labels)].inc(amount)

    def observe(self, name: str, value: float) -> None:
        """Record a histogram observation by name.

        Raises:
            KeyError: If the histogram is unknown
        """
        with self._lock:
            self._histograms[name].observe(value)

    def record_occupancy(self, online: int, waiting: int, pairs: int) -> None:
        """Update the three occupancy gauges at once."""
        with self._lock:
            self._gauges["participants_online"].set(online)
            self._gauges["queue_length"].set(waiting)
            self._gauges["active_pairs"].set(pairs)

    def value(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Current value of a counter or gauge (test and summary helper).

        A labelled counter family read without labels sums its series.
        """
        with self._lock:
            key = _series_key(name, labels)
            if key in self._counters:
                return self._counters[key].value
            if name in self._gauges and not labels:
                return self._gauges[name].value
            series = [c.value for c in self._counters.values() if c.name == name]
            if labels or not series:
                raise KeyError(key)
            return sum(series)

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus exposition format.

        Format:
            # HELP metric_name Description
            # TYPE metric_name type
            metric_name{label="value"} value
        """
        with self._lock:
            lines: list[str] = []

            described: set[str] = set()
            for counter in self._counters.values():
                # Series of one family share a single HELP/TYPE header
                if counter.name not in described:
                    described.add(counter.name)
                    lines.append(f"# HELP {counter.name} {counter.help}")
                    lines.append(f"# TYPE {counter.name} counter")
                lines.append(f"{_series_key(counter.name, counter.labels)} {counter.value}")

            for gauge in self._gauges.values():
                lines.append(f"# HELP {gauge.name} {gauge.help}")
                lines.append(f"# TYPE {gauge.name} gauge")
                lines.append(f"{gauge.name} {gauge.value}")

            for histogram in self._histograms.values():
                lines.append(f"# HELP {histogram.name} {histogram.help}")
                lines.append(f"# TYPE {histogram.name} histogram")

                for bucket in histogram.buckets:
                    le = "+Inf" if bucket.le == float("inf") else str(bucket.le)
                    lines.append(f'{histogram.name}_bucket{{le="{le}"}} {bucket.count}')

                lines.append(f"{histogram.name}_sum {histogram.sum}")
                lines.append(f"{histogram.name}_count {histogram.count}")

            return "\n".join(lines) + "\n"

    def get_summary(self) -> dict[str, float | None]:
        """Key metrics for dashboards and debugging."""
        with self._lock:
            wait = self._histograms["queue_wait_seconds"]
            summary: dict[str, float | None] = {
                key: counter.value for key, counter in self._counters.items()
            }
            summary.update({name: gauge.value for name, gauge in self._gauges.items()})
            summary["queue_wait_p50_s"] = wait.quantile(0.50)
            summary["queue_wait_p95_s"] = wait.quantile(0.95)
            return summary


# Process-wide collector used by the server entry point
_metrics_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get the process-wide metrics collector, creating it on first use.

    Thread-safety: Safe for concurrent access.
    """
    global _metrics_collector

    if _metrics_collector is None:
        with _collector_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()

    return _metrics_collector
