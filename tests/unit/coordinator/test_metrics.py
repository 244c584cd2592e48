"""Unit tests for the metrics collector."""

import threading

import pytest

from paircall.coordinator.metrics import Histogram, MetricsCollector, get_metrics_collector


class TestHistogram:
    """Test histogram bucketing and quantiles."""

    def test_observe_cumulative_buckets(self) -> None:
        """Test observations land in every bucket at or above them."""
        hist = Histogram(name="h", help="test")
        hist.observe(0.05)
        hist.observe(3.0)

        counts = {b.le: b.count for b in hist.buckets}
        assert counts[0.1] == 1
        assert counts[5.0] == 2
        assert counts[float("inf")] == 2
        assert hist.count == 2
        assert hist.sum == pytest.approx(3.05)

    def test_quantile_empty(self) -> None:
        """Test quantile of an empty histogram is None."""
        assert Histogram(name="h", help="test").quantile(0.5) is None

    def test_quantile_within_bounds(self) -> None:
        """Test quantiles fall inside the bucket holding the target rank."""
        hist = Histogram(name="h", help="test")
        for _ in range(10):
            hist.observe(1.5)

        p50 = hist.quantile(0.5)
        assert p50 is not None
        assert 1.0 <= p50 <= 2.0


class TestMetricsCollector:
    """Test the named-metric collector."""

    def test_counters_and_gauges(self) -> None:
        """Test increments and gauge updates are readable by name."""
        collector = MetricsCollector()
        collector.inc("pairs_formed_total")
        collector.inc("pairs_formed_total", 2)
        collector.record_occupancy(online=5, waiting=1, pairs=2)

        assert collector.value("pairs_formed_total") == 3
        assert collector.value("participants_online") == 5
        assert collector.value("queue_length") == 1
        assert collector.value("active_pairs") == 2

    def test_unknown_metric_raises(self) -> None:
        """Test unknown names are rejected rather than silently created."""
        collector = MetricsCollector()
        with pytest.raises(KeyError):
            collector.inc("nope_total")
        with pytest.raises(KeyError):
            collector.observe("nope_seconds", 1.0)

    def test_pairs_ended_by_reason(self) -> None:
        """Test pair endings are counted per reason and exported as labelled series."""
        collector = MetricsCollector()
        collector.inc("pairs_ended_total", labels={"reason": "end_chat"})
        collector.inc("pairs_ended_total", labels={"reason": "end_chat"})
        collector.inc("pairs_ended_total", labels={"reason": "idle"})

        assert collector.value("pairs_ended_total", labels={"reason": "end_chat"}) == 2
        assert collector.value("pairs_ended_total", labels={"reason": "disconnect"}) == 0
        assert collector.value("pairs_ended_total") == 3

        text = collector.export_prometheus()
        assert text.count("# TYPE pairs_ended_total counter") == 1
        assert 'pairs_ended_total{reason="end_chat"} 2.0' in text
        assert 'pairs_ended_total{reason="idle"} 1.0' in text
        assert collector.get_summary()['pairs_ended_total{reason="end_chat"}'] == 2

    def test_unknown_reason_raises(self) -> None:
        """Test an unregistered label value is rejected."""
        collector = MetricsCollector()
        with pytest.raises(KeyError):
            collector.inc("pairs_ended_total", labels={"reason": "bored"})
        with pytest.raises(KeyError):
            collector.value("pairs_ended_total", labels={"reason": "bored"})

    def test_prometheus_export(self) -> None:
        """Test exposition format for each metric type."""
        collector = MetricsCollector()
        collector.inc("connections_total")
        collector.observe("queue_wait_seconds", 0.3)

        text = collector.export_prometheus()

        assert "# HELP connections_total" in text
        assert "# TYPE connections_total counter" in text
        assert "connections_total 1.0" in text
        assert "# TYPE participants_online gauge" in text
        assert 'queue_wait_seconds_bucket{le="0.5"} 1' in text
        assert 'queue_wait_seconds_bucket{le="+Inf"} 1' in text
        assert "queue_wait_seconds_count 1" in text
        assert text.endswith("\n")

    def test_summary(self) -> None:
        """Test summary includes counters, gauges and wait quantiles."""
        collector = MetricsCollector()
        collector.observe("queue_wait_seconds", 2.0)

        summary = collector.get_summary()

        assert summary["sweeps_total"] == 0
        assert summary["queue_length"] == 0
        assert summary["queue_wait_p50_s"] is not None
        assert "queue_wait_p95_s" in summary

    def test_concurrent_increments(self) -> None:
        """Test increments from many threads are not lost."""
        collector = MetricsCollector()

        def worker() -> None:
            for _ in range(1000):
                collector.inc("relayed_messages_total")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert collector.value("relayed_messages_total") == 8000


def test_global_collector_singleton() -> None:
    """Test the process-wide collector is created once."""
    assert get_metrics_collector() is get_metrics_collector()
