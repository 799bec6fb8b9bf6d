"""Metrics registry tests."""

from __future__ import annotations

from covenant.metrics import Counter, Gauge, Histogram, MetricsRegistry


def test_metrics_collect_all_includes_expected_metrics() -> None:
    registry = MetricsRegistry()
    registry.requests_total.inc("rpc", "success")
    registry.request_duration_seconds.observe(0.01, "rpc")
    registry.gate_failures_total.inc("api_key", "noApiKey")
    registry.cache_lookups_total.inc("APIKey:", "hit")
    registry.health_status.set(1.0, "cache")

    output = registry.collect_all()
    assert "covenant_requests_total" in output
    assert 'transport="rpc",outcome="success"' in output
    assert "covenant_request_duration_seconds_bucket" in output
    assert 'covenant_gate_failures_total{gate="api_key",type="noApiKey"} 1.0' in output
    assert 'covenant_cache_lookups_total{prefix="APIKey:",result="hit"} 1.0' in output
    assert 'covenant_health_status{dependency="cache"} 1.0' in output
    assert output.endswith("\n")


def test_counter_get_and_collect_no_labels() -> None:
    counter = Counter(name="test_counter", description="Test counter")
    assert counter.get() == 0.0
    assert "test_counter 0" in counter.collect()
    counter.inc(amount=2.0)
    assert counter.get() == 2.0
    assert "test_counter 2.0" in counter.collect()


def test_counter_total_sums_labels() -> None:
    counter = Counter(name="c", description="c", labels=("outcome",))
    counter.inc("success")
    counter.inc("failure", amount=2.0)
    assert counter.total() == 3.0


def test_gauge_set_overwrites() -> None:
    gauge = Gauge(name="test_gauge", description="Test gauge", labels=("dependency",))
    gauge.set(1.0, "database")
    gauge.set(0.0, "database")
    assert gauge.get("database") == 0.0


def test_histogram_buckets_are_cumulative() -> None:
    histogram = Histogram(
        name="test_histogram",
        description="Test histogram",
        labels=("transport",),
        buckets=(0.1, 1.0),
    )
    histogram.observe(0.05, "rest")
    histogram.observe(0.5, "rest")
    output = histogram.collect()
    assert 'test_histogram_bucket{transport="rest",le="0.1"} 1' in output
    assert 'test_histogram_bucket{transport="rest",le="1.0"} 2' in output
    assert 'test_histogram_bucket{transport="rest",le="+Inf"} 2' in output
    assert 'test_histogram_count{transport="rest"} 2' in output


def test_histogram_time_records_observation() -> None:
    histogram = Histogram(name="h", description="h", labels=("transport",))
    with histogram.time("rpc"):
        pass
    assert histogram.count("rpc") == 1
