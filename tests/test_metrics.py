"""Tests for metrics collection."""

from gh_bridge.metrics import MetricsCollector


def test_counter_increment():
    m = MetricsCollector()
    m.inc("webhooks_received_total")
    m.inc("webhooks_received_total")
    assert m.get("webhooks_received_total") == 2


def test_labelled_counters():
    m = MetricsCollector()
    m.inc("channel_posts_total", kind="push")
    m.inc("channel_posts_total", 3, kind="issues")
    assert m.get("channel_posts_total", kind="push") == 1
    assert m.get("channel_posts_total", kind="issues") == 3
    assert m.get("channel_posts_total", kind="star") == 0
    assert m.get("channel_posts_total") == 4


def test_gauge_set():
    m = MetricsCollector()
    m.set_gauge("store_reachable", 1)
    assert m.get("store_reachable") == 1


def test_prometheus_format():
    m = MetricsCollector()
    m.inc("webhooks_received_total", 5)
    m.inc("webhooks_rejected_total", reason="unauthorized")
    m.set_gauge("store_reachable", 1)
    text = m.to_prometheus()
    assert "# TYPE bridge_webhooks_received_total counter" in text
    assert "bridge_webhooks_received_total 5" in text
    assert 'bridge_webhooks_rejected_total{reason="unauthorized"} 1' in text
    assert "bridge_store_reachable 1" in text
    assert "bridge_uptime_seconds" in text


def test_to_dict():
    m = MetricsCollector()
    m.inc("direct_messages_total", type="custom_git_mention")
    data = m.to_dict()
    assert data["counters"] == {'bridge_direct_messages_total{type="custom_git_mention"}': 1}
    assert data["uptime_seconds"] >= 0
