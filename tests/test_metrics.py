"""Tests for metrics collection."""

from jira_relay.metrics import MetricsCollector


def test_counter_increment():
    m = MetricsCollector()
    m.inc("store_conflicts_total")
    m.inc("store_conflicts_total")
    assert m.get("store_conflicts_total") == 2


def test_gauge_set():
    m = MetricsCollector()
    m.set_gauge("subscriptions_active", 3)
    assert m.get("subscriptions_active") == 3


def test_missing_metric_reads_zero():
    assert MetricsCollector().get("never_touched") == 0


def test_labelled_counters_sum_by_label_subset():
    m = MetricsCollector()
    m.inc("errors_total", stage="decode", status=500)
    m.inc("errors_total", stage="write", status=409)
    m.inc("errors_total", stage="write", status=503)
    m.inc("errors_total", stage="write", status=503)

    assert m.get("errors_total") == 4
    assert m.get("errors_total", stage="write") == 3
    assert m.get("errors_total", stage="write", status=503) == 2
    assert m.get("errors_total", status="500") == 1
    assert m.get("errors_total", stage="lookup") == 0


def test_prometheus_format():
    m = MetricsCollector()
    m.inc("store_conflicts_total", 5)
    m.inc("webhooks_received_total", event="jira:issue_created")
    m.inc("webhooks_received_total", event="jira:issue_updated")
    m.set_gauge("subscriptions_active", 2)
    text = m.to_prometheus()
    assert "# TYPE jira_relay_store_conflicts_total counter" in text
    assert "# HELP jira_relay_store_conflicts_total " in text
    assert "jira_relay_store_conflicts_total 5" in text
    assert 'jira_relay_webhooks_received_total{event="jira:issue_created"} 1' in text
    assert 'jira_relay_webhooks_received_total{event="jira:issue_updated"} 1' in text
    assert text.count("# TYPE jira_relay_webhooks_received_total counter") == 1
    assert "# TYPE jira_relay_subscriptions_active gauge" in text
    assert "jira_relay_subscriptions_active 2" in text
    assert "jira_relay_uptime_seconds" in text


def test_label_values_are_escaped():
    m = MetricsCollector()
    m.inc("errors_total", stage='say "hi"')
    assert 'jira_relay_errors_total{stage="say \\"hi\\""} 1' in m.to_prometheus()
