import json
import logging

from storefront.observability.logging_config import JsonFormatter
from storefront.observability.metrics import (
    increment_counter,
    set_gauge,
    observe_latency,
    get_metrics_snapshot,
    http_traffic_totals,
    reset_metrics,
)


def test_metrics_snapshot_accumulates_counts():
    reset_metrics()
    increment_counter("test_counter")
    increment_counter("test_counter", amount=2, labels={"route": "/example"})
    set_gauge("test_gauge", 5)
    observe_latency("test_latency", 100, labels={"route": "/example"})
    observe_latency("test_latency", 50, labels={"route": "/example"})

    snapshot = get_metrics_snapshot()
    counters = snapshot["counters"]["test_counter"]
    assert len(counters) == 2

    gauges = snapshot["gauges"]["test_gauge"]
    assert gauges[0]["value"] == 5

    hist = snapshot["histograms"]["test_latency"][0]["stats"]
    assert hist["count"] == 2
    assert hist["max"] == 100
    assert hist["p95"] == 100


def test_http_traffic_totals_sum_across_labels():
    reset_metrics()
    increment_counter("http_requests_total", labels={"endpoint": "a"})
    increment_counter("http_requests_total", labels={"endpoint": "b"})
    increment_counter("http_errors_total", labels={"endpoint": "b", "status": "500"})
    observe_latency("http_request_latency_ms", 30, labels={"endpoint": "a"})
    observe_latency("http_request_latency_ms", 10, labels={"endpoint": "b"})

    totals = http_traffic_totals()
    assert totals == {"requests": 2, "errors": 1, "latency_count": 2, "latency_sum_ms": 40}


def test_request_hooks_record_traffic_and_echo_request_id(client):
    reset_metrics()
    response = client.get("/api/products", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
    client.get("/api/no-such-route")

    totals = http_traffic_totals()
    assert totals["requests"] == 2
    assert totals["errors"] == 1


def test_unknown_route_uses_envelope(client):
    response = client.get("/api/no-such-route")
    assert response.status_code == 404
    assert response.get_json() == {"success": False, "message": "Route not found"}


def test_health_endpoint(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "ok"
    assert body["checks"]["database"]["status"] == "UP"
    assert body["service"]["name"]


def test_health_endpoint_reports_degraded_database(client, monkeypatch):
    from storefront.blueprints import system

    monkeypatch.setattr(system, "check_database_health", lambda: {"status": "DOWN", "detail": "OperationalError"})
    response = client.get("/api/health")
    assert response.status_code == 503
    assert response.get_json()["status"] == "degraded"


def test_json_formatter_masks_credentials():
    record = logging.makeLogRecord(
        {"msg": "login attempt", "levelname": "INFO", "payload": {"email": "a@example.com", "password": "hunter2"}}
    )
    line = json.loads(JsonFormatter().format(record))
    assert line["message"] == "login attempt"
    assert line["request_id"] is None
    assert line["extra"]["payload"] == {"email": "a@example.com", "password": "***"}
