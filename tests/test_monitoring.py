import json
import threading
from datetime import timedelta

import pytest
import requests
from flask import Flask

from storefront.config import Config
from storefront.main import init_monitoring
from storefront.monitoring import (
    Alert,
    AlertStore,
    MonitoringService,
    NotificationDispatcher,
    default_monitoring_config,
    evaluate_rules,
    load_monitoring_config,
)
from storefront.monitoring.channels import AlertChannel, SmsAlertChannel, WebhookAlertChannel
from storefront.monitoring.collectors import ApiMetricsCollector
from storefront.monitoring.config import HealthCheckTarget, SmsSettings, WebhookSettings
from storefront.monitoring.rules import compare, render_message
from storefront.observability.metrics import get_metrics_snapshot, increment_counter, observe_latency
from storefront.services.email_service import DeliveryResult


class RecordingChannel(AlertChannel):
    def __init__(self, name, enabled=True, fail=False):
        self.name = name
        self._enabled = enabled
        self.fail = fail
        self.sent = []

    @property
    def enabled(self):
        return self._enabled

    def send(self, alert):
        if self.fail:
            raise RuntimeError(f"{self.name} is down")
        self.sent.append(dict(alert))
        return DeliveryResult(True, self.name, ["ops"])


class FakeResponse:
    def __init__(self, status_code=200, elapsed_ms=12):
        self.status_code = status_code
        self.elapsed = timedelta(milliseconds=elapsed_ms)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeHttpSession:
    def __init__(self):
        self.up = True
        self.posts = []
        self.gets = []

    def get(self, url, timeout=None):
        self.gets.append((url, timeout))
        if not self.up:
            raise requests.ConnectionError("connection refused")
        return FakeResponse()

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return FakeResponse(status_code=500 if "broken" in url else 200)


class MutableMetrics:
    def __init__(self, **values):
        self.values = dict(values)

    def __call__(self):
        return dict(self.values)


@pytest.fixture
def channels():
    return {name: RecordingChannel(name) for name in ("email", "sms", "webhook")}


@pytest.fixture
def monitoring_config():
    config = default_monitoring_config()
    config.health_checks = []
    return config


@pytest.fixture
def metrics_source():
    return MutableMetrics(server_cpu_usage=10.0, api_response_time=100.0)


@pytest.fixture
def service(monitoring_config, channels, metrics_source):
    dispatcher = NotificationDispatcher(monitoring_config, channels=channels)
    return MonitoringService(
        monitoring_config,
        dispatcher=dispatcher,
        collectors=[("fake", metrics_source)],
        http_session=FakeHttpSession(),
    )


def test_default_config_resolves_threshold_references(monitoring_config):
    rule = next(r for r in monitoring_config.rules if r.id == "high_cpu_usage")
    assert monitoring_config.resolve_threshold(rule) == 90
    rule = next(r for r in monitoring_config.rules if r.id == "slow_api_response")
    assert monitoring_config.resolve_threshold(rule) == 300


def test_load_config_applies_json_overrides(tmp_path):
    path = tmp_path / "monitoring.json"
    path.write_text(json.dumps({
        "metrics": [{"name": "server_cpu_usage", "criticalThreshold": 80}],
        "rules": [
            {"id": "high_cpu_usage", "severity": "WARNING"},
            {
                "id": "queue_depth",
                "name": "Queue depth",
                "metric": "queue_depth",
                "comparison": ">",
                "threshold": 100,
                "message": "Queue depth {{value}}",
                "severity": "INFO",
                "notificationChannels": ["webhook"],
            },
        ],
        "notifications": {"sms": {"enabled": True, "numbers": ["+15550001"]}},
        "collectionInterval": 30000,
    }))

    config = load_monitoring_config(str(path))
    cpu_rule = next(r for r in config.rules if r.id == "high_cpu_usage")
    assert cpu_rule.severity == "WARNING"
    assert config.resolve_threshold(cpu_rule) == 80
    queue_rule = next(r for r in config.rules if r.id == "queue_depth")
    assert queue_rule.channels == ["webhook"]
    assert config.sms.enabled is True
    assert config.sms.numbers == ["+15550001"]
    assert config.interval_seconds == 30


@pytest.mark.parametrize("content", [
    "{not json",
    "[1, 2]",
    json.dumps({"rules": [{"id": "broken", "name": "Broken"}]}),
    json.dumps({"rules": [{"id": "high_cpu_usage", "comparison": "~"}]}),
    json.dumps({"rules": [{"id": "high_cpu_usage", "severity": "FATAL"}]}),
    json.dumps({"rules": [{"id": "high_cpu_usage", "threshold": "90%"}]}),
    json.dumps({"rules": ["cpu"]}),
    json.dumps({"metrics": [{"name": "server_cpu_usage", "criticalThreshold": "high"}]}),
    json.dumps({"notifications": {"email": True}}),
    json.dumps({"notifications": ["email"]}),
    json.dumps({"silence": "on"}),
    json.dumps({"healthChecks": "http://backend.test"}),
    json.dumps({"historySize": 0}),
])
def test_load_config_rejects_malformed_overrides(tmp_path, content):
    path = tmp_path / "monitoring.json"
    path.write_text(content)
    with pytest.raises(ValueError):
        load_monitoring_config(str(path))


def test_load_config_missing_file_raises(tmp_path):
    with pytest.raises(ValueError):
        load_monitoring_config(str(tmp_path / "missing.json"))


def test_rule_helpers():
    assert render_message("CPU at {{value}}%", 93.5) == "CPU at 93.5%"
    assert compare(5, ">=", 5) is True
    assert compare(5, "!=", 5) is False
    with pytest.raises(ValueError):
        compare(1, "~", 2)


def test_broken_rule_does_not_block_other_rules(monitoring_config):
    cpu_rule = next(r for r in monitoring_config.rules if r.id == "high_cpu_usage")
    cpu_rule.threshold = "90%"

    outcomes = evaluate_rules(monitoring_config, {"server_cpu_usage": 99, "server_memory_usage": 99})
    assert [outcome.rule.id for outcome in outcomes] == ["high_memory_usage"]
    assert outcomes[0].triggered is True


def test_evaluate_rules_skips_uncollected_metrics(monitoring_config):
    outcomes = evaluate_rules(monitoring_config, {"server_cpu_usage": 95, "api_error_rate": 1.0})
    by_rule = {outcome.rule.id: outcome for outcome in outcomes}
    assert set(by_rule) == {"high_cpu_usage", "high_api_error_rate"}
    assert by_rule["high_cpu_usage"].triggered is True
    assert by_rule["high_api_error_rate"].triggered is False


def test_alert_store_keeps_one_open_alert_per_rule_and_cleans_up():
    store = AlertStore()
    first = store.add(Alert(rule_id="r1", name="R1", severity="ERROR", message="boom"))
    assert store.find_open("r1") is first
    assert store.find_open("r1", service="backend") is None

    store.resolve(first)
    assert store.find_open("r1") is None
    assert store.list(status="resolved") == [first]

    old = store.add(Alert(rule_id="r2", name="R2", severity="WARNING", message="old"))
    old.timestamp -= timedelta(days=10)
    assert store.cleanup(7) == 1
    assert len(store) == 1


def test_dispatcher_skips_unknown_and_disabled_channels(monitoring_config):
    email = RecordingChannel("email")
    sms = RecordingChannel("sms", enabled=False)
    dispatcher = NotificationDispatcher(monitoring_config, channels={"email": email, "sms": sms})

    results = dispatcher.dispatch({"rule_id": "r", "name": "R"}, ["email", "sms", "pager"])
    assert [result.channel for result in results] == ["email"]
    assert len(email.sent) == 1
    assert sms.sent == []


def test_dispatcher_turns_channel_errors_into_failed_results(monitoring_config):
    dispatcher = NotificationDispatcher(monitoring_config, channels={"sms": RecordingChannel("sms", fail=True)})
    results = dispatcher.dispatch({"rule_id": "r"}, ["sms"])
    assert results[0].success is False
    assert "sms is down" in results[0].error

    counters = get_metrics_snapshot()["counters"]["monitoring_notifications_total"]
    assert counters[0]["labels"] == {"channel": "sms", "outcome": "failed"}


def test_dispatcher_respects_silence(service, channels):
    service.silence(600, reason="maintenance", creator="ops@example.com")
    assert service.dispatcher.dispatch({"rule_id": "r"}, ["email"]) == []
    assert channels["email"].sent == []

    service.unsilence()
    assert len(service.dispatcher.dispatch({"rule_id": "r"}, ["email"])) == 1


def test_webhook_channel_reports_partial_failures():
    session = FakeHttpSession()
    settings = WebhookSettings(urls=["https://hooks.test/ok", "https://hooks.test/broken"], headers={"X-API-Key": "k"})
    result = WebhookAlertChannel(settings, session=session).send({"name": "CPU"})
    assert result.success is False
    assert result.recipients == ["https://hooks.test/ok"]
    assert "broken" in result.error
    assert session.posts[0]["headers"] == {"X-API-Key": "k"}


def test_sms_channel_posts_to_gateway():
    session = FakeHttpSession()
    unconfigured = SmsAlertChannel(SmsSettings(enabled=True), session=session).send({"message": "x"})
    assert unconfigured.success is False

    settings = SmsSettings(enabled=True, numbers=["+15550001"], gateway_url="https://sms.test/send")
    result = SmsAlertChannel(settings, session=session).send({"severity": "ERROR", "message": "CPU high"})
    assert result.success is True
    assert session.posts[0]["json"] == {"to": ["+15550001"], "message": "[ERROR] CPU high"}


def test_api_collector_reports_deltas_between_collections():
    collector = ApiMetricsCollector()
    for _ in range(4):
        increment_counter("http_requests_total", labels={"endpoint": "a"})
    increment_counter("http_errors_total", labels={"endpoint": "a", "status": "500"})
    observe_latency("http_request_latency_ms", 100, labels={"endpoint": "a"})
    observe_latency("http_request_latency_ms", 300, labels={"endpoint": "a"})

    assert collector() == {"api_response_time": 200.0, "api_error_rate": 25.0, "api_request_count": 4}
    assert collector() == {"api_response_time": 0.0, "api_error_rate": 0.0, "api_request_count": 0}


def test_collect_all_metrics_keeps_history(service, metrics_source):
    service.collect_all_metrics()
    metrics_source.values["server_cpu_usage"] = 20.0
    metrics = service.collect_all_metrics()

    assert "timestamp" in metrics
    history = service.get_metrics_history("server_cpu_usage")["server_cpu_usage"]
    assert [point["value"] for point in history] == [10.0, 20.0]
    assert service.latest_metrics["server_cpu_usage"] == 20.0
    assert service.get_metrics_history("unknown") == {"unknown": []}


def test_failing_collector_does_not_stop_collection(monitoring_config, metrics_source):
    def broken():
        raise RuntimeError("sensor unplugged")

    service = MonitoringService(
        monitoring_config,
        dispatcher=NotificationDispatcher(monitoring_config, channels={}),
        collectors=[("broken", broken), ("fake", metrics_source)],
    )
    metrics = service.collect_all_metrics()
    assert metrics["server_cpu_usage"] == 10.0


def test_alert_opens_once_and_recovers(service, channels, metrics_source):
    metrics_source.values["server_cpu_usage"] = 95.0
    opened = service.check_alert_rules(service.collect_all_metrics())
    assert [alert.rule_id for alert in opened] == ["high_cpu_usage"]
    assert opened[0].message == "Server CPU usage is too high: 95.0%"
    assert len(channels["email"].sent) == 1
    assert len(channels["sms"].sent) == 1

    metrics_source.values["server_cpu_usage"] = 97.0
    assert service.check_alert_rules(service.collect_all_metrics()) == []
    assert len(channels["email"].sent) == 1
    assert service.alerts.find_open("high_cpu_usage").value == 97.0

    metrics_source.values["server_cpu_usage"] = 40.0
    service.check_alert_rules(service.collect_all_metrics())
    assert service.alerts.find_open("high_cpu_usage") is None
    recovery = channels["email"].sent[-1]
    assert recovery["severity"] == "INFO"
    assert recovery["message"] == "Server CPU usage is back to normal: 40.0%"

    assert service.get_status()["active_alerts"] == []
    assert [alert["status"] for alert in service.list_alerts()] == ["resolved"]


def test_service_health_alert_and_recovery(monitoring_config, channels):
    monitoring_config.health_checks = [HealthCheckTarget("backend", "http://backend.test/api/health")]
    session = FakeHttpSession()
    service = MonitoringService(
        monitoring_config,
        dispatcher=NotificationDispatcher(monitoring_config, channels=channels),
        collectors=[],
        http_session=session,
    )

    session.up = False
    results = service.check_service_health()
    assert results[0]["status"] == "down"
    service.check_service_health()
    assert len(service.alerts.active()) == 1
    assert len(channels["webhook"].sent) == 1
    assert session.gets[0] == ("http://backend.test/api/health", monitoring_config.health_timeout_seconds)

    session.up = True
    results = service.check_service_health()
    assert results[0]["status"] == "up"
    assert results[0]["response_time_ms"] == 12.0
    assert service.alerts.active() == []
    assert channels["webhook"].sent[-1]["message"] == "Backend service has recovered"


def test_start_and_stop(service):
    service.config.interval_seconds = 3600
    assert service.start() is True
    assert service.start() is False
    assert service.get_status()["is_active"] is True
    assert service.stop() is True
    assert service.stop() is False


def test_monitoring_endpoints(client, app, admin, admin_headers, customer_headers, service, metrics_source, monkeypatch):
    monkeypatch.setitem(app.extensions, "monitoring", service)

    assert client.get("/api/monitoring/status", headers=customer_headers).status_code == 403

    metrics_source.values["server_cpu_usage"] = 99.0
    data = client.post("/api/monitoring/collect", headers=admin_headers).get_json()["data"]
    assert data["metrics"]["server_cpu_usage"] == 99.0
    assert [alert["rule_id"] for alert in data["new_alerts"]] == ["high_cpu_usage"]

    status = client.get("/api/monitoring/status", headers=admin_headers).get_json()["data"]
    assert status["is_active"] is False
    assert len(status["active_alerts"]) == 1

    history = client.get("/api/monitoring/metrics?metric=server_cpu_usage", headers=admin_headers).get_json()["data"]
    assert [point["value"] for point in history["server_cpu_usage"]] == [99.0]

    alerts = client.get("/api/monitoring/alerts?severity=error", headers=admin_headers).get_json()["data"]
    assert alerts["total"] == 1

    response = client.post("/api/monitoring/silence", json={"duration_seconds": -5}, headers=admin_headers)
    assert response.status_code == 400
    silence = client.post(
        "/api/monitoring/silence", json={"duration_seconds": 300, "reason": "deploy"}, headers=admin_headers
    ).get_json()["data"]
    assert silence["enabled"] is True
    assert silence["creator"] == admin.email
    assert client.delete("/api/monitoring/silence", headers=admin_headers).get_json()["data"]["enabled"] is False

    removed = client.delete("/api/monitoring/alerts/cleanup?days=1", headers=admin_headers).get_json()["data"]
    assert removed == {"removed": 0, "days": 1}


def test_monitoring_endpoints_unavailable_without_service(client, app, admin_headers, monkeypatch):
    monkeypatch.setitem(app.extensions, "monitoring", None)
    response = client.get("/api/monitoring/status", headers=admin_headers)
    assert response.status_code == 503
    assert response.get_json()["success"] is False


def test_metric_history_is_bounded(service, metrics_source):
    service.config.history_size = 3
    for value in range(5):
        metrics_source.values["server_cpu_usage"] = float(value)
        service.collect_all_metrics()

    history = service.get_metrics_history("server_cpu_usage")["server_cpu_usage"]
    assert [point["value"] for point in history] == [2.0, 3.0, 4.0]


def test_concurrent_evaluations_open_a_single_alert(service, channels, metrics_source):
    metrics_source.values["server_cpu_usage"] = 95.0
    workers = 8
    barrier = threading.Barrier(workers)

    def evaluate():
        barrier.wait()
        service.collect_and_evaluate()

    threads = [threading.Thread(target=evaluate) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(service.alerts.list(status="triggered")) == 1
    assert len(channels["email"].sent) == 1
    assert len(service.get_metrics_history("server_cpu_usage")["server_cpu_usage"]) == workers


def test_rejected_config_leaves_monitoring_disabled(tmp_path, monkeypatch):
    path = tmp_path / "monitoring.json"
    path.write_text(json.dumps({"notifications": {"email": True}}))
    monkeypatch.setattr(Config, "MONITORING_CONFIG_PATH", str(path))

    flask_app = Flask(__name__)
    assert init_monitoring(flask_app) is None
    assert flask_app.extensions["monitoring"] is None
