"""
Monitoring configuration: metric definitions, alert rules, channel settings.

Defaults live in code and are shaped by ``Config``; a JSON document named by
``MONITORING_CONFIG_PATH`` can override any section.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from storefront.config import Config

logger = logging.getLogger(__name__)

SEVERITIES = ("INFO", "WARNING", "ERROR")
COMPARISONS = (">", ">=", "<", "<=", "==", "!=")
THRESHOLD_REFERENCES = ("warningThreshold", "criticalThreshold")
RULE_TYPES = ("metric", "service_health")

Threshold = Union[float, str, None]


@dataclass
class MetricDefinition:
    name: str
    description: str
    unit: str
    warning_threshold: Optional[float]
    critical_threshold: Optional[float]
    collection_method: str


@dataclass
class AlertRule:
    id: str
    name: str
    message: str
    recovery_message: str
    severity: str
    channels: List[str]
    metric: Optional[str] = None
    comparison: Optional[str] = None
    threshold: Threshold = None
    type: str = "metric"
    service: Optional[str] = None


@dataclass
class EmailSettings:
    enabled: bool = True
    recipients: List[str] = field(default_factory=list)
    subject_prefix: str = "[Monitoring Alert]"


@dataclass
class SmsSettings:
    enabled: bool = False
    numbers: List[str] = field(default_factory=list)
    gateway_url: str = ""
    timeout_seconds: float = 5.0


@dataclass
class WebhookSettings:
    enabled: bool = True
    urls: List[str] = field(default_factory=list)
    headers: Dict[str, str] = field(default_factory=dict)
    timeout_seconds: float = 5.0


@dataclass
class SilenceSettings:
    enabled: bool = False
    until: Optional[datetime] = None
    reason: str = ""
    creator: str = ""

    def is_active(self, now: Optional[datetime] = None) -> bool:
        if not self.enabled:
            return False
        if self.until is None:
            return True
        return (now or datetime.now(timezone.utc)) < self.until

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.is_active(),
            "until": self.until.isoformat() if self.until else None,
            "reason": self.reason,
            "creator": self.creator,
        }


@dataclass
class HealthCheckTarget:
    service: str
    url: str


@dataclass
class MonitoringConfig:
    metrics: List[MetricDefinition]
    rules: List[AlertRule]
    email: EmailSettings
    sms: SmsSettings
    webhook: WebhookSettings
    silence: SilenceSettings
    health_checks: List[HealthCheckTarget]
    interval_seconds: int = 60
    history_size: int = 1000
    health_timeout_seconds: float = 5.0

    def metric(self, name: Optional[str]) -> Optional[MetricDefinition]:
        return next((m for m in self.metrics if m.name == name), None)

    def rule_for_service(self, service: str) -> Optional[AlertRule]:
        return next((r for r in self.rules if r.type == "service_health" and r.service == service), None)

    def resolve_threshold(self, rule: AlertRule) -> Optional[float]:
        """Numeric threshold of a metric rule, following threshold references."""
        if rule.threshold in THRESHOLD_REFERENCES:
            definition = self.metric(rule.metric)
            if definition is None:
                return None
            if rule.threshold == "warningThreshold":
                return definition.warning_threshold
            return definition.critical_threshold
        if rule.threshold is None:
            return None
        return float(rule.threshold)


def _default_metrics() -> List[MetricDefinition]:
    return [
        MetricDefinition("server_cpu_usage", "Server CPU usage", "percentage", 70, 90, "system"),
        MetricDefinition("server_memory_usage", "Server memory usage", "percentage", 75, 95, "system"),
        MetricDefinition("server_disk_space", "Server disk space usage", "percentage", 80, 90, "system"),
        MetricDefinition("api_response_time", "Average API response time", "milliseconds", 300, 500, "application"),
        MetricDefinition("api_error_rate", "API error rate", "percentage", 2, 5, "application"),
        MetricDefinition("api_request_count", "API request count", "count", None, None, "application"),
        MetricDefinition("db_query_time", "Database probe query time", "milliseconds", 50, 100, "application"),
        MetricDefinition("db_connections", "Checked-out database connections", "count", 25, 40, "application"),
        MetricDefinition("frontend_page_load_time", "Frontend page load time", "milliseconds", 2000, 3000, "frontend"),
        MetricDefinition("frontend_error_count", "Frontend error count", "count", 10, 50, "frontend"),
    ]


def _default_rules() -> List[AlertRule]:
    return [
        AlertRule(
            id="high_cpu_usage",
            name="High CPU usage",
            metric="server_cpu_usage",
            comparison=">=",
            threshold="criticalThreshold",
            message="Server CPU usage is too high: {{value}}%",
            recovery_message="Server CPU usage is back to normal: {{value}}%",
            severity="ERROR",
            channels=["email", "sms"],
        ),
        AlertRule(
            id="high_memory_usage",
            name="High memory usage",
            metric="server_memory_usage",
            comparison=">=",
            threshold="criticalThreshold",
            message="Server memory usage is too high: {{value}}%",
            recovery_message="Server memory usage is back to normal: {{value}}%",
            severity="ERROR",
            channels=["email", "sms"],
        ),
        AlertRule(
            id="slow_api_response",
            name="Slow API response",
            metric="api_response_time",
            comparison=">=",
            threshold="warningThreshold",
            message="API response time is too long: {{value}}ms",
            recovery_message="API response time is back to normal: {{value}}ms",
            severity="WARNING",
            channels=["email"],
        ),
        AlertRule(
            id="high_api_error_rate",
            name="High API error rate",
            metric="api_error_rate",
            comparison=">=",
            threshold="warningThreshold",
            message="API error rate is too high: {{value}}%",
            recovery_message="API error rate is back to normal: {{value}}%",
            severity="WARNING",
            channels=["email"],
        ),
        AlertRule(
            id="backend_service_down",
            name="Backend service down",
            type="service_health",
            service="backend",
            message="Backend service is unavailable, check immediately",
            recovery_message="Backend service has recovered",
            severity="ERROR",
            channels=["email", "sms", "webhook"],
        ),
        AlertRule(
            id="frontend_page_load_slow",
            name="Slow frontend page load",
            metric="frontend_page_load_time",
            comparison=">=",
            threshold="warningThreshold",
            message="Frontend page load time is too long: {{value}}ms",
            recovery_message="Frontend page load time is back to normal: {{value}}ms",
            severity="WARNING",
            channels=["email"],
        ),
    ]


def default_monitoring_config(config: type[Config] = Config) -> MonitoringConfig:
    webhook_headers = {"Content-Type": "application/json"}
    if config.MONITORING_WEBHOOK_API_KEY:
        webhook_headers["X-API-Key"] = config.MONITORING_WEBHOOK_API_KEY

    return MonitoringConfig(
        metrics=_default_metrics(),
        rules=_default_rules(),
        email=EmailSettings(enabled=True, recipients=list(config.ADMIN_EMAILS)),
        sms=SmsSettings(
            enabled=False,
            numbers=list(config.MONITORING_SMS_NUMBERS),
            gateway_url=config.MONITORING_SMS_GATEWAY_URL,
        ),
        webhook=WebhookSettings(
            enabled=True,
            urls=list(config.MONITORING_WEBHOOK_URLS),
            headers=webhook_headers,
        ),
        silence=SilenceSettings(),
        health_checks=[HealthCheckTarget("backend", config.MONITORING_HEALTH_URL)],
        interval_seconds=config.MONITORING_INTERVAL_SECONDS,
    )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_metric(metric: MetricDefinition) -> None:
    for threshold in (metric.warning_threshold, metric.critical_threshold):
        if threshold is not None and not _is_number(threshold):
            raise ValueError(f"Metric {metric.name}: thresholds must be numbers")


def _validate_rule(rule: AlertRule) -> None:
    threshold = rule.threshold
    if not (
        threshold is None
        or threshold in THRESHOLD_REFERENCES
        or _is_number(threshold)
    ):
        raise ValueError(f"Alert rule {rule.id}: threshold must be a number or one of {', '.join(THRESHOLD_REFERENCES)}")
    if not isinstance(rule.channels, list):
        raise ValueError(f"Alert rule {rule.id}: notification channels must be a list")
    if rule.type not in RULE_TYPES:
        raise ValueError(f"Alert rule {rule.id}: unknown type {rule.type!r}")
    if rule.severity not in SEVERITIES:
        raise ValueError(f"Alert rule {rule.id}: severity must be one of {', '.join(SEVERITIES)}")
    if rule.type == "metric":
        if not rule.metric:
            raise ValueError(f"Alert rule {rule.id}: metric rules need a metric")
        if rule.comparison not in COMPARISONS:
            raise ValueError(f"Alert rule {rule.id}: unsupported comparison {rule.comparison!r}")
    elif not rule.service:
        raise ValueError(f"Alert rule {rule.id}: service_health rules need a service")


def _rule_from_dict(raw: Dict[str, Any], base: Optional[AlertRule] = None) -> AlertRule:
    mapping = {
        "id": "id",
        "name": "name",
        "metric": "metric",
        "comparison": "comparison",
        "threshold": "threshold",
        "message": "message",
        "recoveryMessage": "recovery_message",
        "recovery_message": "recovery_message",
        "severity": "severity",
        "notificationChannels": "channels",
        "channels": "channels",
        "type": "type",
        "service": "service",
    }
    values = {mapping[key]: value for key, value in raw.items() if key in mapping}
    if base is not None:
        return replace(base, **values)
    values.setdefault("type", "metric")
    values.setdefault("recovery_message", "")
    values.setdefault("channels", [])
    try:
        return AlertRule(**values)
    except TypeError as exc:
        raise ValueError(f"Alert rule {raw.get('id')!r} is incomplete: {exc}") from exc


def _objects(raw: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    """A list section whose entries must all be JSON objects."""
    items = raw.get(key, [])
    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        raise ValueError(f"'{key}' must be a list of objects")
    return items


def _object(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = raw.get(key, {})
    if not isinstance(value, dict):
        raise ValueError(f"'{key}' must be an object")
    return value


def _apply_overrides(config: MonitoringConfig, raw: Dict[str, Any]) -> MonitoringConfig:
    metrics = {m.name: m for m in config.metrics}
    for item in _objects(raw, "metrics"):
        name = item["name"]
        current = metrics.get(name) or MetricDefinition(name, "", "count", None, None, "application")
        metrics[name] = replace(
            current,
            description=item.get("description", current.description),
            unit=item.get("type", item.get("unit", current.unit)),
            warning_threshold=item.get("warningThreshold", current.warning_threshold),
            critical_threshold=item.get("criticalThreshold", current.critical_threshold),
            collection_method=item.get("collectionMethod", current.collection_method),
        )
    config.metrics = list(metrics.values())

    rules = {r.id: r for r in config.rules}
    for item in _objects(raw, "rules"):
        rule_id = item.get("id")
        if not rule_id:
            raise ValueError("Every alert rule needs an id")
        rules[rule_id] = _rule_from_dict(item, rules.get(rule_id))
    config.rules = list(rules.values())

    notifications = _object(raw, "notifications")
    if "email" in notifications:
        email = _object(notifications, "email")
        config.email = replace(
            config.email,
            enabled=email.get("enabled", config.email.enabled),
            recipients=email.get("recipients", config.email.recipients),
            subject_prefix=email.get("subjectPrefix", config.email.subject_prefix),
        )
    if "sms" in notifications:
        sms = _object(notifications, "sms")
        config.sms = replace(
            config.sms,
            enabled=sms.get("enabled", config.sms.enabled),
            numbers=sms.get("numbers", config.sms.numbers),
            gateway_url=sms.get("gatewayUrl", config.sms.gateway_url),
        )
    if "webhook" in notifications:
        webhook = _object(notifications, "webhook")
        config.webhook = replace(
            config.webhook,
            enabled=webhook.get("enabled", config.webhook.enabled),
            urls=webhook.get("urls", config.webhook.urls),
            headers={**config.webhook.headers, **webhook.get("headers", {})},
        )

    if "silence" in raw:
        silence = _object(raw, "silence")
        until = None
        if silence.get("duration"):
            # Durations are milliseconds, matching the collection interval
            until = datetime.now(timezone.utc) + timedelta(milliseconds=int(silence["duration"]))
        config.silence = SilenceSettings(
            enabled=bool(silence.get("enabled", False)),
            until=until,
            reason=silence.get("reason", ""),
            creator=silence.get("creator", ""),
        )

    if "healthChecks" in raw:
        config.health_checks = [HealthCheckTarget(item["service"], item["url"]) for item in _objects(raw, "healthChecks")]
    if "collectionInterval" in raw:
        config.interval_seconds = max(1, int(raw["collectionInterval"]) // 1000)
    if "historySize" in raw:
        config.history_size = int(raw["historySize"])
    return config


def load_monitoring_config(path: Optional[str] = None, config: type[Config] = Config) -> MonitoringConfig:
    """Build the effective monitoring configuration; malformed overrides raise ``ValueError``."""
    monitoring_config = default_monitoring_config(config)
    path = path if path is not None else config.MONITORING_CONFIG_PATH
    if path:
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ValueError(f"Cannot read monitoring config {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ValueError(f"Monitoring config {path} must be a JSON object")
        try:
            monitoring_config = _apply_overrides(monitoring_config, raw)
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"Invalid monitoring config {path}: {exc}") from exc
        logger.info("Monitoring config overrides loaded from %s", path)

    if monitoring_config.history_size < 1:
        raise ValueError("historySize must be a positive integer")
    if monitoring_config.interval_seconds < 1:
        raise ValueError("collectionInterval must be positive")
    for metric in monitoring_config.metrics:
        _validate_metric(metric)
    for rule in monitoring_config.rules:
        _validate_rule(rule)
    return monitoring_config
