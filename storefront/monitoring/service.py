"""
Poll-evaluate-notify loop.

Every cycle collects metrics, evaluates the alert rules against them and
probes the configured health URLs. Alerts open once per rule and resolve,
with a recovery notification, as soon as their condition clears.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple

import requests
from sqlalchemy.engine import Engine

from storefront.monitoring.alerts import Alert, AlertStore
from storefront.monitoring.channels import NotificationDispatcher
from storefront.monitoring.collectors import ApiMetricsCollector, DatabaseMetricsCollector, collect_system_metrics
from storefront.monitoring.config import AlertRule, MonitoringConfig, SilenceSettings
from storefront.monitoring.rules import evaluate_rules, render_message
from storefront.observability import increment_counter, record_event, set_gauge

Collector = Callable[[], Dict[str, Any]]


class MonitoringService:
    def __init__(
        self,
        config: MonitoringConfig,
        engine: Optional[Engine] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        collectors: Optional[List[Tuple[str, Collector]]] = None,
        http_session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.dispatcher = dispatcher or NotificationDispatcher(config)
        self.alerts = AlertStore()
        self.http = http_session or requests.Session()
        if collectors is None:
            collectors = [("system", collect_system_metrics), ("api", ApiMetricsCollector())]
            if engine is not None:
                collectors.append(("database", DatabaseMetricsCollector(engine)))
        self.collectors = collectors

        self.metrics_history: Dict[str, Deque[Dict[str, Any]]] = {}
        self.latest_metrics: Dict[str, Any] = {}
        self.last_run: Optional[datetime] = None
        self._history_lock = threading.Lock()
        # Serializes collect-and-evaluate between the loop thread and HTTP callers
        self._cycle_lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------
    def collect_all_metrics(self) -> Dict[str, Any]:
        with self._cycle_lock:
            return self._collect()

    def _collect(self) -> Dict[str, Any]:
        metrics: Dict[str, Any] = {}
        for name, collector in self.collectors:
            try:
                metrics.update(collector())
            except Exception as exc:
                increment_counter("monitoring_collector_failures_total", labels={"collector": name})
                self.logger.error("Metric collector %s failed: %s", name, exc)

        timestamp = datetime.now(timezone.utc)
        with self._history_lock:
            for metric_name, value in metrics.items():
                history = self.metrics_history.setdefault(
                    metric_name, deque(maxlen=self.config.history_size)
                )
                history.append({"timestamp": timestamp.isoformat(), "value": value})
                if isinstance(value, (int, float)):
                    set_gauge(f"monitoring_{metric_name}", float(value))
            self.latest_metrics = dict(metrics)
            self.last_run = timestamp

        metrics["timestamp"] = timestamp.isoformat()
        self.logger.debug("Collected %d metrics", len(metrics) - 1)
        return metrics

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def check_alert_rules(self, metrics: Mapping[str, Any]) -> List[Alert]:
        """Open alerts for newly triggered rules and resolve cleared ones; returns the new alerts."""
        with self._cycle_lock:
            return self._evaluate(metrics)

    def _evaluate(self, metrics: Mapping[str, Any]) -> List[Alert]:
        opened: List[Alert] = []
        for outcome in evaluate_rules(self.config, metrics):
            rule = outcome.rule
            existing = self.alerts.find_open(rule.id)
            if outcome.triggered:
                if existing is not None:
                    existing.value = outcome.value
                    continue
                alert = self.alerts.add(
                    Alert(
                        rule_id=rule.id,
                        name=rule.name,
                        severity=rule.severity,
                        message=render_message(rule.message, outcome.value),
                        metric=rule.metric,
                        value=outcome.value,
                        threshold=outcome.threshold,
                    )
                )
                self._announce(alert, rule)
                opened.append(alert)
            elif existing is not None:
                self._recover(existing, rule, outcome.value)
        return opened

    def check_service_health(self) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        for target in self.config.health_checks:
            checked_at = datetime.now(timezone.utc).isoformat()
            try:
                response = self.http.get(target.url, timeout=self.config.health_timeout_seconds)
                response.raise_for_status()
            except requests.RequestException as exc:
                self.logger.error("Service %s health check failed: %s", target.service, exc)
                results.append({"service": target.service, "status": "down", "error": str(exc), "timestamp": checked_at})
                self._service_down(target.service)
                continue

            results.append(
                {
                    "service": target.service,
                    "status": "up",
                    "response_time_ms": round(response.elapsed.total_seconds() * 1000, 2),
                    "timestamp": checked_at,
                }
            )
            with self._cycle_lock:
                for alert in self.alerts.open_alerts_for_service(target.service):
                    self._recover(alert, self.config.rule_for_service(target.service), "OK")
        return results

    def _service_down(self, service: str) -> None:
        rule = self.config.rule_for_service(service)
        if rule is None:
            return
        with self._cycle_lock:
            if self.alerts.find_open(rule.id, service=service) is not None:
                return
            alert = self.alerts.add(
                Alert(
                    rule_id=rule.id,
                    name=rule.name,
                    severity=rule.severity,
                    message=rule.message,
                    service=service,
                )
            )
            self._announce(alert, rule)

    def _announce(self, alert: Alert, rule: AlertRule) -> None:
        log = self.logger.error if alert.severity == "ERROR" else self.logger.warning
        log("%s: %s", alert.severity, alert.message)
        increment_counter("monitoring_alerts_total", labels={"rule": rule.id, "severity": rule.severity})
        record_event("monitoring_alert_triggered", alert.to_dict())
        self.dispatcher.dispatch(alert.to_dict(), rule.channels)

    def _recover(self, alert: Alert, rule: Optional[AlertRule], value: Any) -> None:
        self.alerts.resolve(alert)
        self.logger.info("Alert %s resolved", alert.rule_id)
        record_event("monitoring_alert_resolved", {"rule_id": alert.rule_id, "alert_id": alert.id})
        if rule is None or not rule.recovery_message:
            return
        recovery = alert.to_dict()
        recovery.update(severity="INFO", message=render_message(rule.recovery_message, value))
        self.dispatcher.dispatch(recovery, rule.channels)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def collect_and_evaluate(self) -> Tuple[Dict[str, Any], List[Alert]]:
        """One collection plus rule evaluation, atomic with respect to other callers."""
        with self._cycle_lock:
            metrics = self._collect()
            return metrics, self._evaluate(metrics)

    def run_cycle(self) -> None:
        try:
            self.collect_and_evaluate()
            self.check_service_health()
        except Exception:
            self.logger.exception("Monitoring cycle failed")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        if self.is_running:
            self.logger.warning("Monitoring service is already running")
            return False
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="monitoring", daemon=True)
        self._thread.start()
        self.logger.info("Monitoring started, running every %s seconds", self.config.interval_seconds)
        return True

    def stop(self, timeout: Optional[float] = 5.0) -> bool:
        if not self.is_running:
            self.logger.warning("Monitoring service is not running")
            return False
        self._stop_event.set()
        self._thread.join(timeout)
        self._thread = None
        self.logger.info("Monitoring stopped")
        return True

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_cycle()
            self._stop_event.wait(self.config.interval_seconds)

    # ------------------------------------------------------------------
    # Queries and maintenance
    # ------------------------------------------------------------------
    def get_status(self) -> Dict[str, Any]:
        active = self.alerts.active()
        return {
            "is_active": self.is_running,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "interval_seconds": self.config.interval_seconds,
            "latest_metrics": dict(self.latest_metrics),
            "active_alerts": [alert.to_dict() for alert in active],
            "alert_count": len(self.alerts),
            "silence": self.config.silence.to_dict(),
        }

    def get_metrics_history(self, metric: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        with self._history_lock:
            if metric:
                return {metric: list(self.metrics_history.get(metric, []))}
            return {name: list(points) for name, points in self.metrics_history.items()}

    def list_alerts(self, severity: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return [alert.to_dict() for alert in self.alerts.list(severity=severity, status=status)]

    def cleanup_old_alerts(self, days: int = 7) -> int:
        removed = self.alerts.cleanup(days)
        self.logger.info("Removed %d alert(s) older than %d day(s)", removed, days)
        return removed

    def silence(self, duration_seconds: Optional[int], reason: str = "", creator: str = "") -> SilenceSettings:
        until = datetime.now(timezone.utc) + timedelta(seconds=duration_seconds) if duration_seconds else None
        self.config.silence = SilenceSettings(enabled=True, until=until, reason=reason, creator=creator)
        self.logger.warning("Alert notifications silenced until %s (%s)", until or "further notice", reason)
        return self.config.silence

    def unsilence(self) -> SilenceSettings:
        self.config.silence = SilenceSettings()
        self.logger.info("Alert notifications resumed")
        return self.config.silence
