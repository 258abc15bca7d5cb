from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Dict, List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Alert:
    rule_id: str
    name: str
    severity: str
    message: str
    metric: Optional[str] = None
    value: Any = None
    threshold: Optional[float] = None
    service: Optional[str] = None
    status: str = "triggered"
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=_utcnow)
    resolved_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == "triggered"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_id": self.rule_id,
            "name": self.name,
            "severity": self.severity,
            "message": self.message,
            "metric": self.metric,
            "value": self.value,
            "threshold": self.threshold,
            "service": self.service,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


class AlertStore:
    """In-memory alert history with at most one open alert per rule and service."""

    def __init__(self, max_alerts: int = 5000) -> None:
        self._alerts: List[Alert] = []
        self._lock = Lock()
        self.max_alerts = max_alerts

    def find_open(self, rule_id: str, service: Optional[str] = None) -> Optional[Alert]:
        with self._lock:
            for alert in self._alerts:
                if alert.is_open and alert.rule_id == rule_id and alert.service == service:
                    return alert
        return None

    def open_alerts_for_service(self, service: str) -> List[Alert]:
        with self._lock:
            return [alert for alert in self._alerts if alert.is_open and alert.service == service]

    def add(self, alert: Alert) -> Alert:
        with self._lock:
            self._alerts.append(alert)
            if len(self._alerts) > self.max_alerts:
                # Drop the oldest resolved alerts first
                overflow = len(self._alerts) - self.max_alerts
                resolved = [a for a in self._alerts if not a.is_open][:overflow]
                for stale in resolved:
                    self._alerts.remove(stale)
        return alert

    def resolve(self, alert: Alert) -> Alert:
        with self._lock:
            alert.status = "resolved"
            alert.resolved_at = _utcnow()
        return alert

    def list(self, severity: Optional[str] = None, status: Optional[str] = None) -> List[Alert]:
        with self._lock:
            alerts = list(self._alerts)
        if severity:
            alerts = [a for a in alerts if a.severity == severity.upper()]
        if status:
            alerts = [a for a in alerts if a.status == status.lower()]
        return sorted(alerts, key=lambda a: a.timestamp, reverse=True)

    def active(self) -> List[Alert]:
        return self.list(status="triggered")

    def cleanup(self, days: int = 7) -> int:
        """Drop alerts older than ``days``; returns how many were removed."""
        cutoff = _utcnow() - timedelta(days=days)
        with self._lock:
            before = len(self._alerts)
            self._alerts = [alert for alert in self._alerts if alert.timestamp > cutoff]
            return before - len(self._alerts)

    def clear(self) -> None:
        with self._lock:
            self._alerts.clear()

    def __len__(self) -> int:
        return len(self._alerts)
