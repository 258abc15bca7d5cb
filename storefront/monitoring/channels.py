"""Alert delivery channels and the dispatcher that fans alerts out to them."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

import requests

from storefront.monitoring.config import EmailSettings, MonitoringConfig, SmsSettings, WebhookSettings
from storefront.observability import increment_counter
from storefront.services.email_service import DeliveryResult, EmailService

logger = logging.getLogger(__name__)


def format_alert_text(alert: Mapping[str, Any]) -> str:
    return (
        f"Name: {alert.get('name')}\n"
        f"Severity: {alert.get('severity')}\n"
        f"Message: {alert.get('message')}\n"
        f"Time: {alert.get('timestamp')}"
    )


class AlertChannel(ABC):
    name = "base"

    @property
    @abstractmethod
    def enabled(self) -> bool:
        ...

    @abstractmethod
    def send(self, alert: Mapping[str, Any]) -> DeliveryResult:
        ...


class EmailAlertChannel(AlertChannel):
    name = "email"

    def __init__(self, settings: EmailSettings, email_service: Optional[EmailService] = None) -> None:
        self.settings = settings
        self.email_service = email_service or EmailService()

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def send(self, alert: Mapping[str, Any]) -> DeliveryResult:
        subject = f"{self.settings.subject_prefix} {alert.get('name')}"
        return self.email_service.send(self.settings.recipients, subject, format_alert_text(alert))


class SmsAlertChannel(AlertChannel):
    """Posts alerts to an HTTP SMS gateway as ``{"to": [...], "message": ...}``."""

    name = "sms"

    def __init__(self, settings: SmsSettings, session: Optional[requests.Session] = None) -> None:
        self.settings = settings
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def send(self, alert: Mapping[str, Any]) -> DeliveryResult:
        if not self.settings.gateway_url or not self.settings.numbers:
            return DeliveryResult(False, self.name, error="SMS gateway or numbers not configured")
        text = f"[{alert.get('severity')}] {alert.get('message')}"
        response = self.session.post(
            self.settings.gateway_url,
            json={"to": self.settings.numbers, "message": text},
            timeout=self.settings.timeout_seconds,
        )
        response.raise_for_status()
        return DeliveryResult(True, self.name, list(self.settings.numbers), delivered_at=datetime.now(timezone.utc))


class WebhookAlertChannel(AlertChannel):
    name = "webhook"

    def __init__(self, settings: WebhookSettings, session: Optional[requests.Session] = None) -> None:
        self.settings = settings
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def send(self, alert: Mapping[str, Any]) -> DeliveryResult:
        delivered: List[str] = []
        failures: List[str] = []
        for url in self.settings.urls:
            try:
                response = self.session.post(
                    url,
                    json=dict(alert),
                    headers=self.settings.headers,
                    timeout=self.settings.timeout_seconds,
                )
                response.raise_for_status()
                delivered.append(url)
            except requests.RequestException as exc:
                logger.error("Webhook delivery to %s failed: %s", url, exc)
                failures.append(f"{url}: {exc}")
        if not self.settings.urls:
            return DeliveryResult(False, self.name, error="No webhook URLs configured")
        return DeliveryResult(
            not failures,
            self.name,
            delivered,
            delivered_at=datetime.now(timezone.utc) if delivered else None,
            error="; ".join(failures) or None,
        )


class NotificationDispatcher:
    """Fans an alert out to its channels. Delivery problems are logged, never raised."""

    def __init__(self, config: MonitoringConfig, channels: Optional[Dict[str, AlertChannel]] = None) -> None:
        self.config = config
        self.channels = channels if channels is not None else {
            "email": EmailAlertChannel(config.email),
            "sms": SmsAlertChannel(config.sms),
            "webhook": WebhookAlertChannel(config.webhook),
        }

    def dispatch(self, alert: Mapping[str, Any], channel_names: Iterable[str]) -> List[DeliveryResult]:
        if self.config.silence.is_active():
            logger.info("Alerts silenced; %s not dispatched", alert.get("rule_id"))
            increment_counter("monitoring_notifications_silenced_total")
            return []

        results: List[DeliveryResult] = []
        for channel_name in channel_names or []:
            channel = self.channels.get(channel_name)
            if channel is None:
                logger.error("Unknown notification channel: %s", channel_name)
                continue
            if not channel.enabled:
                logger.debug("Notification channel %s is disabled", channel_name)
                continue
            try:
                result = channel.send(alert)
            except Exception as exc:
                logger.error("Notification via %s failed: %s", channel_name, exc)
                result = DeliveryResult(False, channel_name, error=str(exc))
            increment_counter(
                "monitoring_notifications_total",
                labels={"channel": channel_name, "outcome": "sent" if result.success else "failed"},
            )
            results.append(result)
        return results
