from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Iterable, List, Optional

from storefront.config import Config
from storefront.observability import increment_counter


@dataclass
class DeliveryResult:
    """Outcome of one outbound delivery attempt."""
    success: bool
    channel: str
    recipients: List[str] = field(default_factory=list)
    delivered_at: Optional[datetime] = None
    error: Optional[str] = None


class EmailService:
    """Plain SMTP delivery; unconfigured SMTP is reported as a failed result, not raised."""

    channel_name = "email"

    def __init__(self, config: type[Config] = Config) -> None:
        self.config = config
        self.logger = logging.getLogger(__name__)

    @property
    def is_configured(self) -> bool:
        return bool(self.config.SMTP_HOST and self.config.SMTP_FROM_EMAIL)

    def send(self, recipients: Iterable[str], subject: str, body: str) -> DeliveryResult:
        to_addresses = [address for address in recipients if address]
        if not to_addresses:
            return DeliveryResult(False, self.channel_name, error="No recipients")
        if not self.is_configured:
            self.logger.warning("SMTP not configured; email '%s' not sent", subject)
            return DeliveryResult(False, self.channel_name, to_addresses, error="SMTP not configured")

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.config.SMTP_FROM_EMAIL
        message["To"] = ", ".join(to_addresses)
        message.attach(MIMEText(body, "plain"))
        message.attach(
            MIMEText(
                f"<html><body><h2>{escape(subject)}</h2><p>{escape(body).replace(chr(10), '<br>')}</p></body></html>",
                "html",
            )
        )

        try:
            with smtplib.SMTP(
                self.config.SMTP_HOST,
                self.config.SMTP_PORT,
                timeout=self.config.SMTP_TIMEOUT_SECONDS,
            ) as server:
                if self.config.SMTP_USE_TLS:
                    server.starttls()
                if self.config.SMTP_USERNAME and self.config.SMTP_PASSWORD:
                    server.login(self.config.SMTP_USERNAME, self.config.SMTP_PASSWORD)
                server.sendmail(self.config.SMTP_FROM_EMAIL, to_addresses, message.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            increment_counter("emails_failed_total")
            self.logger.error("Failed to send email '%s': %s", subject, exc)
            return DeliveryResult(False, self.channel_name, to_addresses, error=str(exc))

        increment_counter("emails_sent_total")
        self.logger.info("Email '%s' sent to %d recipient(s)", subject, len(to_addresses))
        return DeliveryResult(True, self.channel_name, to_addresses, delivered_at=datetime.now(timezone.utc))
