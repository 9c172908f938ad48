"""Notification channel adapters for low stock alerts.

A channel only delivers; deciding whether an alert is due belongs to the
threshold monitor. Blocking clients (SMTP, HTTP) run in a worker thread so the
event loop keeps serving requests.
"""

import asyncio
import smtplib
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from email.message import EmailMessage
from typing import List, Optional
from uuid import UUID

import requests
import structlog

from core.config import Settings
from core.errors import DeliveryFailed

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LowStockAlert:
    item_id: UUID
    item_name: str
    item_type: str
    quantity: float
    unit: str
    storage_location: str
    threshold: float

    @classmethod
    def from_item(cls, item, threshold: float) -> "LowStockAlert":
        return cls(
            item_id=item.id,
            item_name=item.item_name,
            item_type=item.item_type.value,
            quantity=float(item.quantity),
            unit=item.unit.value,
            storage_location=item.storage_location,
            threshold=float(threshold),
        )

    @property
    def subject(self) -> str:
        return f"Low Stock Alert: {self.item_name}"

    @property
    def body(self) -> str:
        return (
            f"The inventory item {self.item_name} is low on stock!\n\n"
            f"Quantity: {self.quantity:g} {self.unit} (Threshold: {self.threshold:g} {self.unit})\n"
            f"Type: {self.item_type}\n"
            f"Storage Location: {self.storage_location}\n"
            "Please take action to restock this item."
        )

    def to_payload(self) -> dict:
        data = asdict(self)
        data["item_id"] = str(self.item_id)
        data["subject"] = self.subject
        return data


class NotificationChannel(ABC):
    """Abstract interface for alert delivery adapters."""

    name = "channel"

    @abstractmethod
    async def send(self, alert: LowStockAlert) -> None:
        """Deliver one alert. Raises DeliveryFailed when the channel rejects it."""
        ...


class LogChannel(NotificationChannel):
    """Writes alerts to the application log. Default when nothing else is configured."""

    name = "log"

    async def send(self, alert: LowStockAlert) -> None:
        logger.warning("low_stock_alert", **alert.to_payload())


class EmailChannel(NotificationChannel):
    name = "email"

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        username: str,
        password: str,
        sender: str,
        recipient: str,
        use_ssl: bool = False,
        timeout: float = 10,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.sender = sender
        self.recipient = recipient
        self.use_ssl = use_ssl
        self.timeout = timeout

    def _build_message(self, alert: LowStockAlert) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = self.recipient
        msg["Subject"] = alert.subject
        msg.set_content(alert.body)
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        if self.use_ssl:
            server = smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, timeout=self.timeout)
        else:
            server = smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout)
        try:
            if not self.use_ssl:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(msg)
        finally:
            try:
                server.quit()
            except smtplib.SMTPException as e:
                logger.warning("smtp_close_failed", error=str(e))

    async def send(self, alert: LowStockAlert) -> None:
        try:
            await asyncio.to_thread(self._send_sync, self._build_message(alert))
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryFailed(f"Email delivery failed: {e}") from e


class WebhookChannel(NotificationChannel):
    """POSTs the alert as JSON to a webhook (Slack-style incoming hooks, ops bots)."""

    name = "webhook"

    def __init__(self, url: str, timeout: float = 10):
        self.url = url
        self.timeout = timeout

    def _post_sync(self, payload: dict) -> None:
        resp = requests.post(
            self.url,
            json=payload,
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        if resp.status_code >= 400:
            raise DeliveryFailed(f"Webhook rejected alert ({resp.status_code}): {resp.text[:200]}")

    async def send(self, alert: LowStockAlert) -> None:
        payload = alert.to_payload()
        payload["text"] = f"{alert.subject}\n{alert.body}"
        try:
            await asyncio.to_thread(self._post_sync, payload)
        except requests.RequestException as e:
            raise DeliveryFailed(f"Webhook delivery failed: {e}") from e


class FakeChannel(NotificationChannel):
    """Records alerts in memory for test assertions."""

    name = "fake"

    def __init__(self):
        self.sent: List[LowStockAlert] = []
        self.attempts = 0
        self.should_succeed = True
        self.delay: Optional[float] = None

    def configure(self, should_succeed: bool = True, delay: Optional[float] = None):
        self.should_succeed = should_succeed
        self.delay = delay

    async def send(self, alert: LowStockAlert) -> None:
        self.attempts += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.should_succeed:
            raise DeliveryFailed("Fake channel configured to fail")
        self.sent.append(alert)

    def reset(self):
        self.sent.clear()
        self.attempts = 0
        self.should_succeed = True
        self.delay = None


def build_channel(settings: Settings) -> NotificationChannel:
    """Return the channel adapter named by NOTIFICATION_CHANNEL."""
    channel = settings.notification_channel
    if channel == "log":
        return LogChannel()
    if channel == "email":
        if not settings.smtp_host or not settings.alert_recipient:
            raise ValueError("NOTIFICATION_CHANNEL=email requires SMTP_HOST and ALERT_RECIPIENT")
        return EmailChannel(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.email_sender,
            recipient=settings.alert_recipient,
            use_ssl=settings.smtp_use_ssl,
            timeout=settings.notification_timeout_seconds,
        )
    if channel == "webhook":
        if not settings.alert_webhook_url:
            raise ValueError("NOTIFICATION_CHANNEL=webhook requires ALERT_WEBHOOK_URL")
        return WebhookChannel(settings.alert_webhook_url, timeout=settings.notification_timeout_seconds)
    raise ValueError(f"Unknown notification channel: {channel}")
