"""Notifier dispatcher and channel adapters."""

import smtplib
import uuid
from dataclasses import replace
from types import SimpleNamespace

import pytest
import requests

from core import channels
from core.channels import (
    EmailChannel,
    FakeChannel,
    LogChannel,
    LowStockAlert,
    WebhookChannel,
    build_channel,
)
from core.errors import DeliveryFailed
from core.notifier import NotifierDispatcher
from db.inventory.item import ItemType, Unit


def _item(name: str = "Fresh coconut water", quantity: float = 4) -> SimpleNamespace:
    return SimpleNamespace(
        id=uuid.uuid4(),
        item_name=name,
        item_type=ItemType.WATER,
        quantity=quantity,
        unit=Unit.LITERS,
        storage_location="Cold room 2",
    )


@pytest.fixture()
async def dispatcher(channel):
    dispatcher = NotifierDispatcher(channel, threshold=10, timeout=0.2, queue_size=10)
    await dispatcher.start()
    yield dispatcher
    await dispatcher.stop()


class TestLowStockAlert:
    def test_content(self):
        item = _item()
        alert = LowStockAlert.from_item(item, 10)

        assert alert.subject == "Low Stock Alert: Fresh coconut water"
        assert "Quantity: 4 liters (Threshold: 10 liters)" in alert.body
        assert "Storage Location: Cold room 2" in alert.body

        payload = alert.to_payload()
        assert payload["item_id"] == str(item.id)
        assert payload["item_type"] == "water"
        assert payload["subject"] == alert.subject


class TestNotify:
    async def test_delivered(self, dispatcher, channel):
        item = _item()
        result = await dispatcher.notify(item)

        assert result.delivered is True
        assert result.item_id == item.id
        assert [a.item_id for a in channel.sent] == [item.id]
        assert dispatcher.delivered == 1

    async def test_failure_is_reported_not_raised(self, dispatcher, channel):
        channel.configure(should_succeed=False)
        result = await dispatcher.notify(_item())

        assert result.delivered is False
        assert "configured to fail" in result.error
        assert channel.attempts == 1
        assert dispatcher.failed == 1

    async def test_timeout_counts_as_one_failed_attempt(self, dispatcher, channel):
        channel.configure(delay=1)
        result = await dispatcher.notify(_item())

        assert result.delivered is False
        assert "timed out" in result.error
        assert channel.attempts == 1
        assert channel.sent == []

    async def test_unexpected_channel_error_is_advisory(self, dispatcher):
        class Broken(LogChannel):
            async def send(self, alert):
                raise RuntimeError("boom")

        dispatcher.channel = Broken()
        result = await dispatcher.notify(_item())
        assert result.delivered is False
        assert "RuntimeError" in result.error


class TestSubmit:
    async def test_delivered_by_worker(self, dispatcher, channel):
        first, second = _item("A"), _item("B")

        assert dispatcher.submit(first) is True
        assert dispatcher.submit(second) is True
        await dispatcher.drain()

        assert [a.item_name for a in channel.sent] == ["A", "B"]

    async def test_worker_survives_failures(self, dispatcher, channel):
        channel.configure(should_succeed=False)
        dispatcher.submit(_item("A"))
        await dispatcher.drain()

        channel.configure(should_succeed=True)
        dispatcher.submit(_item("B"))
        await dispatcher.drain()

        assert [a.item_name for a in channel.sent] == ["B"]
        assert channel.attempts == 2

    async def test_dropped_when_not_running(self, channel):
        dispatcher = NotifierDispatcher(channel, threshold=10)
        assert dispatcher.submit(_item()) is False
        assert dispatcher.dropped == 1
        assert channel.attempts == 0

    async def test_dropped_when_queue_full(self, channel):
        dispatcher = NotifierDispatcher(channel, threshold=10, queue_size=1)
        await dispatcher.start()
        try:
            accepted = [dispatcher.submit(_item(str(n))) for n in range(3)]
            await dispatcher.drain()
        finally:
            await dispatcher.stop()

        assert accepted == [True, False, False]
        assert dispatcher.dropped == 2
        assert len(channel.sent) == 1

    async def test_stop_flushes_pending(self, channel):
        dispatcher = NotifierDispatcher(channel, threshold=10)
        await dispatcher.start()
        dispatcher.submit(_item())
        await dispatcher.stop()

        assert len(channel.sent) == 1
        assert dispatcher.running is False


class TestWebhookChannel:
    async def test_posts_json(self, monkeypatch):
        calls = []

        def fake_post(url, json=None, headers=None, timeout=None):
            calls.append((url, json, timeout))
            return SimpleNamespace(status_code=204, text="")

        monkeypatch.setattr(channels.requests, "post", fake_post)
        await WebhookChannel("https://hooks.example.test/stock", timeout=3).send(LowStockAlert.from_item(_item(), 10))

        url, payload, timeout = calls[0]
        assert url == "https://hooks.example.test/stock"
        assert payload["item_name"] == "Fresh coconut water"
        assert payload["text"].startswith("Low Stock Alert: Fresh coconut water")
        assert timeout == 3

    async def test_rejection_raises_delivery_failed(self, monkeypatch):
        monkeypatch.setattr(
            channels.requests, "post", lambda *a, **kw: SimpleNamespace(status_code=500, text="nope")
        )
        with pytest.raises(DeliveryFailed):
            await WebhookChannel("https://hooks.example.test/stock").send(LowStockAlert.from_item(_item(), 10))

    async def test_connection_error_raises_delivery_failed(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(channels.requests, "post", refuse)
        with pytest.raises(DeliveryFailed):
            await WebhookChannel("https://hooks.example.test/stock").send(LowStockAlert.from_item(_item(), 10))


class _FakeSMTP:
    instances = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.messages = []
        self.logged_in = None
        self.tls = False
        _FakeSMTP.instances.append(self)

    def starttls(self):
        self.tls = True

    def login(self, username, password):
        self.logged_in = username

    def send_message(self, msg):
        if _FakeSMTP.fail_with is not None:
            raise _FakeSMTP.fail_with
        self.messages.append(msg)

    def quit(self):
        pass


class TestEmailChannel:
    @pytest.fixture(autouse=True)
    def fake_smtp(self, monkeypatch):
        _FakeSMTP.instances = []
        _FakeSMTP.fail_with = None
        monkeypatch.setattr(channels.smtplib, "SMTP", _FakeSMTP)

    def _channel(self):
        return EmailChannel(
            smtp_host="smtp.example.test",
            smtp_port=587,
            username="alerts",
            password="secret",
            sender="alerts@example.test",
            recipient="warehouse@example.test",
        )

    async def test_sends_message(self):
        await self._channel().send(LowStockAlert.from_item(_item(), 10))

        server = _FakeSMTP.instances[0]
        assert server.tls is True
        assert server.logged_in == "alerts"
        msg = server.messages[0]
        assert msg["To"] == "warehouse@example.test"
        assert msg["Subject"] == "Low Stock Alert: Fresh coconut water"

    async def test_smtp_error_raises_delivery_failed(self):
        _FakeSMTP.fail_with = smtplib.SMTPRecipientsRefused({})
        with pytest.raises(DeliveryFailed):
            await self._channel().send(LowStockAlert.from_item(_item(), 10))


class TestBuildChannel:
    def test_log_default(self, settings):
        assert isinstance(build_channel(settings), LogChannel)

    def test_webhook(self, settings):
        channel = build_channel(replace(settings, notification_channel="webhook", alert_webhook_url="https://x.test"))
        assert isinstance(channel, WebhookChannel)
        assert channel.timeout == settings.notification_timeout_seconds

    def test_email(self, settings):
        channel = build_channel(
            replace(settings, notification_channel="email", smtp_host="smtp.x.test", alert_recipient="a@x.test")
        )
        assert isinstance(channel, EmailChannel)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"notification_channel": "webhook", "alert_webhook_url": ""},
            {"notification_channel": "email", "smtp_host": ""},
            {"notification_channel": "pigeon"},
        ],
    )
    def test_misconfiguration(self, settings, overrides):
        with pytest.raises(ValueError):
            build_channel(replace(settings, **overrides))

    def test_fake_channel_reset(self):
        fake = FakeChannel()
        fake.configure(should_succeed=False, delay=0.5)
        fake.attempts = 3
        fake.reset()
        assert (fake.attempts, fake.should_succeed, fake.delay, fake.sent) == (0, True, None, [])
