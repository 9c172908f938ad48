"""Low stock alert dispatch, decoupled from the write path.

Mutations hand alerts to ``submit`` and return immediately; a background
worker delivers them one at a time. Each alert gets exactly one delivery
attempt and a failure never touches the inventory record that triggered it.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Union
from uuid import UUID

import structlog

from core.channels import LowStockAlert, NotificationChannel
from core.errors import DeliveryFailed

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    item_id: UUID
    delivered: bool
    error: Optional[str] = None


class NotifierDispatcher:
    def __init__(
        self,
        channel: NotificationChannel,
        threshold: float,
        timeout: float = 5,
        queue_size: int = 100,
    ):
        self.channel = channel
        self.threshold = threshold
        self.timeout = timeout
        self.queue_size = queue_size
        self.delivered = 0
        self.failed = 0
        self.dropped = 0
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._worker = asyncio.create_task(self._run(), name="low-stock-notifier")
        logger.info("notifier_started", channel=self.channel.name)

    async def stop(self, timeout: float = 5) -> None:
        """Flush pending alerts (bounded by ``timeout``) and stop the worker."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self.drain(), timeout)
        except asyncio.TimeoutError:
            logger.error("notifier_stop_timeout", pending=self._queue.qsize())
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None
        logger.info("notifier_stopped", delivered=self.delivered, failed=self.failed, dropped=self.dropped)

    async def drain(self) -> None:
        """Wait until every submitted alert has been attempted."""
        if self._queue is not None:
            await self._queue.join()

    def submit(self, item) -> bool:
        """Queue an alert for ``item`` without waiting for delivery."""
        alert = LowStockAlert.from_item(item, self.threshold)
        if not self.running:
            self.dropped += 1
            logger.error("low_stock_alert_dropped", item_id=str(alert.item_id), reason="notifier not running")
            return False
        try:
            self._queue.put_nowait(alert)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.error("low_stock_alert_dropped", item_id=str(alert.item_id), reason="queue full")
            return False
        return True

    async def notify(self, item: Union[LowStockAlert, object]) -> DispatchResult:
        """Deliver one alert right now: a single attempt bounded by the timeout."""
        alert = item if isinstance(item, LowStockAlert) else LowStockAlert.from_item(item, self.threshold)
        try:
            await asyncio.wait_for(self.channel.send(alert), self.timeout)
        except asyncio.TimeoutError:
            return self._failed(alert, DeliveryFailed(f"Channel timed out after {self.timeout}s"))
        except DeliveryFailed as e:
            return self._failed(alert, e)
        except Exception as e:
            # Adapters should raise DeliveryFailed; anything else is still only advisory.
            return self._failed(alert, DeliveryFailed(f"{e.__class__.__name__}: {e}"))

        self.delivered += 1
        logger.info("low_stock_alert_sent", item_id=str(alert.item_id), channel=self.channel.name)
        return DispatchResult(item_id=alert.item_id, delivered=True)

    def _failed(self, alert: LowStockAlert, error: DeliveryFailed) -> DispatchResult:
        self.failed += 1
        logger.error(
            "low_stock_delivery_failed",
            item_id=str(alert.item_id),
            channel=self.channel.name,
            error=error.message,
        )
        return DispatchResult(item_id=alert.item_id, delivered=False, error=error.message)

    async def _run(self) -> None:
        while True:
            alert = await self._queue.get()
            try:
                await self.notify(alert)
            finally:
                self._queue.task_done()
