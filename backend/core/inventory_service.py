"""Inventory service: the operations the API layer calls.

Each mutation runs validation, the asset binding step, the repository write,
threshold evaluation and alert submission, in that order. A call succeeds as
soon as the repository write commits; picture cleanup and alerting problems
come back as diagnostics instead of errors.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.asset_binding import AssetBindingManager
from core.blob_store import AssetUpload, BlobInfo, BlobStore
from core.channels import NotificationChannel, build_channel
from core.config import Settings
from core.errors import InventoryError, NotFound
from core.notifier import NotifierDispatcher
from core.threshold import ThresholdDecision, evaluate
from db.inventory.item import InventoryItem
from db.repository import InventoryRepository, validate_fields

logger = structlog.get_logger(__name__)


@dataclass
class OperationResult:
    item: InventoryItem
    diagnostics: List[Dict[str, Any]] = field(default_factory=list)


class InventoryService:
    def __init__(
        self,
        repository: InventoryRepository,
        blob_store: BlobStore,
        dispatcher: NotifierDispatcher,
        threshold: float = 10,
        rearm: bool = False,
        orphan_grace_seconds: int = 900,
    ):
        self.repository = repository
        self.blob_store = blob_store
        self.bindings = AssetBindingManager(repository, blob_store)
        self.dispatcher = dispatcher
        self.threshold = threshold
        self.rearm = rearm
        self.orphan_grace_seconds = orphan_grace_seconds

    async def start(self) -> None:
        await self.dispatcher.start()

    async def stop(self) -> None:
        await self.dispatcher.stop()

    def is_low_stock(self, item: InventoryItem) -> bool:
        return float(item.quantity) < self.threshold

    async def create_item(self, fields: Mapping[str, Any], upload: Optional[AssetUpload] = None) -> OperationResult:
        outcome = await self.bindings.create_with_asset(fields, upload)
        result = OperationResult(item=outcome.item, diagnostics=_describe(outcome.diagnostics))
        logger.info("inventory_item_created", item_id=str(result.item.id), asset_id=_str(result.item.asset_id))

        await self._check_stock_level(result)
        return result

    async def update_item(
        self,
        item_id,
        fields: Mapping[str, Any],
        upload: Optional[AssetUpload] = None,
    ) -> OperationResult:
        if upload is not None:
            outcome = await self.bindings.replace_asset(item_id, upload, fields)
            result = OperationResult(item=outcome.item, diagnostics=_describe(outcome.diagnostics))
            if "quantity" in fields:
                async with self.repository.lock(item_id):
                    await self._check_stock_level(result)
        else:
            validate_fields(fields, partial=True)
            async with self.repository.lock(item_id):
                item = await self.repository.update(item_id, fields)
                result = OperationResult(item=item)
                if "quantity" in fields:
                    await self._check_stock_level(result)
        logger.info("inventory_item_updated", item_id=str(result.item.id), fields=sorted(fields))
        return result

    async def delete_item(self, item_id) -> OperationResult:
        outcome = await self.bindings.detach_on_delete(item_id)
        logger.info("inventory_item_deleted", item_id=str(outcome.item.id), asset_id=_str(outcome.item.asset_id))
        return OperationResult(item=outcome.item, diagnostics=_describe(outcome.diagnostics))

    async def get_item(self, item_id) -> InventoryItem:
        return await self.repository.get(item_id)

    async def list_items(
        self,
        item_type: Optional[str] = None,
        status: Optional[str] = None,
        q: Optional[str] = None,
    ) -> List[InventoryItem]:
        return await self.repository.list(item_type=item_type, status=status, q=q)

    async def list_low_stock(self, threshold: Optional[float] = None) -> List[InventoryItem]:
        return await self.repository.find_below_threshold(self.threshold if threshold is None else threshold)

    async def open_asset(self, item_id) -> Tuple[BlobInfo, AsyncIterator[bytes]]:
        item = await self.repository.get(item_id)
        if item.asset_id is None:
            raise NotFound(f"Inventory item {item.id} has no picture")
        return await self.blob_store.get(item.asset_id)

    async def reconcile_assets(self, grace_seconds: Optional[int] = None) -> List[UUID]:
        grace = self.orphan_grace_seconds if grace_seconds is None else grace_seconds
        return await self.bindings.reconcile_orphans(grace)

    async def _check_stock_level(self, result: OperationResult) -> None:
        item = result.item
        decision = evaluate(float(item.quantity), self.threshold, bool(item.low_stock_notified), self.rearm)
        if decision is ThresholdDecision.NO_ACTION:
            return

        try:
            if decision is ThresholdDecision.FIRE_NOTIFICATION:
                # Only the caller that flips the flag sends the alert, and only
                # while the stored quantity is still low.
                if await self.repository.mark_low_stock_notified(item.id, self.threshold):
                    item.low_stock_notified = True
                    if not self.dispatcher.submit(item):
                        result.diagnostics.append(
                            {"code": "notification_dropped", "detail": "Low stock alert could not be queued"}
                        )
            elif decision is ThresholdDecision.CLEAR_FLAG:
                if await self.repository.clear_low_stock_notified(item.id, self.threshold):
                    item.low_stock_notified = False
                    logger.info("low_stock_rearmed", item_id=str(item.id))
        except InventoryError as e:
            logger.error("low_stock_check_failed", item_id=str(item.id), decision=decision.value, error=e.message)
            result.diagnostics.append({"code": "low_stock_check_failed", "detail": e.message})


def _describe(errors: List[InventoryError]) -> List[Dict[str, Any]]:
    return [{"code": e.code, "detail": e.message} for e in errors]


def _str(value) -> Optional[str]:
    return str(value) if value is not None else None


def build_service(
    session_maker: async_sessionmaker,
    settings: Settings,
    channel: Optional[NotificationChannel] = None,
) -> InventoryService:
    """Wire the repository, blob store and dispatcher for one application."""
    repository = InventoryRepository(session_maker)
    blob_store = BlobStore(session_maker, settings)
    dispatcher = NotifierDispatcher(
        channel or build_channel(settings),
        threshold=settings.low_stock_threshold,
        timeout=settings.notification_timeout_seconds,
        queue_size=settings.notification_queue_size,
    )
    return InventoryService(
        repository,
        blob_store,
        dispatcher,
        threshold=settings.low_stock_threshold,
        rearm=settings.low_stock_rearm,
        orphan_grace_seconds=settings.orphan_grace_seconds,
    )
