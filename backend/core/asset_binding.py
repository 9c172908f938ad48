"""Keeps inventory items and their picture blobs consistent.

Ordering rules:
- a new blob is always written before any item points at it;
- a superseded blob is deleted only after the item stopped pointing at it;
- cleanup failures are reported as AssetOrphanLeft and left for
  ``reconcile_orphans``; they never fail the item operation.
"""

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError

from core.blob_store import AssetUpload, BlobInfo, BlobStore
from core.errors import AssetOrphanLeft, AssetWriteFailed, InventoryError, StoreUnavailable
from db.inventory.item import InventoryItem
from db.repository import InventoryRepository, validate_fields

logger = structlog.get_logger(__name__)


@dataclass
class BindingOutcome:
    item: InventoryItem
    diagnostics: List[AssetOrphanLeft] = field(default_factory=list)


class AssetBindingManager:
    def __init__(self, repository: InventoryRepository, blob_store: BlobStore):
        self.repository = repository
        self.blob_store = blob_store

    async def store(self, upload: AssetUpload) -> BlobInfo:
        """Write the upload; storage failures become AssetWriteFailed.

        PayloadTooLarge and UnsupportedMediaType pass through unchanged.
        """
        try:
            return await self.blob_store.put(upload)
        except (StoreUnavailable, SQLAlchemyError, OSError) as e:
            logger.error("asset_write_failed", filename=upload.filename, error=str(e))
            raise AssetWriteFailed(f"Failed to store picture: {e}") from e

    async def discard(self, blob_id: UUID, reason: str) -> Optional[AssetOrphanLeft]:
        """Best-effort blob deletion. Returns a diagnostic when the blob survives."""
        try:
            await self.blob_store.delete(blob_id)
        except (InventoryError, SQLAlchemyError) as e:
            logger.warning("asset_orphan_left", blob_id=str(blob_id), reason=reason, error=str(e))
            return AssetOrphanLeft(blob_id)
        return None

    async def create_with_asset(
        self,
        fields: Mapping[str, Any],
        upload: Optional[AssetUpload] = None,
    ) -> BindingOutcome:
        validate_fields(fields)
        blob = await self.store(upload) if upload is not None else None

        try:
            item = await self.repository.create(fields, asset_id=blob.id if blob else None)
        except Exception:
            if blob is not None:
                await self.discard(blob.id, reason="create_aborted")
            raise
        return BindingOutcome(item=item)

    async def replace_asset(
        self,
        item_id,
        upload: AssetUpload,
        fields: Optional[Mapping[str, Any]] = None,
    ) -> BindingOutcome:
        """Write new blob, swap the reference, then delete the old blob."""
        fields = fields or {}
        validate_fields(fields, partial=True)

        async with self.repository.lock(item_id):
            current = await self.repository.get(item_id)
            old_asset_id = current.asset_id
            blob = await self.store(upload)

            try:
                item = await self.repository.update(
                    item_id,
                    fields,
                    asset_id=blob.id,
                    expected_asset_id=old_asset_id,
                )
            except Exception:
                await self.discard(blob.id, reason="replace_aborted")
                raise

        outcome = BindingOutcome(item=item)
        if old_asset_id is not None:
            orphan = await self.discard(old_asset_id, reason="replaced")
            if orphan is not None:
                outcome.diagnostics.append(orphan)
        return outcome

    async def detach_on_delete(self, item_id) -> BindingOutcome:
        """Delete the item first, then its blob."""
        async with self.repository.lock(item_id):
            current = await self.repository.get(item_id)
            item = await self.repository.delete(item_id, expected_asset_id=current.asset_id)

        outcome = BindingOutcome(item=item)
        if item.asset_id is not None:
            orphan = await self.discard(item.asset_id, reason="item_deleted")
            if orphan is not None:
                outcome.diagnostics.append(orphan)
        return outcome

    async def reconcile_orphans(self, grace_seconds: int) -> List[UUID]:
        """Delete blobs no item references that are older than the grace period.

        The grace period keeps uploads whose item is still being written.
        """
        stale = await self.blob_store.list_stale_ids(grace_seconds)
        referenced = await self.repository.referenced_asset_ids()

        deleted: List[UUID] = []
        for blob_id in stale:
            if blob_id in referenced:
                continue
            try:
                if await self.blob_store.delete(blob_id):
                    deleted.append(blob_id)
            except (InventoryError, SQLAlchemyError) as e:
                logger.warning("orphan_reconcile_failed", blob_id=str(blob_id), error=str(e))

        logger.info("orphans_reconciled", scanned=len(stale), deleted=len(deleted))
        return deleted
