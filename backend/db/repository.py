"""Durable store of inventory records.

Every public method opens its own session, so each call is one unit of work.
Field validation happens here, before anything is flushed: a rejected write
leaves the stored record exactly as it was.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Set
from uuid import UUID

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from core.errors import ConcurrentModification, NotFound, ValidationError
from db.database import translate_db_errors
from db.inventory.item import InventoryItem, ItemStatus
from schemas.inventory import InventoryItemCreate, InventoryItemUpdate

# Marks "argument not given" where None is a meaningful value (asset_id=None detaches).
UNSET: Any = object()


def validate_fields(fields: Mapping[str, Any], partial: bool = False) -> Dict[str, Any]:
    """Normalize item fields, raising ValidationError naming every bad field.

    With ``partial`` only the keys present are checked; required fields may
    be absent but never explicitly empty.
    """
    schema = InventoryItemUpdate if partial else InventoryItemCreate
    try:
        model = schema.model_validate(dict(fields))
    except SchemaValidationError as e:
        raise ValidationError(str(err["loc"][0]) for err in e.errors() if err["loc"]) from e
    return model.model_dump(exclude_unset=True)


def _as_id(item_id) -> UUID:
    if isinstance(item_id, UUID):
        return item_id
    try:
        return uuid.UUID(str(item_id))
    except (TypeError, ValueError):
        raise NotFound(f"Inventory item {item_id} not found")


class _ItemLocks:
    """Per-id asyncio locks, dropped once nobody holds or waits on them."""

    def __init__(self):
        self._locks: Dict[UUID, asyncio.Lock] = {}
        self._holders: Dict[UUID, int] = {}

    @asynccontextmanager
    async def hold(self, key: UUID) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class InventoryRepository:
    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker
        self._locks = _ItemLocks()

    def lock(self, item_id):
        """Serialize read-modify-write sequences on one item within this process."""
        return self._locks.hold(_as_id(item_id))

    async def create(self, fields: Mapping[str, Any], asset_id: Optional[UUID] = None) -> InventoryItem:
        data = validate_fields(fields)
        data.setdefault("status", ItemStatus.AVAILABLE)
        item = InventoryItem(**data, asset_id=asset_id, low_stock_notified=False)

        with translate_db_errors():
            async with self._session_maker() as session:
                session.add(item)
                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    raise ConcurrentModification("Picture is missing or already bound to another item") from e
                # Hand back what the database stored, not the values we sent.
                await session.refresh(item)
        return item

    async def get(self, item_id) -> InventoryItem:
        item_id = _as_id(item_id)
        with translate_db_errors():
            async with self._session_maker() as session:
                item = await session.get(InventoryItem, item_id)
        if item is None:
            raise NotFound(f"Inventory item {item_id} not found")
        return item

    async def update(
        self,
        item_id,
        fields: Mapping[str, Any],
        asset_id: Any = UNSET,
        expected_asset_id: Any = UNSET,
    ) -> InventoryItem:
        """Apply only the given fields.

        ``expected_asset_id`` turns the asset swap into a compare-and-set: the
        write is refused if the stored reference moved since it was read.
        """
        item_id = _as_id(item_id)
        data = validate_fields(fields, partial=True)

        with translate_db_errors():
            async with self._session_maker() as session:
                item = await session.get(InventoryItem, item_id)
                if item is None:
                    raise NotFound(f"Inventory item {item_id} not found")
                if expected_asset_id is not UNSET and item.asset_id != expected_asset_id:
                    raise ConcurrentModification(f"Picture of inventory item {item_id} changed concurrently")

                for name, value in data.items():
                    setattr(item, name, value)
                if asset_id is not UNSET:
                    item.asset_id = asset_id

                try:
                    await session.commit()
                except StaleDataError as e:
                    await session.rollback()
                    raise ConcurrentModification(f"Inventory item {item_id} was modified concurrently") from e
                except IntegrityError as e:
                    await session.rollback()
                    raise ConcurrentModification("Picture is missing or already bound to another item") from e
                await session.refresh(item)
        return item

    async def delete(self, item_id, expected_asset_id: Any = UNSET) -> InventoryItem:
        """Remove the record and return its last state."""
        item_id = _as_id(item_id)
        with translate_db_errors():
            async with self._session_maker() as session:
                item = await session.get(InventoryItem, item_id)
                if item is None:
                    raise NotFound(f"Inventory item {item_id} not found")
                if expected_asset_id is not UNSET and item.asset_id != expected_asset_id:
                    raise ConcurrentModification(f"Picture of inventory item {item_id} changed concurrently")
                await session.delete(item)
                try:
                    await session.commit()
                except StaleDataError as e:
                    await session.rollback()
                    raise ConcurrentModification(f"Inventory item {item_id} was modified concurrently") from e
        return item

    async def list(
        self,
        item_type: Optional[str] = None,
        status: Optional[str] = None,
        q: Optional[str] = None,
    ) -> List[InventoryItem]:
        filters = {}
        if item_type:
            filters["item_type"] = item_type
        if status:
            filters["status"] = status
        parsed = validate_fields(filters, partial=True)

        stmt = select(InventoryItem)
        if "item_type" in parsed:
            stmt = stmt.where(InventoryItem.item_type == parsed["item_type"])
        if "status" in parsed:
            stmt = stmt.where(InventoryItem.status == parsed["status"])
        if q and q.strip():
            qq = f"%{q.strip().lower()}%"
            stmt = stmt.where(func.lower(InventoryItem.item_name).like(qq))
        stmt = stmt.order_by(InventoryItem.created_at, InventoryItem.id)

        with translate_db_errors():
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())

    async def find_below_threshold(self, threshold: float) -> List[InventoryItem]:
        stmt = (
            select(InventoryItem)
            .where(InventoryItem.quantity < threshold)
            .order_by(InventoryItem.quantity, InventoryItem.id)
        )
        with translate_db_errors():
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())

    async def mark_low_stock_notified(self, item_id, threshold: Optional[float] = None) -> bool:
        """Flip low_stock_notified false -> true. True only for the caller that flipped it.

        With ``threshold`` the flip also requires the stored quantity to still
        be below it, so a restock committed in between wins.
        """
        condition = InventoryItem.quantity < threshold if threshold is not None else None
        return await self._set_notified(_as_id(item_id), True, condition)

    async def clear_low_stock_notified(self, item_id, threshold: Optional[float] = None) -> bool:
        condition = InventoryItem.quantity >= threshold if threshold is not None else None
        return await self._set_notified(_as_id(item_id), False, condition)

    async def _set_notified(self, item_id: UUID, value: bool, condition=None) -> bool:
        stmt = (
            update(InventoryItem)
            .where(InventoryItem.id == item_id)
            .where(InventoryItem.low_stock_notified == (not value))
            .values(low_stock_notified=value, version=InventoryItem.version + 1)
            .execution_options(synchronize_session=False)
        )
        if condition is not None:
            stmt = stmt.where(condition)
        with translate_db_errors():
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                await session.commit()
        return result.rowcount == 1

    async def referenced_asset_ids(self) -> Set[UUID]:
        stmt = select(InventoryItem.asset_id).where(InventoryItem.asset_id.is_not(None))
        with translate_db_errors():
            async with self._session_maker() as session:
                result = await session.execute(stmt)
                return set(result.scalars().all())
