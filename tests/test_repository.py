"""InventoryRepository against a SQLite database."""

import asyncio
import uuid

import pytest

from conftest import item_fields
from core.errors import ConcurrentModification, NotFound, ValidationError
from db.inventory.item import ItemStatus, ItemType, Unit


class TestCreateAndGet:
    async def test_round_trip(self, repository):
        created = await repository.create(item_fields(quantity="42.5"))
        fetched = await repository.get(created.id)

        assert fetched.item_name == "Dry coconut shells"
        assert fetched.item_type is ItemType.SHELL
        assert fetched.quantity == 42.5
        assert fetched.unit is Unit.KG
        assert fetched.storage_location == "Yard A"
        assert fetched.asset_id is None

    async def test_defaults(self, repository):
        item = await repository.create(item_fields())
        assert item.status is ItemStatus.AVAILABLE
        assert item.low_stock_notified is False
        assert item.version == 1
        assert item.created_at is not None
        assert item.updated_at is not None

    async def test_create_rejects_invalid_fields(self, repository):
        with pytest.raises(ValidationError):
            await repository.create(item_fields(quantity=-1))
        assert await repository.list() == []

    @pytest.mark.parametrize("quantity", [1.23456, 9.9996, 1e12, 123456789.125])
    async def test_quantity_is_stored_exactly(self, repository, quantity):
        created = await repository.create(item_fields(quantity=quantity))
        fetched = await repository.get(created.id)

        assert created.quantity == quantity
        assert fetched.quantity == quantity

    async def test_update_returns_stored_row(self, repository):
        item = await repository.create(item_fields())
        updated = await repository.update(item.id, {"quantity": "0.3333333"})

        assert updated.quantity == (await repository.get(item.id)).quantity == 0.3333333

    async def test_get_unknown_id(self, repository):
        with pytest.raises(NotFound):
            await repository.get(uuid.uuid4())

    async def test_get_malformed_id(self, repository):
        with pytest.raises(NotFound):
            await repository.get("not-a-uuid")


class TestUpdate:
    async def test_partial_update_keeps_other_fields(self, repository):
        item = await repository.create(item_fields(status="processing"))
        updated = await repository.update(item.id, {"quantity": 7})

        assert updated.quantity == 7
        assert updated.item_name == "Dry coconut shells"
        assert updated.status is ItemStatus.PROCESSING
        assert updated.version == 2

        fetched = await repository.get(item.id)
        assert fetched.quantity == 7
        assert fetched.status is ItemStatus.PROCESSING

    async def test_invalid_update_leaves_record_unchanged(self, repository):
        item = await repository.create(item_fields())
        with pytest.raises(ValidationError) as exc_info:
            await repository.update(item.id, {"quantity": -5, "item_name": "New"})
        assert exc_info.value.fields == ["quantity"]

        fetched = await repository.get(item.id)
        assert fetched.quantity == 50
        assert fetched.item_name == "Dry coconut shells"

    async def test_update_unknown_id(self, repository):
        with pytest.raises(NotFound):
            await repository.update(uuid.uuid4(), {"quantity": 1})

    async def test_expected_asset_mismatch_is_refused(self, repository):
        item = await repository.create(item_fields())
        with pytest.raises(ConcurrentModification):
            await repository.update(item.id, {}, asset_id=None, expected_asset_id=uuid.uuid4())

    async def test_binding_a_missing_blob_is_refused(self, repository):
        item = await repository.create(item_fields())
        with pytest.raises(ConcurrentModification):
            await repository.update(item.id, {}, asset_id=uuid.uuid4())
        assert (await repository.get(item.id)).asset_id is None


class TestDelete:
    async def test_delete_then_get(self, repository):
        item = await repository.create(item_fields())
        deleted = await repository.delete(item.id)
        assert deleted.id == item.id

        with pytest.raises(NotFound):
            await repository.get(item.id)
        with pytest.raises(NotFound):
            await repository.delete(item.id)


class TestQueries:
    async def test_find_below_threshold(self, repository):
        await repository.create(item_fields(item_name="A", quantity=12))
        low = await repository.create(item_fields(item_name="B", quantity=3))
        lowest = await repository.create(item_fields(item_name="C", quantity=0))
        await repository.create(item_fields(item_name="D", quantity=10))

        found = await repository.find_below_threshold(10)
        assert [i.id for i in found] == [lowest.id, low.id]

    async def test_list_filters(self, repository):
        await repository.create(item_fields(item_name="Shell pile"))
        water = await repository.create(item_fields(item_name="Fresh water", item_type="water", unit="liters"))
        husk = await repository.create(item_fields(item_name="Husk", item_type="husk", status="disposed"))

        assert len(await repository.list()) == 3
        assert [i.id for i in await repository.list(item_type="water")] == [water.id]
        assert [i.id for i in await repository.list(status="disposed")] == [husk.id]
        assert [i.id for i in await repository.list(q="WATER")] == [water.id]

    async def test_list_rejects_unknown_filter_values(self, repository):
        with pytest.raises(ValidationError) as exc_info:
            await repository.list(item_type="bark")
        assert exc_info.value.fields == ["item_type"]


class TestLowStockFlag:
    async def test_mark_is_compare_and_set(self, repository):
        item = await repository.create(item_fields(quantity=5))

        assert await repository.mark_low_stock_notified(item.id) is True
        assert await repository.mark_low_stock_notified(item.id) is False
        assert (await repository.get(item.id)).low_stock_notified is True

    async def test_concurrent_marks_have_one_winner(self, repository):
        item = await repository.create(item_fields(quantity=5))
        results = await asyncio.gather(*[repository.mark_low_stock_notified(item.id) for _ in range(4)])
        assert sorted(results) == [False, False, False, True]

    async def test_mark_requires_stored_quantity_below_threshold(self, repository):
        item = await repository.create(item_fields(quantity=5))
        await repository.update(item.id, {"quantity": 20})

        assert await repository.mark_low_stock_notified(item.id, 10) is False
        assert (await repository.get(item.id)).low_stock_notified is False

        await repository.update(item.id, {"quantity": 3})
        assert await repository.mark_low_stock_notified(item.id, 10) is True

    async def test_clear_requires_stored_quantity_at_threshold(self, repository):
        item = await repository.create(item_fields(quantity=5))
        await repository.mark_low_stock_notified(item.id, 10)

        assert await repository.clear_low_stock_notified(item.id, 10) is False
        await repository.update(item.id, {"quantity": 10})
        assert await repository.clear_low_stock_notified(item.id, 10) is True

    async def test_clear(self, repository):
        item = await repository.create(item_fields(quantity=5))
        await repository.mark_low_stock_notified(item.id)

        assert await repository.clear_low_stock_notified(item.id) is True
        assert await repository.clear_low_stock_notified(item.id) is False
        assert (await repository.get(item.id)).low_stock_notified is False


class TestItemLocks:
    async def test_lock_serializes_and_is_released(self, repository):
        item_id = uuid.uuid4()
        order = []

        async def worker(name):
            async with repository.lock(item_id):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
        assert len(repository._locks) == 0
