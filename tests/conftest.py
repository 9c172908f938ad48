import pytest

from core.channels import FakeChannel
from core.config import Settings
from core.inventory_service import build_service
from db.database import create_db_and_tables, create_engine, create_session_maker
from db.repository import InventoryRepository

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
JPEG_MAGIC = b"\xff\xd8\xff\xe0"


def png_bytes(size: int = 2048) -> bytes:
    return PNG_MAGIC + b"\x00" * (size - len(PNG_MAGIC))


def jpeg_bytes(size: int = 2048) -> bytes:
    return JPEG_MAGIC + b"\x11" * (size - len(JPEG_MAGIC))


def item_fields(**overrides) -> dict:
    fields = {
        "item_name": "Dry coconut shells",
        "item_type": "shell",
        "quantity": 50,
        "unit": "kg",
        "storage_location": "Yard A",
    }
    fields.update(overrides)
    return fields


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'inventory.db'}",
        database_echo=False,
        environment="test",
        log_level="WARNING",
        low_stock_threshold=10,
        low_stock_rearm=False,
        blob_chunk_size=1024,
        notification_channel="log",
        notification_timeout_seconds=1,
    )


@pytest.fixture()
async def engine(settings):
    engine = create_engine(settings)
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_maker(engine):
    return create_session_maker(engine)


@pytest.fixture()
def repository(session_maker):
    return InventoryRepository(session_maker)


@pytest.fixture()
def channel():
    return FakeChannel()


@pytest.fixture()
async def service(session_maker, settings, channel):
    service = build_service(session_maker, settings, channel=channel)
    await service.start()
    yield service
    await service.stop()
