"""
Seed a few demo inventory items (no pictures).

Run locally:
  PYTHONPATH=backend python backend/scripts/seed_inventory.py

Items whose name already exists are skipped, so the script can be re-run.
Low stock alerts fire through the configured NOTIFICATION_CHANNEL like any
other create.
"""

from __future__ import annotations

import asyncio

from core.config import Settings
from core.inventory_service import build_service
from core.logging import configure_logging
from db.database import create_db_and_tables, create_engine, create_session_maker


SEED_ITEMS: list[dict] = [
    {"item_name": "Dry coconut shells", "item_type": "shell", "quantity": 120, "unit": "kg", "storage_location": "Yard A"},
    {"item_name": "Coir husk bales", "item_type": "husk", "quantity": 45, "unit": "pieces", "storage_location": "Shed 2"},
    {"item_name": "Coconut water", "item_type": "water", "quantity": 8, "unit": "liters", "storage_location": "Cold room"},
    {"item_name": "Grated kernel", "item_type": "meat", "quantity": 30, "unit": "kg", "storage_location": "Cold room"},
]


async def main() -> None:
    settings = Settings()
    configure_logging(settings)
    engine = create_engine(settings)
    try:
        await create_db_and_tables(engine)
        service = build_service(create_session_maker(engine), settings)
        await service.start()

        existing = {item.item_name for item in await service.list_items()}
        created = 0
        for fields in SEED_ITEMS:
            if fields["item_name"] in existing:
                continue
            await service.create_item(fields)
            created += 1

        await service.stop()
        print(f"Created inventory items: {created}, skipped: {len(SEED_ITEMS) - created}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
