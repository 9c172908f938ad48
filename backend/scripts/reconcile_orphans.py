"""
Delete picture blobs that no inventory item references any more.

Blobs younger than the grace period are kept so uploads whose item is still
being written survive. Run locally:
  PYTHONPATH=backend python backend/scripts/reconcile_orphans.py --grace-seconds 900

It uses the same DATABASE_URL env var as the backend (dotenv supported by core.config).
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Optional

from core.config import Settings
from core.inventory_service import build_service
from core.logging import configure_logging
from db.database import create_db_and_tables, create_engine, create_session_maker


async def main(grace_seconds: Optional[int] = None) -> None:
    settings = Settings()
    configure_logging(settings)
    engine = create_engine(settings)
    try:
        await create_db_and_tables(engine)
        service = build_service(create_session_maker(engine), settings)
        deleted = await service.reconcile_assets(grace_seconds)
        print(f"Deleted orphaned blobs: {len(deleted)}")
        for blob_id in deleted:
            print(f"  {blob_id}")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--grace-seconds", type=int, default=None, help="Override ORPHAN_GRACE_SECONDS")
    args = parser.parse_args()
    asyncio.run(main(args.grace_seconds))
