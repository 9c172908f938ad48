from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.channels import NotificationChannel
from core.config import Settings
from core.exception_handlers import setup_exception_handlers
from core.inventory_service import build_service
from core.logging import configure_logging
from db.database import create_db_and_tables, create_engine, create_session_maker
from routers.inventory import router as inventory_router

logger = structlog.get_logger(__name__)


def create_app(settings: Optional[Settings] = None, channel: Optional[NotificationChannel] = None) -> FastAPI:
    """Build the API. Engine, service and alert worker live for the app's lifespan."""
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        engine = create_engine(settings)
        await create_db_and_tables(engine)

        service = build_service(create_session_maker(engine), settings, channel=channel)
        await service.start()
        app.state.inventory_service = service
        logger.info("inventory_service_started", threshold=settings.low_stock_threshold)
        try:
            yield
        finally:
            await service.stop()
            await engine.dispose()
            logger.info("inventory_service_stopped")

    app = FastAPI(
        title="Coconut Stock Inventory API",
        description="API for tracking coconut material stock, pictures and low stock alerts",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    setup_exception_handlers(app)

    # Inventory routes
    app.include_router(inventory_router, prefix="/items", tags=["inventory"])

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
