from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog

from core.errors import InventoryError, StoreUnavailable

logger = structlog.get_logger(__name__)


def setup_exception_handlers(app: FastAPI):

    @app.exception_handler(InventoryError)
    async def inventory_error_handler(request: Request, exc: InventoryError):
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=exc.code, detail=exc.message)
        headers = {"Retry-After": "5"} if isinstance(exc, StoreUnavailable) else None
        return JSONResponse(content=exc.to_dict(), status_code=exc.status_code, headers=headers)
