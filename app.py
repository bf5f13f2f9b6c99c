"""FastAPI application serving offline area and project endpoints."""

import logging
import os
import uuid
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from core.exceptions import OfflineTilesError, ResourceNotFoundError
from db import db_manager
from offline_areas.api import router as offline_areas_router
from projects.api import router as projects_router
from tasks.arq import close_arq_pool

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    await db_manager.init_beanie()
    logger.info("Offline basemaps API started")
    try:
        yield
    finally:
        await close_arq_pool()
        await db_manager.cleanup_connections()
        logger.info("Offline basemaps API stopped")


app = FastAPI(title="Offline Basemaps", lifespan=lifespan)
app.include_router(offline_areas_router)
app.include_router(projects_router)


@app.exception_handler(ResourceNotFoundError)
async def not_found_handler(request: Request, exc: ResourceNotFoundError):
    logger.warning("Not found: %s %s: %s", request.method, request.url, exc.message)
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": "Not found", "detail": exc.message},
    )


@app.exception_handler(OfflineTilesError)
async def offline_tiles_error_handler(request: Request, exc: OfflineTilesError):
    error_id = uuid.uuid4().hex
    logger.error(
        "Request %s %s failed (error %s): %s",
        request.method,
        request.url,
        error_id,
        exc.message,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": type(exc).__name__,
            "error_id": error_id,
            "detail": exc.message,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8080")),
        log_level="info",
    )
