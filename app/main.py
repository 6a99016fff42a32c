"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from app.api import router as api_router
from app.core.config import get_settings
from app.core.logging import get_logger, log_with_context
from app.core.rate_limiter import backend_name

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    log_with_context(
        logger,
        logging.INFO,
        "Knowledge chat service starting",
        env=settings.APP_ENV,
        embeddings=settings.EMBEDDING_PROVIDER,
        pinecone_index=settings.PINECONE_INDEX,
        rate_limiter=backend_name(),
    )
    yield
    logger.info("Knowledge chat service stopped")


app = FastAPI(
    title="Knowledge Chat Service",
    description="Multi-tenant document chat: upload, hybrid retrieval and streamed answers",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Liveness check. Dependency status lives under /v1/admin/system-health."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


app.include_router(api_router, prefix="/v1")
