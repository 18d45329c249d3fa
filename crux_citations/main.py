"""Citation Service - FastAPI Application Entry Point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .api.v1.endpoints.audit import router as audit_router
from .api.v1.endpoints.sources import router as sources_router
from .core.config import settings
from .core.logging import configure_logging
from .database.session import dispose_engine, init_db
from .services.fetch.source_fetcher import get_source_fetcher

logger = structlog.get_logger(__name__)

SERVICE_NAME = "crux-citations"
SERVICE_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging()
    await init_db()
    logger.info(
        "Citation service starting",
        port=settings.API_PORT,
        knowledge_db=settings.KNOWLEDGE_DB_URL,
        remote_tier=bool(settings.WIKI_SERVER_URL),
        rich_fetch=settings.ENABLE_RICH_FETCH,
        llm_model=settings.CITATION_LLM_MODEL,
    )

    yield

    await get_source_fetcher().close()
    await dispose_engine()
    logger.info("Citation service shutting down")


# Create FastAPI app
app = FastAPI(
    title="Crux Citations API",
    description="Source fetching with tiered caching and LLM-based citation auditing",
    version=SERVICE_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)


# Health check endpoint
@app.get("/api/v1/health", tags=["Health"])
async def health_check() -> JSONResponse:
    """Health check endpoint.

    Returns:
        JSONResponse: Service health status
    """
    return JSONResponse(
        content={
            "status": "healthy",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "environment": "development" if settings.DEBUG else "production",
        }
    )


# Include API routers
app.include_router(sources_router, prefix="/api/v1")
app.include_router(audit_router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("crux_citations.main:app", host=settings.API_HOST, port=settings.API_PORT)
