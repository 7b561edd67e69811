# ============================================================================
# CELL GRAPH ENGINE - MAIN APPLICATION
# ============================================================================
# EPOCH: 1 - CELL GRAPH EXECUTION
# STATUS: Core - FastAPI application entry point
# PURPOSE: Main application wiring stores, backend and workspaces
# CREATED: 17 OCT 2026
# ============================================================================
"""
Cell Graph Engine Main Application

FastAPI application that:
1. Provides HTTP API for running cells and inspecting the graph
2. Polls async generation jobs in the background
3. Manages the store (in-memory or PostgreSQL) and media storage

Usage:
    uvicorn main:app --host 0.0.0.0 --port 8000
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from __version__ import __version__, BUILD_DATE, EPOCH
from fastapi.middleware.cors import CORSMiddleware

from core.config import StoreBackend, get_defaults
from infrastructure.generation import HttpGenerationBackend
from infrastructure.storage import BlobMediaStorage
from repositories import (
    InMemoryBillingStore,
    InMemoryCellStore,
    PostgresBillingStore,
    PostgresCellStore,
    close_pool,
    ensure_schema,
    init_pool,
)
from services.workspace_service import WorkspaceService
from api.routes import router, set_services

# Configure logging using our structured logging system
from core.logging import configure_logging, get_logger

configure_logging(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
)
logger = get_logger(__name__)

# Global instances
_workspace_service: WorkspaceService = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Initializes services on startup, cleans up on shutdown.
    """
    global _workspace_service

    defaults = get_defaults()
    logger.info(f"Starting Cell Graph Engine v{__version__} (Epoch {EPOCH}, Build {BUILD_DATE})")

    # Stores
    using_postgres = defaults.store_backend == StoreBackend.POSTGRES
    if using_postgres:
        pool = await init_pool()
        await ensure_schema(pool)
        store = PostgresCellStore(pool)
        billing = PostgresBillingStore(pool)
        logger.info("PostgreSQL store initialized")
    else:
        store = InMemoryCellStore()
        billing = InMemoryBillingStore()
        logger.warning("Using in-memory store; data is lost on restart")

    # Generation backend
    backend = HttpGenerationBackend(defaults.backend)
    logger.info(f"Generation backend: {defaults.backend.base_url}")

    # Media storage (optional)
    media_storage = None
    if defaults.storage.account_name:
        media_storage = BlobMediaStorage(defaults.storage)
        logger.info(f"Media storage: {defaults.storage.account_url}/{defaults.storage.container_name}")
    else:
        logger.info("MEDIA_STORAGE_ACCOUNT not set, media URLs are kept as returned")

    _workspace_service = WorkspaceService(
        store=store,
        billing=billing,
        backend=backend,
        media_storage=media_storage,
        defaults=defaults,
    )
    set_services(_workspace_service)

    yield

    # Shutdown
    logger.info("Shutting down Cell Graph Engine...")

    await _workspace_service.shutdown()
    await backend.close()
    if media_storage is not None:
        await media_storage.close()
    if using_postgres:
        await close_pool()

    logger.info("Cell Graph Engine stopped")


# Create FastAPI app
app = FastAPI(
    title="Cell Graph Engine",
    description=f"Epoch {EPOCH} spreadsheet-style prompt cell execution",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api/v1")


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Cell Graph Engine",
        "version": __version__,
        "epoch": EPOCH,
        "build_date": BUILD_DATE,
        "status": "running",
        "docs": "/docs",
    }


@app.get("/livez")
async def livez():
    """Liveness probe."""
    return {"status": "alive"}


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=os.environ.get("RELOAD", "false").lower() == "true",
    )
