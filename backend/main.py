"""
Folio FastAPI application.

Entry point for the API server.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend import db
from backend.config import settings
from backend.repos import PageRepo, TableRepo
from backend.routes import pages as pages_routes
from backend.routes import tables as tables_routes
from backend.services.r2 import R2ObjectStorage
from backend.services.workspace import Workspace

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.

    Handles startup and shutdown logic:
    - Initialize database pool
    - Build the per-user workspace registry
    - Flush queued cell edits and close the database pool on shutdown
    """
    # Startup
    await db.init_pool()
    logger.info("Database pool initialized")

    page_backend = PageRepo()
    app.state.page_backend = page_backend
    app.state.workspace = Workspace(TableRepo(), page_backend, R2ObjectStorage())

    yield

    # Shutdown
    await app.state.workspace.flush_all()
    logger.info("Pending cell edits flushed")

    await db.close_pool()
    logger.info("Database pool closed")


app = FastAPI(
    title="Folio",
    docs_url=None,
    redoc_url=None,
    lifespan=lifespan,
)

# Register routes
app.include_router(tables_routes.router)
app.include_router(pages_routes.router)
app.include_router(pages_routes.public_router)


@app.get("/health")
async def health():
    """Health check endpoint for uptime monitoring. The process is up even if the database is not."""
    return {"status": "ok", "database": "ok" if await db.ping() else "unavailable"}
