"""FastAPI application for the observation service."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from observation_service import __version__
from observation_service.clients.cache import RoleHierarchyCache
from observation_service.clients.directory import DirectoryClient
from observation_service.db import init_db


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create tables and own the shared directory client and hierarchy cache.

    Both are closed on shutdown.
    """
    await init_db()
    app.state.directory = DirectoryClient()
    app.state.cache = RoleHierarchyCache.from_url()
    try:
        yield
    finally:
        await app.state.directory.aclose()
        await app.state.cache.aclose()


app = FastAPI(
    title="Observation Service",
    description="Observation lifecycle and entity reconciliation for education monitoring",
    version=__version__,
    lifespan=lifespan,
)


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}
