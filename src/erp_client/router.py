"""Router factory for the sync admin surface."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI

from erp_client.client import ResilientClient
from erp_client.exceptions import register_exception_handlers
from erp_client.routes.connectivity import router as connectivity_router
from erp_client.routes.operations import router as operations_router


def create_sync_router(
    *,
    client: ResilientClient,
) -> APIRouter:
    """Create an API router exposing the operation queue.

    The connectivity monitor, if any, is taken from ``client``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        app.state.erp_client = client
        app.state.erp_client_connectivity = client.connectivity
        register_exception_handlers(app)
        await client.guard.load()
        yield
        await client.guard.aclose()

    router = APIRouter(lifespan=lifespan)
    router.include_router(operations_router)
    router.include_router(connectivity_router)
    return router
