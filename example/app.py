"""FastAPI example app: a dispatch agent that keeps working offline."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from erp_sim import ShipmentIn, ShipmentPatch, SimTransport, _sim_state
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from erp_client import (
    ConnectivityMonitor,
    EntityType,
    MutationIntent,
    PipelineConfig,
    QueuedAck,
    ResilientClient,
    TokenPair,
    create_sync_router,
    register_exception_handlers,
)
from erp_client.contrib.sqlalchemy.credential_store import (
    SQLAlchemyCredentialStore,
)
from erp_client.contrib.sqlalchemy.models import Base
from erp_client.contrib.sqlalchemy.operation_store import (
    SQLAlchemyOperationStore,
)
from erp_client.schemas import ReconciliationEvent

logging.basicConfig(level=logging.INFO)

# --- Database setup ---

DATABASE_URL = "sqlite+aiosqlite:///./example.db"
engine = create_async_engine(DATABASE_URL, echo=False)
async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

# --- Library integration ---

config = PipelineConfig(base_url="http://erp-sim", queue_backoff_seconds=5)
connectivity = ConnectivityMonitor()
http = httpx.AsyncClient(base_url=config.base_url, transport=SimTransport())
credential_store = SQLAlchemyCredentialStore(async_session)
operation_store = SQLAlchemyOperationStore(async_session)
pipeline = ResilientClient.from_config(
    config,
    credential_store=credential_store,
    operation_store=operation_store,
    http=http,
    connectivity=connectivity,
)

recent_events: deque[ReconciliationEvent] = deque(maxlen=50)
pipeline.queue.subscribe(recent_events.append)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


app = FastAPI(
    title="erp-resilient-client demo",
    lifespan=lifespan,
)
register_exception_handlers(app)
app.include_router(create_sync_router(client=pipeline), prefix="/api")


# --- Agent endpoints ---


class LoginForm(BaseModel):
    username: str
    password: str


class OutageToggle(BaseModel):
    offline: bool


def _to_json(result: httpx.Response | QueuedAck) -> Response:
    if isinstance(result, QueuedAck):
        return JSONResponse(status_code=202, content=result.model_dump())
    if not result.content:
        return Response(status_code=result.status_code)
    return JSONResponse(status_code=result.status_code, content=result.json())


@app.post("/login")
async def login(form: LoginForm) -> dict[str, str]:
    """Log in against the ERP and store the session."""
    try:
        response = await http.post("/auth/login", json=form.model_dump())
    except httpx.TransportError as exc:
        raise HTTPException(status_code=503, detail="ERP unreachable") from exc
    if response.status_code != 200:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    data = response.json()
    await pipeline.guard.login(
        TokenPair(
            access_token=data["accessToken"],
            refresh_token=data["refreshToken"],
        )
    )
    return {"status": "logged_in"}


@app.post("/logout")
async def logout() -> dict[str, str]:
    await pipeline.guard.logout()
    return {"status": "logged_out"}


@app.get("/shipments")
async def list_shipments() -> Response:
    return _to_json(await pipeline.get("/shipments"))


@app.post("/shipments")
async def create_shipment(body: ShipmentIn) -> Response:
    result = await pipeline.post(
        "/shipments",
        json=body.model_dump(),
        intent=MutationIntent(entity_type=EntityType.SHIPMENT),
    )
    return _to_json(result)


@app.patch("/shipments/{shipment_id}")
async def update_shipment(shipment_id: str, body: ShipmentPatch) -> Response:
    result = await pipeline.patch(
        f"/shipments/{shipment_id}",
        json=body.model_dump(exclude_none=True),
        intent=MutationIntent(
            entity_type=EntityType.SHIPMENT, entity_id=shipment_id
        ),
    )
    return _to_json(result)


@app.delete("/shipments/{shipment_id}")
async def delete_shipment(shipment_id: str) -> Response:
    result = await pipeline.delete(
        f"/shipments/{shipment_id}",
        intent=MutationIntent(
            entity_type=EntityType.SHIPMENT, entity_id=shipment_id
        ),
    )
    return _to_json(result)


@app.get("/events")
async def list_events() -> list[dict[str, Any]]:
    """Most recent reconciliation events, newest last."""
    return [event.model_dump(mode="json") for event in recent_events]


# --- Simulator controls ---


@app.post("/simulate/outage")
async def simulate_outage(body: OutageToggle) -> dict[str, bool]:
    """Cut or restore the link to the ERP simulator.

    Restoring the link does not drain the queue by itself; report it
    through ``PUT /api/sync/connectivity``.
    """
    _sim_state["offline"] = body.offline
    return {"offline": body.offline}


@app.post("/simulate/expire-tokens")
async def simulate_expire_tokens() -> dict[str, int]:
    response = await http.post("/admin/expire-tokens")
    return response.json()
