"""Shared fixtures for erp-resilient-client tests."""

from __future__ import annotations

import json

import httpx
import pytest

from erp_client.client import ResilientClient
from erp_client.config import PipelineConfig
from erp_client.connectivity import ConnectivityMonitor
from erp_client.memory import InMemoryCredentialStore, InMemoryOperationStore
from erp_client.schemas import TokenPair

BASE_URL = "http://erp.test"


class FakeERPServer:
    """MockTransport handler standing in for the ERP API.

    Only ``valid_token`` is accepted; renewal hands it out in exchange
    for ``refresh_token``. Shipments live in ``self.shipments``.
    """

    def __init__(self) -> None:
        self.valid_token = "fresh-token"
        self.refresh_token = "refresh-1"
        self.rotated_refresh_token = "refresh-2"
        self.offline = False
        self.fail_renewal = False
        self.unauthorized_code = "token_expired"
        self.renew_calls = 0
        self.requests: list[tuple[str, str]] = []
        self.shipments: dict[str, dict] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.offline:
            raise httpx.ConnectError("Network is unreachable", request=request)

        path = request.url.path
        if path == "/auth/refresh-token":
            return self._renew(request)

        self.requests.append((request.method, path))
        if request.headers.get("Authorization") != f"Bearer {self.valid_token}":
            return httpx.Response(401, json={"code": self.unauthorized_code})

        parts = [part for part in path.split("/") if part]
        if not parts or parts[0] != "shipments":
            return httpx.Response(404, json={"detail": "Not found"})
        if len(parts) == 1:
            return self._collection(request)
        return self._item(request, parts[1])

    def _renew(self, request: httpx.Request) -> httpx.Response:
        self.renew_calls += 1
        body = json.loads(request.content)
        if self.fail_renewal or body.get("refreshToken") != self.refresh_token:
            return httpx.Response(401, json={"code": "refresh_rejected"})
        self.refresh_token = self.rotated_refresh_token
        return httpx.Response(
            200,
            json={
                "accessToken": self.valid_token,
                "refreshToken": self.refresh_token,
            },
        )

    def _collection(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json=list(self.shipments.values()))
        data = json.loads(request.content)
        if data.get("invalid"):
            return httpx.Response(422, json={"detail": "Invalid shipment"})
        if data["id"] in self.shipments:
            return httpx.Response(
                409, json={"detail": "Shipment already exists"}
            )
        self.shipments[data["id"]] = data
        return httpx.Response(201, json=data)

    def _item(self, request: httpx.Request, shipment_id: str) -> httpx.Response:
        shipment = self.shipments.get(shipment_id)
        if shipment is None:
            return httpx.Response(404, json={"detail": "Shipment not found"})
        if request.method == "GET":
            return httpx.Response(200, json=shipment)
        if request.method == "DELETE":
            del self.shipments[shipment_id]
            return httpx.Response(204)
        shipment.update(json.loads(request.content))
        return httpx.Response(200, json=shipment)


@pytest.fixture()
def config() -> PipelineConfig:
    return PipelineConfig(
        base_url=BASE_URL,
        refresh_timeout=1.0,
        queue_backoff_seconds=0,
    )


@pytest.fixture()
def server() -> FakeERPServer:
    return FakeERPServer()


@pytest.fixture()
async def http(server):
    async with httpx.AsyncClient(
        base_url=BASE_URL, transport=httpx.MockTransport(server)
    ) as client:
        yield client


@pytest.fixture()
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore(
        TokenPair(access_token="stale-token", refresh_token="refresh-1")
    )


@pytest.fixture()
def operation_store() -> InMemoryOperationStore:
    return InMemoryOperationStore()


@pytest.fixture()
def connectivity() -> ConnectivityMonitor:
    return ConnectivityMonitor()


@pytest.fixture()
async def client(
    config, http, credential_store, operation_store, connectivity
):
    pipeline = ResilientClient.from_config(
        config,
        credential_store=credential_store,
        operation_store=operation_store,
        http=http,
        connectivity=connectivity,
    )
    await pipeline.guard.load()
    yield pipeline
    await pipeline.aclose()


@pytest.fixture()
async def async_engine():
    """Create an in-memory aiosqlite async engine."""
    sa = pytest.importorskip("sqlalchemy")  # noqa: F841
    from sqlalchemy.ext.asyncio import create_async_engine

    from erp_client.contrib.sqlalchemy.models import Base

    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture()
async def async_session_factory(async_engine):
    """Create an async session factory bound to the in-memory engine."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    factory = async_sessionmaker(
        async_engine, class_=AsyncSession, expire_on_commit=False
    )
    yield factory


@pytest.fixture()
def sqlalchemy_operation_store(async_session_factory):
    """Create an SQLAlchemyOperationStore."""
    from erp_client.contrib.sqlalchemy.operation_store import (
        SQLAlchemyOperationStore,
    )

    return SQLAlchemyOperationStore(async_session_factory)


@pytest.fixture()
def sqlalchemy_credential_store(async_session_factory):
    """Create an SQLAlchemyCredentialStore."""
    from erp_client.contrib.sqlalchemy.credential_store import (
        SQLAlchemyCredentialStore,
    )

    return SQLAlchemyCredentialStore(async_session_factory)
