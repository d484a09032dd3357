"""In-process ERP backend simulator with a switchable network outage."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

# --- Simulator state (in-memory, ephemeral) ---

_sim_state: dict[str, Any] = {
    "offline": False,
    "access_tokens": set(),
    "refresh_tokens": set(),
}
_sim_shipments: dict[str, dict[str, Any]] = {}

DEMO_USER = ("dispatcher", "dispatcher")


def reset_simulator() -> None:
    _sim_state["offline"] = False
    _sim_state["access_tokens"].clear()
    _sim_state["refresh_tokens"].clear()
    _sim_shipments.clear()


def _issue_tokens() -> dict[str, str]:
    access_token = f"access-{uuid4().hex[:12]}"
    refresh_token = f"refresh-{uuid4().hex[:12]}"
    _sim_state["access_tokens"].add(access_token)
    _sim_state["refresh_tokens"].add(refresh_token)
    return {"accessToken": access_token, "refreshToken": refresh_token}


# --- Transport ---


class SimTransport(httpx.AsyncBaseTransport):
    """Routes requests to the simulator, failing them during an outage."""

    def __init__(self) -> None:
        self._app_transport = httpx.ASGITransport(app=sim_app)

    async def handle_async_request(
        self, request: httpx.Request
    ) -> httpx.Response:
        if _sim_state["offline"]:
            raise httpx.ConnectError(
                "ERP simulator is offline", request=request
            )
        return await self._app_transport.handle_async_request(request)


# --- Simulator API ---


class SimUnauthorized(Exception):
    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code


class LoginRequest(BaseModel):
    username: str
    password: str


class RefreshRequest(BaseModel):
    refreshToken: str  # noqa: N815


class ShipmentIn(BaseModel):
    id: str
    destination: str = ""
    weight_kg: float = 1.0
    status: str = "created"


class ShipmentPatch(BaseModel):
    destination: str | None = None
    weight_kg: float | None = None
    status: str | None = None


sim_app = FastAPI(title="ERP simulator")


@sim_app.exception_handler(SimUnauthorized)
async def _unauthorized(request: Request, exc: SimUnauthorized) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"code": exc.code, "detail": "Unauthorized"},
    )


async def require_token(request: Request) -> None:
    header = request.headers.get("Authorization", "")
    token = header.removeprefix("Bearer ")
    if token not in _sim_state["access_tokens"]:
        raise SimUnauthorized("token_expired")


@sim_app.post("/auth/login")
async def sim_login(body: LoginRequest) -> dict[str, str]:
    if (body.username, body.password) != DEMO_USER:
        raise SimUnauthorized("bad_credentials")
    return _issue_tokens()


@sim_app.post("/auth/refresh-token")
async def sim_refresh(body: RefreshRequest) -> dict[str, str]:
    """Rotate the refresh token and hand out a new access token."""
    if body.refreshToken not in _sim_state["refresh_tokens"]:
        raise SimUnauthorized("token_revoked")
    _sim_state["refresh_tokens"].discard(body.refreshToken)
    return _issue_tokens()


@sim_app.get("/shipments", dependencies=[Depends(require_token)])
async def sim_list_shipments() -> list[dict[str, Any]]:
    return list(_sim_shipments.values())


@sim_app.post(
    "/shipments",
    status_code=201,
    dependencies=[Depends(require_token)],
)
async def sim_create_shipment(body: ShipmentIn) -> dict[str, Any]:
    if body.id in _sim_shipments:
        raise HTTPException(status_code=409, detail="Shipment already exists")
    _sim_shipments[body.id] = body.model_dump()
    return _sim_shipments[body.id]


@sim_app.get("/shipments/{shipment_id}", dependencies=[Depends(require_token)])
async def sim_get_shipment(shipment_id: str) -> dict[str, Any]:
    return _get_or_404(shipment_id)


@sim_app.patch(
    "/shipments/{shipment_id}", dependencies=[Depends(require_token)]
)
async def sim_update_shipment(
    shipment_id: str, body: ShipmentPatch
) -> dict[str, Any]:
    shipment = _get_or_404(shipment_id)
    shipment.update(body.model_dump(exclude_none=True))
    return shipment


@sim_app.delete(
    "/shipments/{shipment_id}",
    status_code=204,
    dependencies=[Depends(require_token)],
)
async def sim_delete_shipment(shipment_id: str) -> Response:
    _get_or_404(shipment_id)
    del _sim_shipments[shipment_id]
    return Response(status_code=204)


@sim_app.post("/admin/expire-tokens")
async def sim_expire_tokens() -> dict[str, int]:
    """Invalidate every access token so the next call must renew."""
    expired = len(_sim_state["access_tokens"])
    _sim_state["access_tokens"].clear()
    return {"expired": expired}


def _get_or_404(shipment_id: str) -> dict[str, Any]:
    shipment = _sim_shipments.get(shipment_id)
    if shipment is None:
        raise HTTPException(status_code=404, detail="Shipment not found")
    return shipment
