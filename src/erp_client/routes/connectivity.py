"""Connectivity signal endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from erp_client.connectivity import ConnectivityMonitor
from erp_client.dependencies import get_connectivity
from erp_client.schemas import ConnectivityPayload

router = APIRouter()


def _require(monitor: ConnectivityMonitor | None) -> ConnectivityMonitor:
    if monitor is None:
        raise HTTPException(
            status_code=500,
            detail="Connectivity monitor not configured",
        )
    return monitor


@router.get("/sync/connectivity", response_model=ConnectivityPayload)
async def get_connectivity_state(
    monitor: ConnectivityMonitor | None = Depends(get_connectivity),
) -> ConnectivityPayload:
    return ConnectivityPayload(online=_require(monitor).online)


@router.put("/sync/connectivity", response_model=ConnectivityPayload)
async def set_connectivity_state(
    body: ConnectivityPayload,
    monitor: ConnectivityMonitor | None = Depends(get_connectivity),
) -> ConnectivityPayload:
    """Report an online/offline transition; going online starts a drain."""
    monitor = _require(monitor)
    monitor.set_online(body.online)
    return ConnectivityPayload(online=monitor.online)
