"""Queued operation endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from erp_client.client import ResilientClient
from erp_client.dependencies import get_client, get_queue
from erp_client.queue import OperationQueue
from erp_client.schemas import (
    DrainReport,
    OperationStatus,
    PurgeRequest,
    PurgeResponse,
    QueuedOperation,
)

router = APIRouter()


@router.get("/sync/health")
async def sync_health(
    queue: OperationQueue = Depends(get_queue),
) -> dict[str, str | int]:
    """Healthcheck with the current queue depth."""
    return {"status": "ok", "pending": await queue.size()}


@router.get("/sync/operations", response_model=list[QueuedOperation])
async def list_operations(
    status: OperationStatus = OperationStatus.PENDING,
    queue: OperationQueue = Depends(get_queue),
) -> list[QueuedOperation]:
    """List queued operations in replay order."""
    if status is OperationStatus.FAILED:
        return await queue.failed()
    return await queue.pending()


@router.delete("/sync/operations/{operation_id}")
async def cancel_operation(
    operation_id: str,
    queue: OperationQueue = Depends(get_queue),
) -> dict[str, str]:
    """Drop a queued operation before it is replayed."""
    await queue.cancel(operation_id)
    return {"id": operation_id, "status": "cancelled"}


@router.post("/sync/operations/purge", response_model=PurgeResponse)
async def purge_failed(
    body: PurgeRequest,
    queue: OperationQueue = Depends(get_queue),
) -> PurgeResponse:
    """Discard or re-submit operations stuck in the failed state."""
    count = await queue.purge_failed(
        body.operation_ids, resubmit=body.resubmit
    )
    return PurgeResponse(purged=count, resubmitted=body.resubmit)


@router.post("/sync/drain", response_model=DrainReport)
async def drain(
    client: ResilientClient = Depends(get_client),
) -> DrainReport:
    """Replay pending operations now."""
    return await client.drain()
