"""Replay of queued operations, one entity sub-queue at a time."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum

import httpx

from erp_client.exceptions import NetworkUnreachable, ValidationRejected
from erp_client.protocols import OperationStore, Replay
from erp_client.schemas import (
    DrainReport,
    OperationStatus,
    QueuedOperation,
    ReconciliationEvent,
)

logger = logging.getLogger(__name__)

CONFLICT_STATUS = 409
REJECTION_STATUSES = frozenset({400, 404, 410, 422})

Notify = Callable[[ReconciliationEvent], Awaitable[None]]
Prepare = Callable[[QueuedOperation], Awaitable[QueuedOperation]]


class ReplayOutcome(StrEnum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CONFLICT = "conflict"
    DEFERRED = "deferred"


@dataclass
class ReplayResult:
    outcome: ReplayOutcome
    status_code: int | None = None
    detail: str = ""


def compute_next_attempt_at(
    attempt: int,
    backoff_seconds: int,
) -> datetime:
    """Compute when an operation may be replayed again.

    delay = backoff_seconds * 2^(attempt - 1)
    """
    delay = backoff_seconds * (2 ** (attempt - 1))
    return datetime.now(tz=UTC) + timedelta(seconds=delay)


async def replay_operation(
    operation: QueuedOperation,
    replay: Replay,
) -> ReplayResult:
    """Replay one operation and classify what the server said."""
    try:
        response = await replay(operation)
    except NetworkUnreachable as exc:
        return ReplayResult(ReplayOutcome.DEFERRED, detail=str(exc))
    except ValidationRejected as exc:
        status_code = (
            exc.response.status_code if exc.response is not None else None
        )
        return ReplayResult(ReplayOutcome.FAILED, status_code, str(exc))

    status_code = response.status_code
    if response.is_success:
        return ReplayResult(ReplayOutcome.CONFIRMED, status_code)
    if status_code == CONFLICT_STATUS:
        return ReplayResult(
            ReplayOutcome.CONFLICT, status_code, _detail(response)
        )
    if status_code in REJECTION_STATUSES:
        return ReplayResult(ReplayOutcome.FAILED, status_code, _detail(response))
    return ReplayResult(
        ReplayOutcome.DEFERRED,
        status_code,
        f"Server answered {status_code}",
    )


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("message") or body)
    return str(body)


async def replay_entity(
    operations: list[QueuedOperation],
    *,
    store: OperationStore,
    replay: Replay,
    notify: Notify,
    report: DrainReport,
    max_attempts: int,
    backoff_seconds: int,
    prepare: Prepare | None = None,
) -> None:
    """Replay the sub-queue of a single entity strictly in order.

    Stops at the first operation that cannot be delivered yet, so a
    later mutation never overtakes an earlier one.
    """
    now = datetime.now(tz=UTC)
    for index, operation in enumerate(operations):
        remaining = [op.id for op in operations[index:]]

        if operation.next_attempt_at is not None and (
            operation.next_attempt_at > now
        ):
            logger.debug(
                "Operation %s backing off until %s",
                operation.id,
                operation.next_attempt_at,
            )
            report.deferred.extend(remaining)
            return

        if prepare is not None:
            operation = await prepare(operation)

        result = await replay_operation(operation, replay)

        if result.outcome is ReplayOutcome.CONFIRMED:
            await store.remove(operation.id)
            report.confirmed.append(operation.id)
            logger.info(
                "Operation %s (%s %s %s) confirmed",
                operation.id,
                operation.kind,
                operation.entity_type,
                operation.entity_id,
            )
            await notify(
                ReconciliationEvent(
                    type="confirmed",
                    operation=operation,
                    status_code=result.status_code,
                )
            )
            continue

        if result.outcome is not ReplayOutcome.DEFERRED:
            await _mark_failed(
                operation,
                result,
                store=store,
                notify=notify,
                report=report,
                event_type=(
                    "conflict"
                    if result.outcome is ReplayOutcome.CONFLICT
                    else "failed"
                ),
            )
            continue

        operation.attempts += 1
        operation.last_error = result.detail
        if operation.attempts >= max_attempts:
            logger.warning(
                "Operation %s exhausted after %d attempts: %s",
                operation.id,
                operation.attempts,
                result.detail,
            )
            await _mark_failed(
                operation,
                result,
                store=store,
                notify=notify,
                report=report,
                event_type="failed",
            )
            report.deferred.extend(remaining[1:])
            return

        if result.status_code is not None:
            operation.next_attempt_at = compute_next_attempt_at(
                operation.attempts, backoff_seconds
            )
        await store.update(operation)
        logger.info(
            "Operation %s attempt %d deferred: %s",
            operation.id,
            operation.attempts,
            result.detail,
        )
        report.deferred.extend(remaining)
        return


async def _mark_failed(
    operation: QueuedOperation,
    result: ReplayResult,
    *,
    store: OperationStore,
    notify: Notify,
    report: DrainReport,
    event_type: str,
) -> None:
    operation.status = OperationStatus.FAILED
    operation.last_error = result.detail or operation.last_error
    await store.update(operation)
    report.failed.append(operation.id)
    logger.warning(
        "Operation %s (%s %s %s) %s on replay: %s",
        operation.id,
        operation.kind,
        operation.entity_type,
        operation.entity_id,
        event_type,
        result.detail,
    )
    await notify(
        ReconciliationEvent(
            type=event_type,
            operation=operation,
            status_code=result.status_code,
            detail=result.detail,
        )
    )
