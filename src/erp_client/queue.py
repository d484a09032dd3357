"""Durable Operation Queue.

Mutating calls that cannot reach the server are persisted here as the
caller's original intent (kind, entity, payload) and replayed when
connectivity returns. Operations on the same entity replay strictly in
enqueue order; different entities drain independently.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
from collections.abc import Callable

import httpx

from erp_client.config import PipelineConfig
from erp_client.exceptions import OperationNotFoundError
from erp_client.protocols import (
    OperationStore,
    ReconciliationListener,
    Replay,
)
from erp_client.replay import Prepare, replay_entity
from erp_client.schemas import (
    METHOD_KINDS,
    DrainReport,
    EntityType,
    MutationIntent,
    OperationKind,
    OperationStatus,
    QueuedAck,
    QueuedOperation,
    ReconciliationEvent,
)

logger = logging.getLogger(__name__)

EntityKey = tuple[EntityType, str | None]


class OperationQueue:
    """Persisted FIFO of mutations waiting for connectivity."""

    def __init__(
        self,
        store: OperationStore,
        *,
        max_attempts: int = 5,
        backoff_seconds: int = 60,
    ) -> None:
        self.store = store
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._listeners: list[ReconciliationListener] = []
        self._entity_locks: dict[EntityKey, asyncio.Lock] = {}
        self._lock_users: dict[EntityKey, int] = {}
        self._sync_waiters: dict[
            str, list[asyncio.Future[ReconciliationEvent]]
        ] = {}

    @classmethod
    def from_config(
        cls, config: PipelineConfig, *, store: OperationStore
    ) -> OperationQueue:
        return cls(
            store,
            max_attempts=config.queue_max_attempts,
            backoff_seconds=config.queue_backoff_seconds,
        )

    def classify(
        self,
        request: httpx.Request,
        intent: MutationIntent | None,
    ) -> QueuedOperation | None:
        """Turn a request that could not be delivered into an operation.

        Returns ``None`` for anything that must not be queued: reads,
        calls without an intent, updates or deletes that name no entity
        and bodies that are not JSON.
        """
        method = request.method.upper()
        if intent is None or method not in METHOD_KINDS:
            return None

        payload = None
        if request.content:
            try:
                payload = json.loads(request.content)
            except ValueError:
                logger.debug(
                    "%s %s has a non-JSON body, not queueing",
                    method,
                    request.url.path,
                )
                return None

        kind = intent.kind or METHOD_KINDS[method]
        if kind is not OperationKind.CREATE and intent.entity_id is None:
            logger.debug(
                "%s %s names no entity id for a %s, not queueing",
                method,
                request.url.path,
                kind,
            )
            return None
        return QueuedOperation(
            kind=kind,
            entity_type=intent.entity_type,
            entity_id=(
                None if kind is OperationKind.CREATE else intent.entity_id
            ),
            payload=payload,
            method=method,
            url=str(request.url.copy_with(query=None)),
            params=dict(request.url.params),
        )

    async def enqueue(self, operation: QueuedOperation) -> QueuedAck:
        """Persist ``operation`` and acknowledge it provisionally."""
        await self.store.add(operation)
        logger.warning(
            "Queued %s %s %s for replay as operation %s",
            operation.kind,
            operation.entity_type,
            operation.entity_id or "(new)",
            operation.id,
        )
        return QueuedAck.from_operation(operation)

    async def drain(
        self,
        replay: Replay,
        *,
        prepare: Prepare | None = None,
    ) -> DrainReport:
        """Replay every pending operation.

        Each entity's operations replay serially; entities run
        concurrently. The first error that is not a replay outcome
        (e.g. a forced logout) is raised once all entities stopped.
        """
        pending = await self.store.list_pending()
        keys = list(dict.fromkeys(op.entity_key for op in pending))
        report = DrainReport()
        if not keys:
            return report

        logger.info(
            "Draining %d operation(s) across %d entities",
            len(pending),
            len(keys),
        )
        results = await asyncio.gather(
            *(
                self._drain_entity(key, replay, prepare, report)
                for key in keys
            ),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return report

    async def _drain_entity(
        self,
        key: EntityKey,
        replay: Replay,
        prepare: Prepare | None,
        report: DrainReport,
    ) -> None:
        lock = self._entity_locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                # re-read under the lock: a concurrent drain may have
                # confirmed some of these already
                operations = [
                    op
                    for op in await self.store.list_pending()
                    if op.entity_key == key
                ]
                if not operations:
                    return
                await replay_entity(
                    operations,
                    store=self.store,
                    replay=replay,
                    notify=self._notify,
                    report=report,
                    max_attempts=self.max_attempts,
                    backoff_seconds=self.backoff_seconds,
                    prepare=prepare,
                )
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._entity_locks[key]

    async def purge_failed(
        self,
        operation_ids: list[str] | None = None,
        *,
        resubmit: bool = False,
    ) -> int:
        """Discard failed operations, or put them back in line.

        Re-submitted operations keep their original ``enqueued_at`` and
        therefore their place relative to later operations on the same
        entity.
        """
        failed = await self.store.list_failed()
        if operation_ids is not None:
            wanted = set(operation_ids)
            failed = [op for op in failed if op.id in wanted]

        for operation in failed:
            if resubmit:
                operation.status = OperationStatus.PENDING
                operation.attempts = 0
                operation.last_error = None
                operation.next_attempt_at = None
                await self.store.update(operation)
            else:
                await self.store.remove(operation.id)

        logger.info(
            "%s %d failed operation(s)",
            "Re-submitted" if resubmit else "Purged",
            len(failed),
        )
        return len(failed)

    async def cancel(self, operation_id: str) -> None:
        """Remove a queued operation before it is drained."""
        if not await self.store.remove(operation_id):
            raise OperationNotFoundError(operation_id)
        for waiter in self._sync_waiters.pop(operation_id, []):
            waiter.cancel()
        logger.info("Operation %s cancelled", operation_id)

    async def wait_for(self, operation_id: str) -> ReconciliationEvent:
        """Suspend until ``operation_id`` is confirmed or fails."""
        waiter: asyncio.Future[ReconciliationEvent] = (
            asyncio.get_running_loop().create_future()
        )
        waiters = self._sync_waiters.setdefault(operation_id, [])
        waiters.append(waiter)
        try:
            operation = await self.store.get(operation_id)
            if waiter.done():
                # reconciled while the store was being read
                return waiter.result()
            if operation is None:
                raise OperationNotFoundError(operation_id)
            if operation.status is OperationStatus.FAILED:
                return ReconciliationEvent(
                    type="failed",
                    operation=operation,
                    detail=operation.last_error or "",
                )
            return await waiter
        finally:
            with contextlib.suppress(ValueError):
                waiters.remove(waiter)
            if not waiters and self._sync_waiters.get(operation_id) is waiters:
                del self._sync_waiters[operation_id]

    def subscribe(
        self, listener: ReconciliationListener
    ) -> Callable[[], None]:
        """Register a reconciliation listener; returns an unsubscriber."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    async def pending(self) -> list[QueuedOperation]:
        return await self.store.list_pending()

    async def failed(self) -> list[QueuedOperation]:
        return await self.store.list_failed()

    async def size(self) -> int:
        return len(await self.store.list_pending())

    async def _notify(self, event: ReconciliationEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Reconciliation listener failed for operation %s",
                    event.operation.id,
                )
        for waiter in self._sync_waiters.pop(event.operation.id, []):
            if not waiter.done():
                waiter.set_result(event)
