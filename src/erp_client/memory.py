"""In-process stores for credentials and queued operations.

These do not survive a restart; use the SQLAlchemy stores in
``erp_client.contrib.sqlalchemy`` for that.
"""

from __future__ import annotations

import asyncio

from erp_client.schemas import OperationStatus, QueuedOperation, TokenPair


class InMemoryCredentialStore:
    def __init__(self, tokens: TokenPair | None = None) -> None:
        self._tokens = tokens
        self._lock = asyncio.Lock()

    async def load(self) -> TokenPair | None:
        return self._tokens

    async def save(self, tokens: TokenPair) -> None:
        async with self._lock:
            self._tokens = tokens

    async def clear(self) -> None:
        async with self._lock:
            self._tokens = None


class InMemoryOperationStore:
    def __init__(self) -> None:
        self._items: dict[str, QueuedOperation] = {}
        self._lock = asyncio.Lock()

    def _ordered(self, status: OperationStatus) -> list[QueuedOperation]:
        # dict keeps insertion order, sorted() is stable
        matching = [op for op in self._items.values() if op.status == status]
        return [
            op.model_copy()
            for op in sorted(matching, key=lambda op: op.enqueued_at)
        ]

    async def add(self, operation: QueuedOperation) -> None:
        async with self._lock:
            self._items[operation.id] = operation.model_copy()

    async def get(self, operation_id: str) -> QueuedOperation | None:
        operation = self._items.get(operation_id)
        return operation.model_copy() if operation is not None else None

    async def list_pending(self) -> list[QueuedOperation]:
        return self._ordered(OperationStatus.PENDING)

    async def list_failed(self) -> list[QueuedOperation]:
        return self._ordered(OperationStatus.FAILED)

    async def update(self, operation: QueuedOperation) -> None:
        async with self._lock:
            if operation.id in self._items:
                self._items[operation.id] = operation.model_copy()

    async def remove(self, operation_id: str) -> bool:
        async with self._lock:
            return self._items.pop(operation_id, None) is not None
