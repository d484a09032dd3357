"""Storage and collaborator protocols used by the pipeline."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

import httpx

from erp_client.schemas import QueuedOperation, ReconciliationEvent, TokenPair


@runtime_checkable
class CredentialStore(Protocol):
    """Persisted home of the access and renewal credentials."""

    async def load(self) -> TokenPair | None: ...

    async def save(self, tokens: TokenPair) -> None: ...

    async def clear(self) -> None: ...


@runtime_checkable
class OperationStore(Protocol):
    """Storage abstraction for the durable operation queue.

    ``list_pending`` and ``list_failed`` return operations in
    enqueue order.
    """

    async def add(self, operation: QueuedOperation) -> None: ...

    async def get(self, operation_id: str) -> QueuedOperation | None: ...

    async def list_pending(self) -> list[QueuedOperation]: ...

    async def list_failed(self) -> list[QueuedOperation]: ...

    async def update(self, operation: QueuedOperation) -> None: ...

    async def remove(self, operation_id: str) -> bool: ...


@runtime_checkable
class TokenRenewer(Protocol):
    """Exchanges a renewal credential for a fresh token pair."""

    async def renew(self, refresh_token: str) -> TokenPair: ...


Replay = Callable[[QueuedOperation], Awaitable[httpx.Response]]
Resend = Callable[[httpx.Request, int], Awaitable[httpx.Response]]
ReconciliationListener = Callable[
    [ReconciliationEvent], Awaitable[None] | None
]
