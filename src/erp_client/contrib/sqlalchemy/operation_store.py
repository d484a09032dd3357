"""SQLAlchemy operation store."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from erp_client.contrib.sqlalchemy.models import QueuedOperationModel
from erp_client.schemas import OperationStatus, QueuedOperation

_MUTABLE_FIELDS = ("attempts", "status", "last_error", "next_attempt_at")


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _to_operation(row: QueuedOperationModel) -> QueuedOperation:
    operation = QueuedOperation.model_validate(row)
    operation.enqueued_at = _aware(operation.enqueued_at)
    operation.next_attempt_at = _aware(operation.next_attempt_at)
    return operation


class SQLAlchemyOperationStore:
    """Persist queued operations in a SQLAlchemy table.

    Share one instance per process: writes are serialized through an
    internal lock.
    """

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        self.session_factory = session_factory
        self._lock = asyncio.Lock()

    async def add(self, operation: QueuedOperation) -> None:
        row = QueuedOperationModel(
            id=operation.id,
            kind=str(operation.kind),
            entity_type=str(operation.entity_type),
            entity_id=operation.entity_id,
            payload=operation.payload,
            method=operation.method,
            url=operation.url,
            params=operation.params,
            enqueued_at=operation.enqueued_at,
            attempts=operation.attempts,
            status=str(operation.status),
            last_error=operation.last_error,
            next_attempt_at=operation.next_attempt_at,
        )
        async with self._lock, self.session_factory() as session:
            session.add(row)
            await session.commit()

    async def get(self, operation_id: str) -> QueuedOperation | None:
        async with self.session_factory() as session:
            row = await session.scalar(
                select(QueuedOperationModel).where(
                    QueuedOperationModel.id == operation_id
                )
            )
            return _to_operation(row) if row is not None else None

    async def list_pending(self) -> list[QueuedOperation]:
        return await self._list(OperationStatus.PENDING)

    async def list_failed(self) -> list[QueuedOperation]:
        return await self._list(OperationStatus.FAILED)

    async def _list(self, status: OperationStatus) -> list[QueuedOperation]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(QueuedOperationModel)
                .where(QueuedOperationModel.status == str(status))
                .order_by(
                    QueuedOperationModel.enqueued_at,
                    QueuedOperationModel.seq,
                )
            )
            return [_to_operation(row) for row in result.scalars().all()]

    async def update(self, operation: QueuedOperation) -> None:
        async with self._lock, self.session_factory() as session:
            row = await session.scalar(
                select(QueuedOperationModel).where(
                    QueuedOperationModel.id == operation.id
                )
            )
            if row is None:
                return
            for field in _MUTABLE_FIELDS:
                value = getattr(operation, field)
                setattr(row, field, str(value) if field == "status" else value)
            row.payload = operation.payload
            await session.commit()

    async def remove(self, operation_id: str) -> bool:
        async with self._lock, self.session_factory() as session:
            result = await session.execute(
                delete(QueuedOperationModel).where(
                    QueuedOperationModel.id == operation_id
                )
            )
            await session.commit()
            return result.rowcount > 0
