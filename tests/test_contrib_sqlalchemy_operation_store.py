"""SQLAlchemy operation store integration tests with real aiosqlite DB."""

from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from erp_client.contrib.sqlalchemy.models import Base
from erp_client.contrib.sqlalchemy.operation_store import (
    SQLAlchemyOperationStore,
)
from erp_client.queue import OperationQueue
from erp_client.schemas import (
    EntityType,
    OperationKind,
    OperationStatus,
    QueuedOperation,
)


def _operation(entity_id: str | None = "S1", **fields) -> QueuedOperation:
    return QueuedOperation(
        kind=OperationKind.UPDATE if entity_id else OperationKind.CREATE,
        entity_type=EntityType.SHIPMENT,
        entity_id=entity_id,
        method="PUT" if entity_id else "POST",
        url="http://erp.test/shipments",
        payload=fields.pop("payload", {"status": "picked_up"}),
        **fields,
    )


async def test_add_and_get(sqlalchemy_operation_store) -> None:
    operation = _operation(params={"v": "2"})
    await sqlalchemy_operation_store.add(operation)

    stored = await sqlalchemy_operation_store.get(operation.id)

    assert stored == operation
    assert stored.enqueued_at.tzinfo is not None


async def test_get_missing_returns_none(sqlalchemy_operation_store) -> None:
    assert await sqlalchemy_operation_store.get("nope") is None


async def test_list_pending_in_enqueue_order(
    sqlalchemy_operation_store,
) -> None:
    now = datetime.now(tz=UTC)
    late = _operation(payload={"n": 2}, enqueued_at=now)
    early = _operation(payload={"n": 1}, enqueued_at=now - timedelta(1))
    tie = _operation(payload={"n": 3}, enqueued_at=now)
    for operation in (late, early, tie):
        await sqlalchemy_operation_store.add(operation)

    pending = await sqlalchemy_operation_store.list_pending()

    assert [op.payload["n"] for op in pending] == [1, 2, 3]


async def test_update_mutable_fields(sqlalchemy_operation_store) -> None:
    operation = _operation()
    await sqlalchemy_operation_store.add(operation)

    retry_at = datetime.now(tz=UTC) + timedelta(minutes=1)
    operation.attempts = 2
    operation.last_error = "Server answered 503"
    operation.next_attempt_at = retry_at
    await sqlalchemy_operation_store.update(operation)

    stored = await sqlalchemy_operation_store.get(operation.id)
    assert stored.attempts == 2
    assert stored.last_error == "Server answered 503"
    assert stored.next_attempt_at == retry_at


async def test_failed_operations_leave_pending_list(
    sqlalchemy_operation_store,
) -> None:
    operation = _operation()
    await sqlalchemy_operation_store.add(operation)
    operation.status = OperationStatus.FAILED
    await sqlalchemy_operation_store.update(operation)

    assert await sqlalchemy_operation_store.list_pending() == []
    failed = await sqlalchemy_operation_store.list_failed()
    assert [op.id for op in failed] == [operation.id]
    assert failed[0].status is OperationStatus.FAILED


async def test_update_missing_is_noop(sqlalchemy_operation_store) -> None:
    await sqlalchemy_operation_store.update(_operation())
    assert await sqlalchemy_operation_store.list_pending() == []


async def test_remove(sqlalchemy_operation_store) -> None:
    operation = _operation()
    await sqlalchemy_operation_store.add(operation)

    assert await sqlalchemy_operation_store.remove(operation.id) is True
    assert await sqlalchemy_operation_store.remove(operation.id) is False
    assert await sqlalchemy_operation_store.get(operation.id) is None


async def test_create_without_entity_id(sqlalchemy_operation_store) -> None:
    operation = _operation(entity_id=None, payload=[{"line": 1}])
    await sqlalchemy_operation_store.add(operation)

    stored = await sqlalchemy_operation_store.get(operation.id)
    assert stored.entity_id is None
    assert stored.kind is OperationKind.CREATE
    assert stored.payload == [{"line": 1}]


async def test_queue_survives_restart(tmp_path) -> None:
    url = f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}"

    engine = create_async_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    queue = OperationQueue(
        SQLAlchemyOperationStore(async_sessionmaker(engine))
    )
    first = await queue.enqueue(_operation(payload={"n": 1}))
    second = await queue.enqueue(_operation(payload={"n": 2}))
    await engine.dispose()

    engine = create_async_engine(url)
    restarted = OperationQueue(
        SQLAlchemyOperationStore(async_sessionmaker(engine))
    )
    pending = await restarted.pending()
    await engine.dispose()

    assert [op.id for op in pending] == [
        first.operation_id,
        second.operation_id,
    ]
    assert [op.payload for op in pending] == [{"n": 1}, {"n": 2}]
