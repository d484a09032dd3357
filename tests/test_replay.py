"""Replay classification and backoff tests."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from erp_client.exceptions import (
    ForcedLogoutError,
    NetworkUnreachable,
    ValidationRejected,
)
from erp_client.replay import (
    ReplayOutcome,
    compute_next_attempt_at,
    replay_entity,
    replay_operation,
)
from erp_client.schemas import (
    DrainReport,
    EntityType,
    OperationKind,
    QueuedOperation,
)


def _operation(**fields) -> QueuedOperation:
    return QueuedOperation(
        kind=OperationKind.UPDATE,
        entity_type=EntityType.CUSTOMER,
        entity_id="C1",
        method="PATCH",
        url="http://erp.test/customers/C1",
        payload={"name": "ACME"},
        **fields,
    )


class TestComputeNextAttemptAt:
    def test_attempt_1_gives_base_delay(self) -> None:
        before = datetime.now(tz=UTC)
        result = compute_next_attempt_at(attempt=1, backoff_seconds=60)
        after = datetime.now(tz=UTC)

        assert (
            before + timedelta(seconds=60)
            <= result
            <= after + timedelta(seconds=60)
        )

    def test_attempt_3_gives_quadruple_delay(self) -> None:
        before = datetime.now(tz=UTC)
        result = compute_next_attempt_at(attempt=3, backoff_seconds=60)
        after = datetime.now(tz=UTC)

        assert (
            before + timedelta(seconds=240)
            <= result
            <= after + timedelta(seconds=240)
        )

    def test_zero_backoff_is_immediately_due(self) -> None:
        assert compute_next_attempt_at(
            attempt=4, backoff_seconds=0
        ) <= datetime.now(tz=UTC)


class TestReplayOperation:
    @pytest.mark.parametrize(
        ("status_code", "outcome"),
        [
            (200, ReplayOutcome.CONFIRMED),
            (201, ReplayOutcome.CONFIRMED),
            (204, ReplayOutcome.CONFIRMED),
            (409, ReplayOutcome.CONFLICT),
            (404, ReplayOutcome.FAILED),
            (410, ReplayOutcome.FAILED),
            (500, ReplayOutcome.DEFERRED),
            (503, ReplayOutcome.DEFERRED),
            (429, ReplayOutcome.DEFERRED),
        ],
    )
    async def test_status_classification(
        self, status_code: int, outcome: ReplayOutcome
    ) -> None:
        replay = AsyncMock(return_value=httpx.Response(status_code))
        result = await replay_operation(_operation(), replay)
        assert result.outcome is outcome
        assert result.status_code == status_code

    async def test_conflict_detail_from_body(self) -> None:
        replay = AsyncMock(
            return_value=httpx.Response(409, json={"message": "stale version"})
        )
        result = await replay_operation(_operation(), replay)
        assert result.detail == "stale version"

    async def test_unreachable_is_deferred_without_status(self) -> None:
        replay = AsyncMock(side_effect=NetworkUnreachable("no route"))
        result = await replay_operation(_operation(), replay)
        assert result.outcome is ReplayOutcome.DEFERRED
        assert result.status_code is None
        assert result.detail == "no route"

    async def test_validation_rejection_fails(self) -> None:
        replay = AsyncMock(
            side_effect=ValidationRejected(
                "bad payload", httpx.Response(400)
            )
        )
        result = await replay_operation(_operation(), replay)
        assert result.outcome is ReplayOutcome.FAILED
        assert result.status_code == 400

    async def test_forced_logout_propagates(self) -> None:
        replay = AsyncMock(side_effect=ForcedLogoutError("session gone"))
        with pytest.raises(ForcedLogoutError):
            await replay_operation(_operation(), replay)


class TestReplayEntity:
    @pytest.fixture()
    def store(self) -> AsyncMock:
        store = AsyncMock()
        store.remove = AsyncMock(return_value=True)
        store.update = AsyncMock()
        return store

    async def test_backing_off_operation_is_skipped(self, store) -> None:
        operation = _operation(
            next_attempt_at=datetime.now(tz=UTC) + timedelta(minutes=5)
        )
        replay = AsyncMock()
        report = DrainReport()

        await replay_entity(
            [operation],
            store=store,
            replay=replay,
            notify=AsyncMock(),
            report=report,
            max_attempts=5,
            backoff_seconds=60,
        )

        replay.assert_not_awaited()
        assert report.deferred == [operation.id]

    async def test_server_error_schedules_next_attempt(self, store) -> None:
        operation = _operation()
        later = _operation()
        replay = AsyncMock(return_value=httpx.Response(502))
        notify = AsyncMock()
        report = DrainReport()

        await replay_entity(
            [operation, later],
            store=store,
            replay=replay,
            notify=notify,
            report=report,
            max_attempts=5,
            backoff_seconds=60,
        )

        assert replay.await_count == 1
        updated = store.update.await_args.args[0]
        assert updated.attempts == 1
        assert updated.next_attempt_at > datetime.now(tz=UTC)
        assert report.deferred == [operation.id, later.id]
        notify.assert_not_awaited()

    async def test_confirmed_operation_is_removed(self, store) -> None:
        operation = _operation()
        notify = AsyncMock()
        report = DrainReport()

        await replay_entity(
            [operation],
            store=store,
            replay=AsyncMock(return_value=httpx.Response(200)),
            notify=notify,
            report=report,
            max_attempts=5,
            backoff_seconds=60,
        )

        store.remove.assert_awaited_once_with(operation.id)
        assert report.confirmed == [operation.id]
        event = notify.await_args.args[0]
        assert event.type == "confirmed"
