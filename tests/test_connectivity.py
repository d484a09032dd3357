"""Connectivity monitor tests."""

import asyncio
from unittest.mock import AsyncMock

from erp_client.connectivity import ConnectivityMonitor


class TestConnectivityMonitor:
    def test_starts_online_by_default(self) -> None:
        assert ConnectivityMonitor().online is True
        assert ConnectivityMonitor(online=False).online is False

    async def test_restore_notifies_listeners(self) -> None:
        monitor = ConnectivityMonitor(online=False)
        listener = AsyncMock()
        monitor.subscribe(listener)

        monitor.set_online(True)
        await monitor.wait_idle()

        listener.assert_awaited_once()
        assert monitor.online is True

    async def test_repeated_online_signal_is_not_a_transition(self) -> None:
        monitor = ConnectivityMonitor(online=False)
        listener = AsyncMock()
        monitor.subscribe(listener)

        monitor.set_online(True)
        monitor.set_online(True)
        await monitor.wait_idle()

        assert listener.await_count == 1

    async def test_going_offline_notifies_nobody(self) -> None:
        monitor = ConnectivityMonitor()
        listener = AsyncMock()
        monitor.subscribe(listener)

        monitor.set_online(False)
        await monitor.wait_idle()

        listener.assert_not_awaited()
        assert monitor.online is False

    async def test_unsubscribe(self) -> None:
        monitor = ConnectivityMonitor(online=False)
        listener = AsyncMock()
        unsubscribe = monitor.subscribe(listener)
        unsubscribe()

        monitor.set_online(True)
        await monitor.wait_idle()

        listener.assert_not_awaited()

    async def test_failing_listener_is_logged(self, caplog) -> None:
        monitor = ConnectivityMonitor(online=False)
        healthy = AsyncMock()
        monitor.subscribe(AsyncMock(side_effect=RuntimeError("boom")))
        monitor.subscribe(healthy)

        monitor.set_online(True)
        await monitor.wait_idle()

        healthy.assert_awaited_once()
        assert "Connectivity listener failed" in caplog.text

    async def test_wait_idle_waits_for_slow_listener(self) -> None:
        monitor = ConnectivityMonitor(online=False)
        finished = []

        async def slow() -> None:
            await asyncio.sleep(0.01)
            finished.append(True)

        monitor.subscribe(slow)
        monitor.set_online(True)
        assert finished == []

        await monitor.wait_idle()
        assert finished == [True]
