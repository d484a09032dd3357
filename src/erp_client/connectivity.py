"""Online/offline signal fed by an external collaborator."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

RestoredListener = Callable[[], Awaitable[object]]


class ConnectivityMonitor:
    """Tracks reachability as reported from outside; never polls.

    Listeners run as tasks whenever the state flips from offline to
    online.
    """

    def __init__(self, *, online: bool = True) -> None:
        self._online = online
        self._listeners: list[RestoredListener] = []
        self._tasks: set[asyncio.Task[object]] = set()

    @property
    def online(self) -> bool:
        return self._online

    def subscribe(self, listener: RestoredListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        restored = online and not self._online
        self._online = online
        if not restored:
            if not online:
                logger.info("Connectivity lost")
            return

        logger.info(
            "Connectivity restored, notifying %d listener(s)",
            len(self._listeners),
        )
        for listener in list(self._listeners):
            task = asyncio.ensure_future(listener())
            self._tasks.add(task)
            task.add_done_callback(self._finished)

    async def wait_idle(self) -> None:
        """Wait for every listener started by a restore signal."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _finished(self, task: asyncio.Task[object]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Connectivity listener failed: %r",
                exc,
                exc_info=exc,
            )
