"""
Short-lived timers owned by a MatchView.

Three kinds: per-turn reconcile timers for throws whose turn never showed up,
a debounce window that coalesces bursts of scorer notifications into one leg
re-fetch, and the spectator fallback poller used while the live channel is down.
All of them are cancelled when the view closes.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


class DelayedTask:
    """Run a coroutine callback once after a delay, unless cancelled first."""

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        self._delay = delay
        self._callback = callback
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def start(self) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._run())

    def cancel(self) -> None:
        # A callback that cancels its own timer must not abort itself.
        if self.pending and self._task is not asyncio.current_task():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        try:
            await asyncio.sleep(self._delay)
            await self._callback()
        except asyncio.CancelledError:
            pass
        except (RuntimeError, OSError, ConnectionError, ValueError):  # fmt: skip
            logger.exception("timer callback failed")


class ReconcileScheduler:
    """At most one pending reconcile timer per turn id."""

    def __init__(self, delay: float, callback: Callable[[str], Awaitable[None]]) -> None:
        self._delay = delay
        self._callback = callback
        self._timers: dict[str, DelayedTask] = {}

    def __contains__(self, turn_id: object) -> bool:
        timer = self._timers.get(turn_id)  # type: ignore[arg-type]
        return timer is not None and timer.pending

    def schedule(self, turn_id: str) -> bool:
        """Start a timer for ``turn_id``; False if one is already pending."""
        if turn_id in self:
            return False

        async def fire() -> None:
            self._timers.pop(turn_id, None)
            await self._callback(turn_id)

        timer = DelayedTask(self._delay, fire)
        self._timers[turn_id] = timer
        timer.start()
        return True

    def cancel(self, turn_id: str) -> None:
        timer = self._timers.pop(turn_id, None)
        if timer is not None:
            timer.cancel()

    def cancel_all(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    def tasks(self) -> list[asyncio.Task[None]]:
        return [t.task for t in self._timers.values() if t.task is not None and not t.task.done()]


class RefreshDebouncer:
    """
    Coalesce bursts of triggers into one callback.

    Each trigger restarts the window, but only ``max_coalesced`` times in a
    row; after that the running window is left to expire so a steady stream
    of notifications cannot postpone the refresh forever.
    """

    def __init__(self, window: float, max_coalesced: int, callback: Callable[[], Awaitable[None]]) -> None:
        self._max_coalesced = max_coalesced
        self._callback = callback
        self._timer = DelayedTask(window, self._fire)
        self._coalesced = 0

    @property
    def pending(self) -> bool:
        return self._timer.pending

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._timer.task

    def trigger(self) -> None:
        if self._timer.pending:
            if self._coalesced >= self._max_coalesced:
                return
            self._coalesced += 1
        self._timer.start()

    def cancel(self) -> None:
        self._timer.cancel()
        self._coalesced = 0

    async def _fire(self) -> None:
        self._coalesced = 0
        await self._callback()


class FallbackPoller:
    """Call ``tick`` every ``interval`` seconds until stopped."""

    def __init__(self, interval: float, tick: Callable[[], Awaitable[None]]) -> None:
        self._interval = interval
        self._tick = tick
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("fallback polling started", interval=self._interval)

    def stop(self) -> None:
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
            logger.info("fallback polling stopped")
        self._task = None

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)
                try:
                    await self._tick()
                except (RuntimeError, OSError, ConnectionError, ValueError):  # fmt: skip
                    logger.exception("poll tick failed")
        except asyncio.CancelledError:
            pass
