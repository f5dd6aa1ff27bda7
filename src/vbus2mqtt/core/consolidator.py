"""Header consolidation with TTL eviction (Python 3.12).

The engine keeps the latest header per key. Eviction and snapshot delivery
only happen on timer ticks, so `add_header` stays O(1) on the packet path.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable

from .header_set import Header, HeaderSet, HeaderSetSnapshot


logger = logging.getLogger(__name__)

HeaderSetListener = Callable[[HeaderSetSnapshot], "Awaitable[Any] | None"]


class ConsolidationEngine:
    """Long-lived HeaderSet with a repeating snapshot timer.

    `time_to_live` of 0 disables eviction. Listeners may be plain callables
    or coroutine functions; coroutine listeners are scheduled as tasks.
    """

    def __init__(
        self,
        interval: float,
        time_to_live: float = 0,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.interval = interval
        self.time_to_live = time_to_live
        self.clock = clock
        self.header_set = HeaderSet()
        self._listeners: list[HeaderSetListener] = []
        self._timer: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[Any]] = set()

    def add_header(self, header: Header) -> None:
        self.header_set.add_header(header)

    def add_listener(self, listener: HeaderSetListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: HeaderSetListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def snapshot(self) -> HeaderSetSnapshot:
        """Current store contents, without eviction."""
        return self.header_set.snapshot(self.clock())

    def tick(self) -> HeaderSetSnapshot:
        """Evict expired headers, then deliver one snapshot to every listener."""
        now = self.clock()
        if self.time_to_live > 0:
            removed = self.header_set.remove_headers_older_than(now - self.time_to_live)
            if removed:
                logger.debug("Evicted %d expired header(s)", removed)

        snapshot = self.header_set.snapshot(now)
        for listener in list(self._listeners):
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_listener_done)
            except Exception:
                logger.exception("Header set listener error")
        return snapshot

    def _on_listener_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Header set listener error", exc_info=exc)

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start_timer(self) -> None:
        if self.running:
            return
        logger.debug("Starting consolidation timer (interval=%ss)", self.interval)
        self._timer = asyncio.create_task(self._run())

    async def stop_timer(self) -> None:
        if self._timer is None:
            return
        self._timer.cancel()
        try:
            await self._timer
        except asyncio.CancelledError:
            pass
        self._timer = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.tick()
