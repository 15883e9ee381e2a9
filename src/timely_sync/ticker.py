"""Periodic "now" refresh for the timeline."""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Callable, Optional

logger = logging.getLogger("timely_sync.ticker")

Clock = Callable[[], dt.datetime]
TickCallback = Callable[[dt.datetime], None]


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class CurrentTimeTicker:
    """Refreshes "now" on a fixed cadence and on demand.

    Purely time-driven: it never fetches data, it only hands the new "now" to
    ``on_tick``. A failing callback is logged and the cadence continues.
    """

    def __init__(
        self,
        on_tick: TickCallback,
        *,
        interval: float = 60.0,
        clock: Clock = utc_now,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._on_tick = on_tick
        self.interval = interval
        self._clock = clock
        self._now: Optional[dt.datetime] = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def now(self) -> dt.datetime:
        """Last observed time; reads the clock if no tick has happened yet."""
        if self._now is None:
            self._now = self._clock()
        return self._now

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> dt.datetime:
        """Read the clock and notify the consumer immediately."""
        self._now = self._clock()
        self._on_tick(self._now)
        return self._now

    def start(self) -> None:
        """Tick now, then every ``interval`` seconds on the running loop.

        Raises:
            RuntimeError: If no event loop is running; nothing is ticked.
        """
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self.tick()
        self._task = loop.create_task(self._run())
        logger.debug("Ticker started (every %.1fs)", self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Ticker stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.tick()
            except Exception:
                logger.exception("Tick callback failed")
