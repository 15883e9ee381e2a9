"""Unit tests for CurrentTimeTicker."""

import asyncio
import datetime as dt
import logging
from typing import List

import pytest

from timely_sync import CurrentTimeTicker

T0 = dt.datetime(2024, 5, 1, 9, 0, tzinfo=dt.timezone.utc)


class FakeClock:
    def __init__(self, start: dt.datetime = T0) -> None:
        self.current = start

    def __call__(self) -> dt.datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += dt.timedelta(**kwargs)


def test_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        CurrentTimeTicker(lambda now: None, interval=0)


def test_now_reads_clock_lazily() -> None:
    clock = FakeClock()
    ticker = CurrentTimeTicker(lambda now: None, clock=clock)
    assert ticker.now == T0


def test_tick_on_demand_notifies() -> None:
    clock = FakeClock()
    seen: List[dt.datetime] = []
    ticker = CurrentTimeTicker(seen.append, clock=clock)
    ticker.tick()
    clock.advance(minutes=1)
    assert ticker.tick() == T0 + dt.timedelta(minutes=1)
    assert seen == [T0, T0 + dt.timedelta(minutes=1)]
    assert ticker.now == seen[-1]


def test_start_without_loop_raises_before_ticking() -> None:
    seen: List[dt.datetime] = []
    ticker = CurrentTimeTicker(seen.append, clock=FakeClock())
    with pytest.raises(RuntimeError):
        ticker.start()
    assert seen == []
    assert not ticker.running


@pytest.mark.asyncio
async def test_start_ticks_immediately_then_periodically() -> None:
    clock = FakeClock()
    seen: List[dt.datetime] = []
    ticker = CurrentTimeTicker(seen.append, interval=0.01, clock=clock)
    ticker.start()
    assert seen == [T0]
    assert ticker.running
    await asyncio.sleep(0.1)
    await ticker.stop()
    assert len(seen) >= 3
    assert not ticker.running


@pytest.mark.asyncio
async def test_start_twice_keeps_one_task() -> None:
    seen: List[dt.datetime] = []
    ticker = CurrentTimeTicker(seen.append, interval=10, clock=FakeClock())
    ticker.start()
    ticker.start()
    assert seen == [T0]
    await ticker.stop()


@pytest.mark.asyncio
async def test_stop_without_start_is_noop() -> None:
    ticker = CurrentTimeTicker(lambda now: None)
    await ticker.stop()
    assert not ticker.running


@pytest.mark.asyncio
async def test_failing_callback_does_not_stop_cadence(caplog: pytest.LogCaptureFixture) -> None:
    calls: List[int] = []

    def flaky(now: dt.datetime) -> None:
        calls.append(1)
        if len(calls) == 2:
            raise RuntimeError("render failed")

    ticker = CurrentTimeTicker(flaky, interval=0.01, clock=FakeClock())
    with caplog.at_level(logging.ERROR, logger="timely_sync.ticker"):
        ticker.start()
        await asyncio.sleep(0.1)
        await ticker.stop()
    assert len(calls) >= 3
    assert "Tick callback failed" in caplog.text
