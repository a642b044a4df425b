"""scheduler: debounce, fire-time reads and teardown."""

from __future__ import annotations

import asyncio
import logging

from scheduler import DebounceScheduler
from store import ExecutionStatus, Store

DELAY = 0.1


def test_burst_of_edits_runs_once_with_latest_text() -> None:
    async def scenario():
        store = Store("")
        seen: list[str] = []
        scheduler = DebounceScheduler(store, lambda: seen.append(store.snapshot().code), DELAY)

        for i in range(5):
            store.set_code(f"# edit {i}")
            scheduler.notify_mutation()
            await asyncio.sleep(DELAY / 10)

        assert store.snapshot().status is ExecutionStatus.PENDING
        assert seen == []
        await asyncio.sleep(DELAY * 4)
        return seen

    assert asyncio.run(scenario()) == ["# edit 4"]


def test_callback_reads_state_at_fire_time() -> None:
    async def scenario():
        store = Store("old")
        seen: list[str] = []
        scheduler = DebounceScheduler(store, lambda: seen.append(store.snapshot().code), DELAY)
        scheduler.notify_mutation()
        store.set_code("new")
        await asyncio.sleep(DELAY * 4)
        return seen

    assert asyncio.run(scenario()) == ["new"]


def test_close_before_fire_prevents_execution() -> None:
    async def scenario():
        store = Store("")
        calls: list[int] = []
        scheduler = DebounceScheduler(store, lambda: calls.append(1), DELAY)
        scheduler.notify_mutation()
        scheduler.close()
        assert scheduler.notify_mutation() is None
        assert scheduler.arm() is None
        await asyncio.sleep(DELAY * 4)
        return calls, scheduler

    calls, scheduler = asyncio.run(scenario())
    assert calls == []
    assert scheduler.closed
    assert not scheduler.pending


def test_rearming_cancels_previous_handle() -> None:
    async def scenario():
        scheduler = DebounceScheduler(Store(""), lambda: None, DELAY)
        first = scheduler.arm()
        second = scheduler.arm()
        cancelled = first.cancelled()
        scheduler.close()
        return cancelled, second.cancelled()

    assert asyncio.run(scenario()) == (True, True)


def test_separate_quiet_windows_run_separately() -> None:
    async def scenario():
        store = Store("")
        seen: list[str] = []
        scheduler = DebounceScheduler(store, lambda: seen.append(store.snapshot().code), DELAY)

        store.set_code("first")
        scheduler.notify_mutation()
        await asyncio.sleep(DELAY * 4)

        store.set_code("second")
        scheduler.notify_mutation()
        await asyncio.sleep(DELAY * 4)
        return seen

    assert asyncio.run(scenario()) == ["first", "second"]


def test_callback_error_is_logged_not_raised(caplog) -> None:
    def boom():
        raise RuntimeError("pipeline bug")

    async def scenario():
        scheduler = DebounceScheduler(Store(""), boom, DELAY / 10)
        scheduler.arm()
        await asyncio.sleep(DELAY)
        return scheduler.pending

    with caplog.at_level(logging.ERROR, logger="scheduler"):
        assert asyncio.run(scenario()) is False
    assert "pipeline run failed" in caplog.text
