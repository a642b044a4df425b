"""store: atomic derived state, status transitions and listeners."""

from __future__ import annotations

import logging

import pytest

from canvas_config import DEFAULT_CONFIG
from render_state import CursorPosition, compute_render_state
from store import ExecutionStatus, InvalidTransition, Store


def test_initial_snapshot_is_derived_from_initial_code() -> None:
    store = Store("export config = {'canvasWidth': 12}\n")
    snap = store.snapshot()
    assert snap.config.canvas_width == 12
    assert snap.safe_code == "config = {'canvasWidth': 12}\n"
    assert snap.status is ExecutionStatus.READY
    assert snap.revision == 0


def test_set_code_replaces_config_and_safe_code_together() -> None:
    store = Store("")
    before = store.snapshot()
    after = store.set_code("export config = {'canvasHeight': 9}\n")

    assert after is store.snapshot()
    assert after.config.canvas_height == 9
    assert after.safe_code.startswith("config = ")
    assert after.revision == before.revision + 1

    # older snapshots are untouched
    assert before.code == ""
    assert before.config == DEFAULT_CONFIG


def test_status_transitions() -> None:
    store = Store("")
    with pytest.raises(InvalidTransition):
        store.set_status(ExecutionStatus.SUCCEEDED)

    store.set_status(ExecutionStatus.PENDING)
    store.set_status(ExecutionStatus.PENDING)
    store.set_status(ExecutionStatus.FAILED, error="boom")
    assert store.snapshot().error == "boom"

    store.set_status(ExecutionStatus.PENDING)
    store.set_status(ExecutionStatus.SUCCEEDED)
    assert store.snapshot().error is None

    with pytest.raises(InvalidTransition):
        store.set_status(ExecutionStatus.FAILED)


def test_listeners_see_each_write_and_can_unsubscribe() -> None:
    store = Store("")
    seen = []
    unsubscribe = store.subscribe(lambda snap: seen.append(snap.code))

    store.set_code("a = 1")
    store.set_code("a = 2")
    unsubscribe()
    store.set_code("a = 3")

    assert seen == ["a = 1", "a = 2"]


def test_failing_listener_does_not_break_the_write(caplog) -> None:
    store = Store("")

    def broken(snap):
        raise RuntimeError("listener bug")

    store.subscribe(broken)
    with caplog.at_level(logging.ERROR, logger="store"):
        snap = store.set_code("a = 1")

    assert store.snapshot() is snap
    assert "listener failed" in caplog.text


def test_unchanged_render_state_and_cursor_are_not_rewritten() -> None:
    store = Store("")
    state = compute_render_state(DEFAULT_CONFIG, None)
    first = store.set_render_state(state)
    assert store.set_render_state(state) is first

    moved = store.set_cursor(CursorPosition(3, 4))
    assert store.set_cursor(CursorPosition(3, 4)) is moved
    assert moved.to_dict()["cursor"] == {"x": 3, "y": 4}
