"""studio: the edit → debounce → render → persist pipeline."""

from __future__ import annotations

import asyncio
import base64
import re

import pytest

import fonts
import workspace
from store import ExecutionStatus

SMALL = "export config = {'canvasWidth': 40, 'canvasHeight': 30}\n"


def saved_script():
    return workspace.get_item(workspace.STORAGE_KEY)


def test_successful_run_is_persisted(make_studio) -> None:
    studio = make_studio(SMALL + "ctx.fill_rect(0, 0, 5, 5)\n")
    result = studio.run_pipeline()

    assert result.ok
    snap = studio.store.snapshot()
    assert snap.status is ExecutionStatus.SUCCEEDED
    assert snap.error is None
    assert saved_script() == SMALL + "ctx.fill_rect(0, 0, 5, 5)\n"
    assert (studio.surface.width, studio.surface.height) == (40, 30)
    assert studio.run_count == 1


def test_failed_run_is_not_persisted(make_studio) -> None:
    studio = make_studio(SMALL + "ctx.fill_rect(0, 0, 5, 5)\nmissing_name\n")
    result = studio.run_pipeline()

    assert not result.ok
    snap = studio.store.snapshot()
    assert snap.status is ExecutionStatus.FAILED
    assert snap.error.startswith("NameError")
    assert saved_script() is None

    # the config still applied and pixels drawn before the error remain
    assert (studio.surface.width, studio.surface.height) == (40, 30)
    assert studio.surface.image.getpixel((2, 2)) == (0, 0, 0, 255)


def test_persisted_text_is_the_text_that_ran(make_studio) -> None:
    studio = make_studio(SMALL)
    studio.run_pipeline()
    studio.store.set_code(SMALL + "broken(\n")
    studio.run_pipeline()
    assert saved_script() == SMALL


def test_background_color_is_painted_before_the_script(make_studio) -> None:
    studio = make_studio(
        "export config = {'canvasWidth': 10, 'canvasHeight': 10, 'backgroundColor': '#00ff00'}\n"
    )
    assert studio.run_pipeline().ok
    assert studio.surface.image.getpixel((5, 5)) == (0, 255, 0, 255)


def test_invalid_background_color_is_ignored(make_studio) -> None:
    studio = make_studio(
        "export config = {'canvasWidth': 10, 'canvasHeight': 10, 'backgroundColor': 'nope'}\n"
    )
    assert studio.run_pipeline().ok
    assert studio.surface.image.getbbox() is None


def test_buffer_is_cleared_and_context_reset_between_runs(make_studio) -> None:
    studio = make_studio(SMALL + "ctx.fill_style = 'red'\nctx.translate(20, 0)\nctx.fill_rect(0, 0, 5, 5)\n")
    studio.run_pipeline()
    assert studio.surface.image.getpixel((22, 2)) == (255, 0, 0, 255)

    studio.store.set_code(SMALL + "ctx.fill_rect(0, 0, 5, 5)\n")
    studio.run_pipeline()
    assert studio.surface.image.getpixel((22, 2)) == (0, 0, 0, 0)
    assert studio.surface.image.getpixel((2, 2)) == (0, 0, 0, 255)


def test_persistence_failure_does_not_fail_the_run(make_studio, monkeypatch) -> None:
    def unwritable(key, value):
        raise OSError("disk full")

    monkeypatch.setattr(workspace, "set_item", unwritable)
    studio = make_studio(SMALL)
    assert studio.run_pipeline().ok
    assert studio.store.snapshot().status is ExecutionStatus.SUCCEEDED


def test_edits_are_debounced_into_one_run(make_studio, settings) -> None:
    async def scenario():
        studio = make_studio(SMALL)
        for i in range(4):
            studio.set_code(SMALL + f"# edit {i}\n")
            await asyncio.sleep(0)
        assert studio.run_count == 0
        assert studio.store.snapshot().status is ExecutionStatus.PENDING
        await asyncio.sleep(settings.debounce_seconds * 5)
        return studio

    studio = asyncio.run(scenario())
    assert studio.run_count == 1
    assert saved_script() == SMALL + "# edit 3\n"
    assert studio.store.snapshot().status is ExecutionStatus.SUCCEEDED


def test_close_cancels_the_pending_run(make_studio, settings) -> None:
    async def scenario():
        studio = make_studio(SMALL)
        studio.start()
        studio.close()
        await asyncio.sleep(settings.debounce_seconds * 5)
        return studio

    studio = asyncio.run(scenario())
    assert studio.run_count == 0
    assert saved_script() is None


def test_reset_loads_the_template(make_studio) -> None:
    async def scenario():
        studio = make_studio(SMALL)
        studio.reset()
        return studio

    studio = asyncio.run(scenario())
    assert studio.store.snapshot().code == workspace.INITIAL_CODE
    assert studio.store.snapshot().config.canvas_width == 600


def test_events_for_a_run(make_studio) -> None:
    studio = make_studio(SMALL)
    events = []
    studio.subscribe(lambda event, payload: events.append((event, payload)))
    studio.run_pipeline()

    assert [event for event, _ in events] == ["status", "render_state", "status", "frame"]
    assert events[0][1] == {"status": "Pending", "error": None}
    assert events[1][1]["dims"] == "40 x 30"
    assert events[2][1] == {"status": "Succeeded", "error": None}
    png = base64.b64decode(events[3][1]["png_b64"])
    assert png.startswith(b"\x89PNG")


def test_viewport_resize_updates_scale(make_studio) -> None:
    studio = make_studio("export config = {'canvasWidth': 800, 'canvasHeight': 600}\n")
    studio.run_pipeline()
    events = []
    studio.subscribe(lambda event, payload: events.append((event, payload)))

    studio.resize_viewport(400, 400)
    assert [event for event, _ in events] == ["render_state"]
    assert events[0][1]["display_scale"] == pytest.approx(0.45)

    studio.resize_viewport(400, 400)
    assert len(events) == 1


def test_pointer_maps_to_buffer_pixels(make_studio) -> None:
    studio = make_studio("export config = {'canvasWidth': 800, 'canvasHeight': 600}\n")
    studio.run_pipeline()
    studio.pointer_move(50, 25, 400, 300)
    assert studio.store.snapshot().cursor.to_dict() == {"x": 100, "y": 50}


def test_export_png(make_studio) -> None:
    studio = make_studio(SMALL)
    studio.run_pipeline()
    filename, data = studio.export_png()
    assert re.fullmatch(r"canvas-\d+\.png", filename)
    assert data.startswith(b"\x89PNG\r\n\x1a\n")


def test_state_includes_buffer_dims(make_studio) -> None:
    studio = make_studio(SMALL)
    studio.run_pipeline()
    state = studio.state()
    assert state["dims"] == "40 x 30"
    assert state["status"] == "Succeeded"
    assert state["config"]["canvasWidth"] == 40


def test_loaded_fonts_trigger_a_repaint(make_studio, settings, monkeypatch) -> None:
    def fake_convert(data, dest):
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)

    monkeypatch.setattr(fonts, "convert_to_ttf", fake_convert)
    fetched = []

    def fetch(url):
        fetched.append(url)
        return b"font bytes"

    async def scenario():
        studio = make_studio(
            "export config = {'canvasWidth': 10, 'canvasHeight': 10, "
            "'fonts': [{'fontName': 'Inter'}]}\n",
            fetch=fetch,
        )
        studio.start()
        await asyncio.sleep(settings.debounce_seconds * 15)
        return studio

    studio = asyncio.run(scenario())
    assert len(fetched) == 1
    assert studio.run_count == 2
    assert studio.fonts.has("Inter", 400)


def test_unreachable_fonts_do_not_block_rendering(make_studio, settings) -> None:
    async def scenario():
        studio = make_studio(
            "export config = {'canvasWidth': 10, 'canvasHeight': 10, "
            "'fonts': [{'fontName': 'Inter'}]}\n"
            "ctx.font = '12px Inter'\nctx.fill_text('x', 1, 9)\n"
        )
        studio.start()
        await asyncio.sleep(settings.debounce_seconds * 10)
        return studio

    studio = asyncio.run(scenario())
    assert studio.run_count == 1
    assert studio.store.snapshot().status is ExecutionStatus.SUCCEEDED


def test_unallocatable_buffer_fails_the_run(make_studio) -> None:
    studio = make_studio(
        "export config = {'canvasWidth': 1e12, 'canvasHeight': 10}\nctx.fill_rect(0, 0, 1, 1)\n"
    )
    events = []
    studio.subscribe(lambda event, payload: events.append(event))
    result = studio.run_pipeline()

    assert not result.ok
    snap = studio.store.snapshot()
    assert snap.status is ExecutionStatus.FAILED
    assert snap.error.startswith(("OverflowError", "MemoryError", "ValueError"))
    assert saved_script() is None
    assert events[-1] == "frame"

    # the next edit runs normally
    studio.store.set_code(SMALL)
    assert studio.run_pipeline().ok
    assert studio.store.snapshot().status is ExecutionStatus.SUCCEEDED
