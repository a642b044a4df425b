"""
The canvas studio: wires store, scheduler, geometry, sandbox and fonts into
the edit → debounce → render → persist pipeline.

Listeners registered with ``subscribe`` receive ``(event, payload)`` pairs:

  status        {"status": "Pending" | "Succeeded" | ..., "error": str | None}
  render_state  RenderState.to_dict()
  cursor        {"x": int, "y": int}
  frame         {"png_b64": str, "dims": str}
"""

import asyncio
import base64
import logging
import time
from typing import Callable

import workspace
from canvas_config import CanvasConfig, FontSpec
from config import Settings
from fonts import FontLoader, FontRegistry
from render_state import RenderStateCalculator, ViewportBounds, cursor_to_buffer
from sandbox import ExecutionResult, ScriptSandbox
from scheduler import DebounceScheduler
from store import ExecutionStatus, Snapshot, Store
from surface import Surface

logger = logging.getLogger(__name__)

EventListener = Callable[[str, dict], None]


class CanvasStudio:
    def __init__(self, settings: Settings, code: str, font_loader: FontLoader | None = None):
        self.settings = settings
        self.fonts = font_loader.registry if font_loader else FontRegistry()
        self.font_loader = font_loader or FontLoader(
            self.fonts, workspace.get_fonts_dir(), settings.font_cdn,
        )

        self.surface = Surface(font_registry=self.fonts)
        self.ctx = self.surface.get_context("2d")
        self.store = Store(code)
        self.calculator = RenderStateCalculator(self.surface, settings.viewport_padding)
        self.sandbox = ScriptSandbox(slow_script_ms=settings.slow_script_ms)
        self.scheduler = DebounceScheduler(
            self.store, self.run_pipeline, settings.debounce_seconds,
        )

        self.run_count = 0
        self._rendered_config: CanvasConfig | None = None
        self._listeners: list[EventListener] = []
        self._font_tasks: set[asyncio.Task] = set()
        self._last_snapshot = self.store.snapshot()
        self._unsubscribe = self.store.subscribe(self._on_store_change)

    # -- events ---------------------------------------------------------------

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: str, payload: dict) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:
                logger.exception("Studio listener failed on %s", event)

    def _on_store_change(self, snap: Snapshot) -> None:
        prev, self._last_snapshot = self._last_snapshot, snap
        if snap.status != prev.status or snap.error != prev.error:
            self._emit("status", {"status": snap.status.value, "error": snap.error})
        if snap.render_state is not None and snap.render_state != prev.render_state:
            self._emit("render_state", snap.render_state.to_dict())
        if snap.cursor != prev.cursor:
            self._emit("cursor", snap.cursor.to_dict())

    # -- lifecycle ------------------------------------------------------------

    def start(self) -> None:
        """Schedule the first render of the loaded script."""
        self.scheduler.notify_mutation()

    def close(self) -> None:
        """Stop scheduling; no run happens after this returns."""
        self.scheduler.close()
        for task in list(self._font_tasks):
            task.cancel()
        self._font_tasks.clear()
        self._unsubscribe()

    # -- inputs ---------------------------------------------------------------

    def set_code(self, code: str) -> Snapshot:
        snap = self.store.set_code(code)
        self.scheduler.notify_mutation()
        return snap

    def reset(self) -> Snapshot:
        """Replace the script with the built-in template."""
        return self.set_code(workspace.INITIAL_CODE)

    def resize_viewport(self, width: float, height: float) -> None:
        if not self.calculator.observe_viewport(ViewportBounds(width, height)):
            return
        # the buffer keeps the size of the last run until the next run
        config = self._rendered_config or self.store.snapshot().config
        self.store.set_render_state(self.calculator.update(config))

    def pointer_move(
        self,
        offset_x: float,
        offset_y: float,
        rect_width: float,
        rect_height: float,
    ) -> None:
        cursor = cursor_to_buffer(
            offset_x, offset_y, rect_width, rect_height,
            self.surface.width, self.surface.height,
        )
        self.store.set_cursor(cursor)

    # -- pipeline -------------------------------------------------------------

    def run_pipeline(self) -> ExecutionResult:
        """Render the latest store snapshot. Called by the scheduler when it fires."""
        snap = self.store.snapshot()
        if snap.status != ExecutionStatus.PENDING:
            self.store.set_status(ExecutionStatus.PENDING)
        self.run_count += 1

        try:
            self.store.set_render_state(self.calculator.update(snap.config))
            self._rendered_config = snap.config
            self._request_fonts(snap.config.fonts)
            self._prepare_surface(snap.config)
        except (ValueError, OverflowError, MemoryError) as e:
            logger.error(
                "Could not prepare a %d x %d buffer: %s",
                snap.config.canvas_width, snap.config.canvas_height, e,
            )
            result = ExecutionResult(ok=False, error=f"{type(e).__name__}: {e}")
        else:
            result = self.sandbox.execute(snap.safe_code, self.surface, self.ctx)

        if result.ok:
            self.store.set_status(ExecutionStatus.SUCCEEDED)
            workspace.save_script(snap.code)
        else:
            self.store.set_status(ExecutionStatus.FAILED, error=result.error)

        logger.debug("Run %d finished in %.1f ms (ok=%s)", self.run_count, result.elapsed_ms, result.ok)
        self._emit("frame", self.frame_payload())
        return result

    def _prepare_surface(self, config: CanvasConfig) -> None:
        self.ctx.reset()
        self.ctx.clear_rect(0, 0, self.surface.width, self.surface.height)
        if not config.background_color:
            return
        self.ctx.save()
        try:
            self.ctx.fill_style = config.background_color
            self.ctx.fill_rect(0, 0, self.surface.width, self.surface.height)
        except ValueError as e:
            logger.warning("Ignoring background color %r: %s", config.background_color, e)
        finally:
            self.ctx.restore()

    # -- fonts ----------------------------------------------------------------

    def _request_fonts(self, fonts: tuple[FontSpec, ...]) -> None:
        if not self.font_loader.missing(fonts):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, skipping font loading")
            return
        task = loop.create_task(self._load_fonts(fonts))
        self._font_tasks.add(task)
        task.add_done_callback(self._font_tasks.discard)

    async def _load_fonts(self, fonts: tuple[FontSpec, ...]) -> None:
        loaded = await self.font_loader.load(fonts)
        if loaded and not self.scheduler.closed:
            logger.info("%d font face(s) loaded, repainting", loaded)
            self.scheduler.notify_mutation()

    # -- output ---------------------------------------------------------------

    def frame_payload(self) -> dict:
        return {
            "png_b64": base64.b64encode(self.surface.to_png()).decode("ascii"),
            "dims": f"{self.surface.width} x {self.surface.height}",
        }

    def export_png(self) -> tuple[str, bytes]:
        """Encode the current buffer. Returns ``(filename, png_bytes)``."""
        filename = f"canvas-{int(time.time() * 1000)}.png"
        return filename, self.surface.to_png()

    def state(self) -> dict:
        data = self.store.snapshot().to_dict()
        data["dims"] = f"{self.surface.width} x {self.surface.height}"
        return data
