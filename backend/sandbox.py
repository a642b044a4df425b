"""
Script execution against the live drawing surface.

The sanitized script is compiled once per run and invoked with exactly two
names bound: ``canvas`` (the Surface) and ``ctx`` (its 2D context). There is
no isolation; scripts run with the full privileges of the server process.
Drawing is not transactional, so pixels painted before an error stay.
"""

import builtins
import logging
import time
import traceback
from dataclasses import dataclass
from typing import Callable

from surface import Context2D, Surface

logger = logging.getLogger(__name__)

SCRIPT_FILENAME = "<canvas-script>"

DrawCallable = Callable[[Surface, Context2D], None]


class CompileError(Exception):
    """The script is not valid Python."""

    def __init__(self, message: str, lineno: int | None = None):
        super().__init__(message)
        self.lineno = lineno


@dataclass(frozen=True)
class ExecutionResult:
    ok: bool
    error: str | None = None
    elapsed_ms: float = 0.0


def _describe(exc: BaseException) -> str:
    """One-line description, with the script line number when the error came from it."""
    lineno = None
    for frame in traceback.extract_tb(exc.__traceback__):
        if frame.filename == SCRIPT_FILENAME:
            lineno = frame.lineno
    message = f"{type(exc).__name__}: {exc}"
    if lineno is not None:
        message += f" (line {lineno})"
    return message


class ScriptSandbox:
    def __init__(self, slow_script_ms: float | None = None):
        self.slow_script_ms = slow_script_ms

    def compile(self, text: str) -> DrawCallable:
        """Compile ``text`` into a callable taking ``(canvas, ctx)``.

        Raises CompileError on invalid source.
        """
        try:
            code = compile(text, SCRIPT_FILENAME, "exec")
        except (SyntaxError, ValueError) as e:
            lineno = getattr(e, "lineno", None)
            raise CompileError(f"{type(e).__name__}: {e}", lineno) from e

        def run(canvas: Surface, ctx: Context2D) -> None:
            namespace = {
                "__builtins__": builtins,
                "__name__": "__canvas__",
                "canvas": canvas,
                "ctx": ctx,
            }
            exec(code, namespace)

        return run

    def execute(self, text: str, surface: Surface, ctx: Context2D) -> ExecutionResult:
        """Compile and run the script synchronously. Never raises."""
        started = time.perf_counter()
        try:
            draw = self.compile(text)
            draw(surface, ctx)
        except CompileError as e:
            logger.error("Script failed to compile: %s", e)
            return ExecutionResult(ok=False, error=str(e), elapsed_ms=self._elapsed(started))
        except KeyboardInterrupt:
            raise
        except BaseException as e:
            logger.error("Script raised %s", _describe(e), exc_info=True)
            return ExecutionResult(ok=False, error=_describe(e), elapsed_ms=self._elapsed(started))

        elapsed = self._elapsed(started)
        if self.slow_script_ms is not None and elapsed > self.slow_script_ms:
            logger.warning("Script took %.0f ms to run", elapsed)
        return ExecutionResult(ok=True, elapsed_ms=elapsed)

    @staticmethod
    def _elapsed(started: float) -> float:
        return (time.perf_counter() - started) * 1000.0
