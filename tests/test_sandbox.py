"""sandbox: compiling and running scripts against the surface."""

from __future__ import annotations

import logging

import pytest

from canvas_config import sanitize_code
from sandbox import CompileError, ScriptSandbox
from surface import Surface
from workspace import INITIAL_CODE


@pytest.fixture
def surface() -> Surface:
    return Surface(50, 50)


def run(text: str, surface: Surface, **kwargs):
    return ScriptSandbox(**kwargs).execute(text, surface, surface.get_context())


def test_successful_script_draws(surface: Surface) -> None:
    result = run("ctx.fill_style = 'red'\nctx.fill_rect(0, 0, 10, 10)\n", surface)
    assert result.ok
    assert result.error is None
    assert result.elapsed_ms >= 0
    assert surface.image.getpixel((5, 5)) == (255, 0, 0, 255)


def test_error_after_drawing_keeps_pixels(surface: Surface) -> None:
    result = run("ctx.fill_rect(0, 0, 10, 10)\nraise RuntimeError('boom')\n", surface)
    assert not result.ok
    assert result.error == "RuntimeError: boom (line 2)"
    assert surface.image.getpixel((5, 5)) == (0, 0, 0, 255)


def test_syntax_error_is_a_compile_error(surface: Surface) -> None:
    with pytest.raises(CompileError) as excinfo:
        ScriptSandbox().compile("x = 1\ndef (\n")
    assert excinfo.value.lineno == 2

    result = run("def (\n", surface)
    assert not result.ok
    assert result.error.startswith("SyntaxError")


def test_script_sees_only_canvas_and_ctx(surface: Surface) -> None:
    code = (
        "names = {k for k in globals() if not k.startswith('__')}\n"
        "assert names == {'canvas', 'ctx'}, names\n"
        "assert canvas.get_context('2d') is ctx\n"
    )
    assert run(code, surface).ok


def test_scripts_do_not_share_globals(surface: Surface) -> None:
    assert run("leftover = 1\n", surface).ok
    result = run("leftover\n", surface)
    assert not result.ok
    assert result.error.startswith("NameError")


def test_system_exit_is_contained(surface: Surface) -> None:
    result = run("raise SystemExit(3)\n", surface)
    assert not result.ok
    assert result.error == "SystemExit: 3 (line 1)"


def test_unsanitized_declaration_does_not_compile(surface: Surface) -> None:
    code = "export config = {'canvasWidth': 10}\n"
    assert not run(code, surface).ok
    assert run(sanitize_code(code), surface).ok


def test_default_template_runs_after_sanitizing(surface: Surface) -> None:
    result = run(sanitize_code(INITIAL_CODE), surface)
    assert result.ok, result.error
    assert surface.image.getbbox() is not None


def test_slow_scripts_are_reported(surface: Surface, caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="sandbox"):
        result = run("total = sum(range(100000))\n", surface, slow_script_ms=0)
    assert result.ok
    assert "took" in caplog.text


def test_custom_base_exception_is_contained(surface: Surface) -> None:
    code = "class Stop(BaseException):\n    pass\n\nraise Stop('halt')\n"
    result = run(code, surface)
    assert not result.ok
    assert result.error == "Stop: halt (line 4)"


def test_keyboard_interrupt_propagates(surface: Surface) -> None:
    with pytest.raises(KeyboardInterrupt):
        run("raise KeyboardInterrupt\n", surface)
