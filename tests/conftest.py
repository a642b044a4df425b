"""Shared fixtures: an isolated workspace and an offline studio factory."""

from __future__ import annotations

import pytest

import workspace
from config import Settings
from fonts import FontLoader, FontRegistry
from studio import CanvasStudio


def offline_fetch(url: str) -> bytes:
    raise OSError(f"network disabled in tests: {url}")


@pytest.fixture(autouse=True)
def isolated_workspace(tmp_path, monkeypatch):
    ws_dir = tmp_path / "workspace"
    ws_dir.mkdir()
    monkeypatch.setattr(workspace, "_workspace_dir", ws_dir)
    return ws_dir


@pytest.fixture
def settings(isolated_workspace) -> Settings:
    return Settings(workspace_dir=isolated_workspace, debounce_ms=20, viewport_padding=20)


@pytest.fixture
def make_studio(settings, isolated_workspace):
    studios: list[CanvasStudio] = []

    def factory(code: str, fetch=offline_fetch) -> CanvasStudio:
        loader = FontLoader(FontRegistry(), isolated_workspace / "fonts", fetch=fetch)
        studio = CanvasStudio(settings, code, font_loader=loader)
        studios.append(studio)
        return studio

    yield factory
    for studio in studios:
        studio.close()
