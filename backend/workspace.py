"""
Sandboxed workspace I/O for the canvas studio.

All persisted state lives inside the workspace directory:

  storage.json   key → string store (the latest successfully run script)
  fonts/         downloaded and converted font faces

Paths are resolved inside the workspace and directory traversal is rejected.
"""

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base directory
# ---------------------------------------------------------------------------

_DEFAULT_DIR = Path(__file__).resolve().parent.parent / ".workspace"
_STORAGE_FILE = "storage.json"

# Dynamic pointer, changed via set_workspace_dir()
_workspace_dir: Path = _DEFAULT_DIR

STORAGE_KEY = "canvas_editor_v1_content"


def get_workspace_dir() -> Path:
    """Return the active workspace directory."""
    return _workspace_dir


def set_workspace_dir(path: Path) -> None:
    """Point all workspace I/O at ``path``, creating it if needed."""
    global _workspace_dir
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    _workspace_dir = path
    logger.info("Workspace directory: %s", path)


def init_workspace(path: Path | None = None) -> None:
    """Call once at server startup."""
    set_workspace_dir(path or _DEFAULT_DIR)
    get_fonts_dir().mkdir(parents=True, exist_ok=True)


def get_fonts_dir() -> Path:
    return _workspace_dir / "fonts"


# ---------------------------------------------------------------------------
# Sandboxed path resolution
# ---------------------------------------------------------------------------

def _safe_path(filename: str) -> Path:
    """Resolve a filename inside the workspace and reject directory traversal."""
    ws = get_workspace_dir().resolve()
    resolved = (ws / filename).resolve()
    if not resolved.is_relative_to(ws):
        raise PermissionError(f"Path escapes workspace: {filename}")
    return resolved


# ---------------------------------------------------------------------------
# File I/O
# ---------------------------------------------------------------------------

def write_file(filename: str, content: str) -> Path:
    """Write content to a file inside the workspace."""
    path = _safe_path(filename)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def read_file(filename: str) -> str:
    """Read a file from the workspace."""
    path = _safe_path(filename)
    if not path.exists():
        raise FileNotFoundError(f"File not found in workspace: {filename}")
    return path.read_text(encoding="utf-8")


def write_json(filename: str, data: dict) -> Path:
    """Write a dict as JSON to the workspace."""
    return write_file(filename, json.dumps(data, indent=2, ensure_ascii=False))


def read_json(filename: str) -> dict:
    """Read a JSON file from the workspace."""
    return json.loads(read_file(filename))


# ---------------------------------------------------------------------------
# Key-value storage
# ---------------------------------------------------------------------------

def _read_storage() -> dict:
    try:
        data = read_json(_STORAGE_FILE)
    except FileNotFoundError:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{_STORAGE_FILE} does not hold an object")
    return data


def get_item(key: str) -> str | None:
    """Return the stored string for ``key``, or None."""
    value = _read_storage().get(key)
    return value if isinstance(value, str) else None


def set_item(key: str, value: str) -> None:
    data = _read_storage()
    data[key] = value
    write_json(_STORAGE_FILE, data)


def load_script() -> str:
    """Return the persisted script, or the built-in template.

    Read errors are logged and fall back to the template.
    """
    try:
        saved = get_item(STORAGE_KEY)
    except (OSError, ValueError) as e:
        logger.error("Could not read saved script: %s", e)
        return INITIAL_CODE
    return saved if saved is not None else INITIAL_CODE


def save_script(code: str) -> bool:
    """Persist the script. Returns False (and logs) on failure."""
    try:
        set_item(STORAGE_KEY, code)
    except (OSError, ValueError) as e:
        logger.error("Could not save script: %s", e)
        return False
    return True


# ---------------------------------------------------------------------------
# Default script
# ---------------------------------------------------------------------------

INITIAL_CODE = '''
export config = {
    "canvasWidth": 600,
    "canvasHeight": 600,
    "position": "center",
    "backgroundColor": "#0b0f19",
    "fonts": [
        {
            "fontName": "Inter",
            "weights": [400, 600],
            "subset": "latin",
            "display": "swap",
            "format": "woff2",
        },
    ],
}

import math

w, h = config["canvasWidth"], config["canvasHeight"]

# dark base
ctx.fill_style = "#111827"
ctx.fill_rect(0, 0, w, h)

# central circle
ctx.fill_style = "#6366f1"
ctx.begin_path()
ctx.arc(w / 2, h / 2, 150, 0, math.pi * 2)
ctx.fill()

ctx.stroke_style = "#f43f5e"
ctx.line_width = 6
ctx.stroke()

# text
ctx.fill_style = "white"
ctx.font = "600 40px Inter, sans-serif"
ctx.text_align = "center"
ctx.fill_text("Canvas Studio", w / 2, h / 2 - 20)

ctx.font = "20px Inter, sans-serif"
ctx.fill_style = "#cbd5e1"
ctx.fill_text("Changes are saved automatically", w / 2, h / 2 + 20)
'''.strip()
