"""
Canvas configuration extraction for the studio.

A script may declare its canvas settings with a single statement:

    export config = {
        "canvasWidth": 600,
        "canvasHeight": 600,
        "position": "center",
        "backgroundColor": "#0b0f19",
        "fonts": [{"fontName": "Inter", "weights": [400, 600]}],
    }

The dict literal is sliced out of the text and evaluated on its own, so
errors in the drawing part of the script never affect extraction. The
``export`` prefix is then rewritten so the whole script compiles as Python.
``export const config = {...}`` is accepted as a spelling of the same
declaration.
"""

import ast
import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_WIDTH = 800
DEFAULT_HEIGHT = 800
DEFAULT_POSITION = "center"

POSITIONS = (
    "center", "top", "top-left", "top-right", "right",
    "bottom-right", "bottom", "bottom-left", "left",
)

DEFAULT_FONT_WEIGHTS = (400,)
DEFAULT_FONT_SUBSET = "latin"
DEFAULT_FONT_DISPLAY = "swap"
DEFAULT_FONT_FORMAT = "woff2"

FONT_DISPLAYS = ("auto", "block", "swap", "fallback", "optional")
FONT_FORMATS = ("woff2", "woff")

_RECOGNIZED_KEYS = {"canvasWidth", "canvasHeight", "position", "backgroundColor", "fonts"}

_DECLARATION_RE = re.compile(r"export\s+(?:const\s+)?config\s*=\s*\{")
_EXPORT_PREFIX_RE = re.compile(r"export\s+(?:const\s+)?config")


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FontSpec:
    font_name: str
    weights: tuple[int, ...] = DEFAULT_FONT_WEIGHTS
    subset: str = DEFAULT_FONT_SUBSET
    display: str = DEFAULT_FONT_DISPLAY
    format: str = DEFAULT_FONT_FORMAT

    def to_dict(self) -> dict:
        return {
            "fontName": self.font_name,
            "weights": list(self.weights),
            "subset": self.subset,
            "display": self.display,
            "format": self.format,
        }


@dataclass(frozen=True)
class CanvasConfig:
    canvas_width: int = DEFAULT_WIDTH
    canvas_height: int = DEFAULT_HEIGHT
    position: str = DEFAULT_POSITION
    background_color: str | None = None
    fonts: tuple[FontSpec, ...] = ()
    extras: dict = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict:
        """Serialize using the literal's key names (for the client)."""
        return {
            "canvasWidth": self.canvas_width,
            "canvasHeight": self.canvas_height,
            "position": self.position,
            "backgroundColor": self.background_color,
            "fonts": [f.to_dict() for f in self.fonts],
        }


DEFAULT_CONFIG = CanvasConfig()


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------

def _positive_int(value, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    if value != value or value in (float("inf"), float("-inf")):
        return default
    number = int(value)
    return number if number > 0 else default


def _font_spec(raw) -> FontSpec | None:
    """Build a FontSpec from one entry of the ``fonts`` list, or None if unusable."""
    if not isinstance(raw, dict):
        return None
    name = raw.get("fontName")
    if not isinstance(name, str) or not name.strip():
        return None

    weights = raw.get("weights", DEFAULT_FONT_WEIGHTS)
    if isinstance(weights, (list, tuple)):
        weights = tuple(w for w in (_positive_int(w, 0) for w in weights) if w)
    else:
        weights = ()
    if not weights:
        weights = DEFAULT_FONT_WEIGHTS

    subset = raw.get("subset", DEFAULT_FONT_SUBSET)
    if not isinstance(subset, str) or not subset:
        subset = DEFAULT_FONT_SUBSET

    display = raw.get("display", DEFAULT_FONT_DISPLAY)
    if display not in FONT_DISPLAYS:
        display = DEFAULT_FONT_DISPLAY

    fmt = raw.get("format", DEFAULT_FONT_FORMAT)
    if fmt not in FONT_FORMATS:
        fmt = DEFAULT_FONT_FORMAT

    return FontSpec(
        font_name=name.strip(),
        weights=weights,
        subset=subset,
        display=display,
        format=fmt,
    )


def config_from_mapping(raw: dict) -> CanvasConfig:
    """Merge a parsed literal over the defaults.

    Recognized keys with unusable values keep their default. Unrecognized
    keys are carried in ``extras`` and otherwise ignored.
    """
    position = raw.get("position", DEFAULT_POSITION)
    if position not in POSITIONS:
        position = DEFAULT_POSITION

    background = raw.get("backgroundColor")
    if not isinstance(background, str) or not background.strip():
        background = None

    fonts_raw = raw.get("fonts", ())
    fonts: list[FontSpec] = []
    if isinstance(fonts_raw, (list, tuple)):
        for entry in fonts_raw:
            spec = _font_spec(entry)
            if spec is not None:
                fonts.append(spec)

    return CanvasConfig(
        canvas_width=_positive_int(raw.get("canvasWidth"), DEFAULT_WIDTH),
        canvas_height=_positive_int(raw.get("canvasHeight"), DEFAULT_HEIGHT),
        position=position,
        background_color=background,
        fonts=tuple(fonts),
        extras={k: v for k, v in raw.items() if k not in _RECOGNIZED_KEYS},
    )


# ---------------------------------------------------------------------------
# Literal scanning
# ---------------------------------------------------------------------------

def _skip_string(code: str, i: int) -> int:
    """Return the index just past the string literal starting at ``code[i]``.

    Returns ``len(code)`` for an unterminated string.
    """
    quote = code[i]
    if code.startswith(quote * 3, i):
        delim = quote * 3
        i += 3
    else:
        delim = quote
        i += 1

    n = len(code)
    while i < n:
        ch = code[i]
        if ch == "\\":
            i += 2
            continue
        if code.startswith(delim, i):
            return i + len(delim)
        if ch == "\n" and len(delim) == 1:
            # single-quoted strings cannot span lines
            return n
        i += 1
    return n


def find_literal_end(code: str, start: int) -> int | None:
    """Find the index just past the brace matching the one at ``code[start]``.

    Braces inside string literals and ``#`` comments are not counted.
    Returns None when the braces never balance.
    """
    depth = 0
    i = start
    n = len(code)
    while i < n:
        ch = code[i]
        if ch in ("'", '"'):
            i = _skip_string(code, i)
            continue
        if ch == "#":
            newline = code.find("\n", i)
            if newline == -1:
                return None
            i = newline + 1
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        i += 1
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_config(code: str) -> CanvasConfig:
    """Extract the ``export config = {...}`` declaration. Never raises."""
    match = _DECLARATION_RE.search(code)
    if match is None:
        return DEFAULT_CONFIG

    start = match.end() - 1
    end = find_literal_end(code, start)
    if end is None:
        logger.debug("Config literal at offset %d is unterminated", start)
        return DEFAULT_CONFIG

    literal = code[start:end]
    try:
        parsed = ast.literal_eval(literal)
    except (ValueError, TypeError, SyntaxError, MemoryError, RecursionError) as e:
        logger.debug("Config literal could not be evaluated: %s", e)
        return DEFAULT_CONFIG

    if not isinstance(parsed, dict):
        logger.debug("Config literal is a %s, not a dict", type(parsed).__name__)
        return DEFAULT_CONFIG

    return config_from_mapping(parsed)


def sanitize_code(code: str) -> str:
    """Rewrite every ``export config`` prefix to a plain ``config`` assignment."""
    return _EXPORT_PREFIX_RE.sub("config", code)


def extract_config_from_code(code: str) -> tuple[CanvasConfig, str]:
    """Return the extracted config and the sanitized script together."""
    return extract_config(code), sanitize_code(code)
