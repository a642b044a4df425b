"""
Raster drawing surface and its 2D context.

``Surface`` plays the role of an HTML canvas element: it owns a Pillow RGBA
buffer whose size is set by the render state, and hands out a single
``Context2D`` through ``get_context("2d")``. The context keeps canvas-style
drawing state (styles, transform, current path) and rasterizes with
``PIL.ImageDraw`` in blending mode.
"""

import io
import logging
import math
import re
from dataclasses import dataclass

import numpy as np
from PIL import Image, ImageColor, ImageDraw, ImageFont

logger = logging.getLogger(__name__)

DEFAULT_SURFACE_WIDTH = 300
DEFAULT_SURFACE_HEIGHT = 150

_TRANSPARENT = (0, 0, 0, 0)
_IDENTITY = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)

_RGBA_FUNC_RE = re.compile(
    r"rgba?\(\s*([\d.]+)\s*,\s*([\d.]+)\s*,\s*([\d.]+)\s*(?:,\s*([\d.]+%?)\s*)?\)",
    re.IGNORECASE,
)
_FONT_SIZE_RE = re.compile(r"(\d+(?:\.\d+)?)px")

_WEIGHT_KEYWORDS = {"normal": 400, "bold": 700, "bolder": 700, "lighter": 300}

_ALIGN_ANCHORS = {"left": "l", "start": "l", "center": "m", "right": "r", "end": "r"}
_BASELINE_ANCHORS = {
    "top": "a", "hanging": "a", "middle": "m",
    "alphabetic": "s", "ideographic": "d", "bottom": "d",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def parse_color(value: str, alpha: float = 1.0) -> tuple[int, int, int, int]:
    """Parse a CSS-like color string into an RGBA tuple.

    Accepts everything ``PIL.ImageColor`` understands plus ``rgba()`` with a
    fractional alpha and ``transparent``. ``alpha`` is multiplied in.
    """
    text = value.strip()
    if text.lower() == "transparent":
        return _TRANSPARENT

    match = _RGBA_FUNC_RE.fullmatch(text)
    if match:
        r, g, b = (min(255, int(float(c))) for c in match.group(1, 2, 3))
        raw_a = match.group(4)
        if raw_a is None:
            a = 1.0
        elif raw_a.endswith("%"):
            a = float(raw_a[:-1]) / 100.0
        else:
            a = float(raw_a)
        rgba = (r, g, b, round(255 * max(0.0, min(1.0, a))))
    else:
        rgba = ImageColor.getcolor(text, "RGBA")

    return rgba[:3] + (round(rgba[3] * max(0.0, min(1.0, alpha))),)


@dataclass(frozen=True)
class FontDescriptor:
    size: float = 10.0
    weight: int = 400
    families: tuple[str, ...] = ("sans-serif",)


def parse_font(value: str) -> FontDescriptor:
    """Parse a CSS font shorthand such as ``"bold 40px Inter, sans-serif"``."""
    match = _FONT_SIZE_RE.search(value)
    if match is None:
        return FontDescriptor()

    weight = 400
    for token in value[:match.start()].split():
        token = token.lower()
        if token in _WEIGHT_KEYWORDS:
            weight = _WEIGHT_KEYWORDS[token]
        elif token.isdigit():
            weight = int(token)

    # "40px/1.2 Inter" carries a line height we do not use
    rest = value[match.end():].lstrip()
    if rest.startswith("/"):
        parts = rest.split(None, 1)
        rest = parts[1] if len(parts) > 1 else ""

    families = tuple(
        f.strip().strip("'\"") for f in rest.split(",") if f.strip().strip("'\"")
    )
    return FontDescriptor(
        size=float(match.group(1)),
        weight=weight,
        families=families or ("sans-serif",),
    )


def _multiply(m: tuple, n: tuple) -> tuple:
    """Compose two affine transforms ``(a, b, c, d, e, f)``: apply ``n`` then ``m``."""
    a, b, c, d, e, f = m
    a2, b2, c2, d2, e2, f2 = n
    return (
        a * a2 + c * b2,
        b * a2 + d * b2,
        a * c2 + c * d2,
        b * c2 + d * d2,
        a * e2 + c * f2 + e,
        b * e2 + d * f2 + f,
    )


@dataclass(frozen=True)
class TextMetrics:
    width: float


@dataclass(frozen=True)
class _DrawState:
    fill_style: str = "#000000"
    stroke_style: str = "#000000"
    line_width: float = 1.0
    font: str = "10px sans-serif"
    text_align: str = "start"
    text_baseline: str = "alphabetic"
    global_alpha: float = 1.0
    transform: tuple = _IDENTITY


_STATE_FIELDS = (
    "fill_style", "stroke_style", "line_width", "font",
    "text_align", "text_baseline", "global_alpha",
)


# ---------------------------------------------------------------------------
# 2D context
# ---------------------------------------------------------------------------

class Context2D:
    """Imperative 2D drawing API over a ``Surface``."""

    def __init__(self, surface: "Surface"):
        self.canvas = surface
        self._stack: list[_DrawState] = []
        self._transform = _IDENTITY
        self._subpaths: list[list[tuple[float, float]]] = []
        self._closed: list[bool] = []
        self._apply(_DrawState())

    # -- state --------------------------------------------------------------

    def _current(self) -> _DrawState:
        return _DrawState(
            transform=self._transform,
            **{name: getattr(self, name) for name in _STATE_FIELDS},
        )

    def _apply(self, state: _DrawState) -> None:
        for name in _STATE_FIELDS:
            setattr(self, name, getattr(state, name))
        self._transform = state.transform

    def save(self) -> None:
        self._stack.append(self._current())

    def restore(self) -> None:
        if self._stack:
            self._apply(self._stack.pop())

    def reset(self) -> None:
        """Restore the default drawing state, empty the stack and the path."""
        self._stack.clear()
        self._apply(_DrawState())
        self.begin_path()

    # -- transforms ---------------------------------------------------------

    def translate(self, x: float, y: float) -> None:
        self._transform = _multiply(self._transform, (1.0, 0.0, 0.0, 1.0, x, y))

    def scale(self, x: float, y: float) -> None:
        self._transform = _multiply(self._transform, (x, 0.0, 0.0, y, 0.0, 0.0))

    def rotate(self, angle: float) -> None:
        cos, sin = math.cos(angle), math.sin(angle)
        self._transform = _multiply(self._transform, (cos, sin, -sin, cos, 0.0, 0.0))

    def transform(self, a: float, b: float, c: float, d: float, e: float, f: float) -> None:
        self._transform = _multiply(self._transform, (a, b, c, d, e, f))

    def set_transform(self, a: float, b: float, c: float, d: float, e: float, f: float) -> None:
        self._transform = (a, b, c, d, e, f)

    def reset_transform(self) -> None:
        self._transform = _IDENTITY

    def _point(self, x: float, y: float) -> tuple[float, float]:
        a, b, c, d, e, f = self._transform
        return (a * x + c * y + e, b * x + d * y + f)

    def _scale_factor(self) -> float:
        a, b, c, d, _, _ = self._transform
        return math.sqrt(abs(a * d - b * c))

    # -- raster helpers -----------------------------------------------------

    def _draw(self) -> ImageDraw.ImageDraw:
        return ImageDraw.Draw(self.canvas.image, "RGBA")

    def _color(self, style: str) -> tuple[int, int, int, int]:
        return parse_color(str(style), self.global_alpha)

    def _rect_points(self, x: float, y: float, w: float, h: float) -> list[tuple[float, float]]:
        return [
            self._point(x, y),
            self._point(x + w, y),
            self._point(x + w, y + h),
            self._point(x, y + h),
        ]

    def _pixel_box(self, x: float, y: float, w: float, h: float) -> tuple[int, int, int, int] | None:
        """Integer box ``(x0, y0, x1, y1)`` for an axis-aligned rect, clipped to the buffer.

        Returns None when the transform rotates or skews, or the box is empty.
        """
        if self._transform[1] != 0 or self._transform[2] != 0:
            return None
        (x0, y0), (x1, y1) = self._point(x, y), self._point(x + w, y + h)
        x0, x1 = sorted((round(x0), round(x1)))
        y0, y1 = sorted((round(y0), round(y1)))
        x0, y0 = max(0, x0), max(0, y0)
        x1, y1 = min(self.canvas.width, x1), min(self.canvas.height, y1)
        if x1 <= x0 or y1 <= y0:
            return None
        return (x0, y0, x1, y1)

    # -- rectangles ---------------------------------------------------------

    def clear_rect(self, x: float, y: float, w: float, h: float) -> None:
        if self._transform[1] == 0 and self._transform[2] == 0:
            box = self._pixel_box(x, y, w, h)
            if box is not None:
                self.canvas.image.paste(_TRANSPARENT, box)
            return
        mask = Image.new("L", self.canvas.image.size, 0)
        ImageDraw.Draw(mask).polygon(self._rect_points(x, y, w, h), fill=255)
        self.canvas.image.paste(_TRANSPARENT, mask=mask)

    def fill_rect(self, x: float, y: float, w: float, h: float) -> None:
        color = self._color(self.fill_style)
        if self._transform[1] == 0 and self._transform[2] == 0:
            box = self._pixel_box(x, y, w, h)
            if box is not None:
                x0, y0, x1, y1 = box
                self._draw().rectangle((x0, y0, x1 - 1, y1 - 1), fill=color)
            return
        self._draw().polygon(self._rect_points(x, y, w, h), fill=color)

    def stroke_rect(self, x: float, y: float, w: float, h: float) -> None:
        points = self._rect_points(x, y, w, h)
        self._stroke_points(points + points[:1])

    # -- paths --------------------------------------------------------------

    def begin_path(self) -> None:
        self._subpaths = []
        self._closed = []

    def move_to(self, x: float, y: float) -> None:
        self._subpaths.append([self._point(x, y)])
        self._closed.append(False)

    def line_to(self, x: float, y: float) -> None:
        if not self._subpaths:
            self.move_to(x, y)
            return
        self._subpaths[-1].append(self._point(x, y))

    def close_path(self) -> None:
        if self._subpaths and self._subpaths[-1]:
            self._closed[-1] = True
            first = self._subpaths[-1][0]
            self._subpaths.append([first])
            self._closed.append(False)

    def rect(self, x: float, y: float, w: float, h: float) -> None:
        self._subpaths.append(self._rect_points(x, y, w, h))
        self._closed.append(True)
        self._subpaths.append([self._point(x, y)])
        self._closed.append(False)

    def arc(
        self,
        x: float,
        y: float,
        radius: float,
        start_angle: float,
        end_angle: float,
        counterclockwise: bool = False,
    ) -> None:
        if radius < 0:
            raise ValueError(f"The radius provided ({radius}) is negative.")

        sweep = end_angle - start_angle
        full = 2 * math.pi
        if not counterclockwise:
            sweep = full if sweep >= full else sweep % full
        else:
            sweep = -full if sweep <= -full else -((-sweep) % full)

        steps = max(8, min(360, int(abs(sweep) * max(radius, 1.0) * self._scale_factor() / 2)))
        points = [
            self._point(
                x + radius * math.cos(start_angle + sweep * i / steps),
                y + radius * math.sin(start_angle + sweep * i / steps),
            )
            for i in range(steps + 1)
        ]
        if not self._subpaths:
            self._subpaths.append([])
            self._closed.append(False)
        self._subpaths[-1].extend(points)

    def fill(self) -> None:
        draw = self._draw()
        color = self._color(self.fill_style)
        for points in self._subpaths:
            if len(points) >= 3:
                draw.polygon(points, fill=color)

    def stroke(self) -> None:
        for points, closed in zip(self._subpaths, self._closed):
            if len(points) < 2:
                continue
            self._stroke_points(points + points[:1] if closed else points)

    def _stroke_points(self, points: list[tuple[float, float]]) -> None:
        width = max(1, round(self.line_width * self._scale_factor()))
        self._draw().line(points, fill=self._color(self.stroke_style), width=width, joint="curve")

    # -- text ---------------------------------------------------------------

    def _font(self) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
        descriptor = parse_font(self.font)
        size = max(1.0, descriptor.size * self._scale_factor())
        path = None
        if self.canvas.font_registry is not None:
            path = self.canvas.font_registry.resolve(descriptor.families, descriptor.weight)
        if path is not None:
            try:
                return ImageFont.truetype(str(path), size=size)
            except OSError as e:
                logger.warning("Could not open font %s: %s", path, e)
        return ImageFont.load_default(size=size)

    def _text(self, text: str, x: float, y: float, *, fill: bool) -> None:
        font = self._font()
        anchor = (
            _ALIGN_ANCHORS.get(self.text_align, "l")
            + _BASELINE_ANCHORS.get(self.text_baseline, "s")
        )
        kwargs = {"font": font}
        if isinstance(font, ImageFont.FreeTypeFont):
            kwargs["anchor"] = anchor
        if fill:
            kwargs["fill"] = self._color(self.fill_style)
        else:
            kwargs["fill"] = _TRANSPARENT
            kwargs["stroke_width"] = max(1, round(self.line_width))
            kwargs["stroke_fill"] = self._color(self.stroke_style)
        self._draw().text(self._point(x, y), str(text), **kwargs)

    def fill_text(self, text: str, x: float, y: float) -> None:
        self._text(text, x, y, fill=True)

    def stroke_text(self, text: str, x: float, y: float) -> None:
        self._text(text, x, y, fill=False)

    def measure_text(self, text: str) -> TextMetrics:
        width = self._font().getlength(str(text)) / max(self._scale_factor(), 1e-9)
        return TextMetrics(width=width)

    # -- pixels -------------------------------------------------------------

    def get_image_data(self, x: int, y: int, w: int, h: int) -> np.ndarray:
        """Return an ``(h, w, 4)`` uint8 array of buffer pixels."""
        region = self.canvas.image.crop((x, y, x + w, y + h))
        return np.asarray(region, dtype=np.uint8).copy()


# ---------------------------------------------------------------------------
# Surface
# ---------------------------------------------------------------------------

class Surface:
    """Pixel buffer handed to scripts as ``canvas``."""

    def __init__(
        self,
        width: int = DEFAULT_SURFACE_WIDTH,
        height: int = DEFAULT_SURFACE_HEIGHT,
        font_registry=None,
    ):
        self.font_registry = font_registry
        self.image = Image.new("RGBA", (width, height), _TRANSPARENT)
        self._context: Context2D | None = None

    @property
    def width(self) -> int:
        return self.image.width

    @width.setter
    def width(self, value: int) -> None:
        self.resize(value, self.height)

    @property
    def height(self) -> int:
        return self.image.height

    @height.setter
    def height(self, value: int) -> None:
        self.resize(self.width, value)

    def resize(self, width: int, height: int) -> bool:
        """Reallocate a transparent buffer if the size changed.

        Returns True when a new buffer was allocated.
        """
        width, height = int(width), int(height)
        if width <= 0 or height <= 0:
            raise ValueError(f"Surface size must be positive, got {width}x{height}")
        if (width, height) == self.image.size:
            return False
        self.image = Image.new("RGBA", (width, height), _TRANSPARENT)
        if self._context is not None:
            self._context.reset()
        logger.debug("Surface resized to %dx%d", width, height)
        return True

    def get_context(self, kind: str = "2d") -> Context2D:
        if kind != "2d":
            raise ValueError(f"Unsupported context type: {kind}")
        if self._context is None:
            self._context = Context2D(self)
        return self._context

    def to_png(self) -> bytes:
        buf = io.BytesIO()
        self.image.save(buf, format="PNG")
        return buf.getvalue()
