"""
Display geometry for the rendered canvas.

The buffer is always the configured pixel size; the client shows it scaled
down (never up) to fit the measured viewport, aligned by the configured
position.
"""

import logging
from dataclasses import asdict, dataclass

from canvas_config import CanvasConfig
from surface import Surface

logger = logging.getLogger(__name__)

DEFAULT_PADDING = 20

# position → (vertical anchor, horizontal anchor)
POSITION_ANCHORS = {
    "center": ("center", "center"),
    "top": ("start", "center"),
    "top-left": ("start", "start"),
    "top-right": ("start", "end"),
    "right": ("center", "end"),
    "bottom-right": ("end", "end"),
    "bottom": ("end", "center"),
    "bottom-left": ("end", "start"),
    "left": ("center", "start"),
}
_FALLBACK_ANCHORS = ("center", "center")


@dataclass(frozen=True)
class ViewportBounds:
    width: float
    height: float


@dataclass(frozen=True)
class RenderState:
    buffer_width: int
    buffer_height: int
    display_scale: float
    vertical_anchor: str
    horizontal_anchor: str
    padding_px: int

    @property
    def dims(self) -> str:
        return f"{self.buffer_width} x {self.buffer_height}"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["dims"] = self.dims
        return data


@dataclass(frozen=True)
class CursorPosition:
    x: int = 0
    y: int = 0

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y}


def anchors_for(position: str | None) -> tuple[str, str]:
    return POSITION_ANCHORS.get(position, _FALLBACK_ANCHORS)


def compute_render_state(
    config: CanvasConfig,
    viewport: ViewportBounds | None,
    padding: int = DEFAULT_PADDING,
) -> RenderState:
    """Derive the render state from the config and the measured viewport.

    ``display_scale = min(1, (vw - 2p) / bw, (vh - 2p) / bh)``, floored at 0.
    Without a measurement yet the buffer is shown at native size.
    """
    width = config.canvas_width
    height = config.canvas_height

    if viewport is None:
        scale = 1.0
    else:
        scale = min(
            1.0,
            (viewport.width - 2 * padding) / width,
            (viewport.height - 2 * padding) / height,
        )
        scale = max(0.0, scale)

    vertical, horizontal = anchors_for(config.position)
    return RenderState(
        buffer_width=width,
        buffer_height=height,
        display_scale=scale,
        vertical_anchor=vertical,
        horizontal_anchor=horizontal,
        padding_px=padding,
    )


def cursor_to_buffer(
    offset_x: float,
    offset_y: float,
    rect_width: float,
    rect_height: float,
    buffer_width: int,
    buffer_height: int,
) -> CursorPosition:
    """Map a pointer offset inside the displayed canvas to buffer pixels."""
    if rect_width <= 0 or rect_height <= 0:
        return CursorPosition()
    return CursorPosition(
        x=round(offset_x * buffer_width / rect_width),
        y=round(offset_y * buffer_height / rect_height),
    )


class RenderStateCalculator:
    """Keeps the surface size and the derived render state current."""

    def __init__(self, surface: Surface, padding: int = DEFAULT_PADDING):
        self.surface = surface
        self.padding = padding
        self.viewport: ViewportBounds | None = None
        self.state: RenderState | None = None

    def observe_viewport(self, bounds: ViewportBounds) -> bool:
        """Record a viewport measurement. Returns True if it differs from the last one."""
        if bounds == self.viewport:
            return False
        self.viewport = bounds
        return True

    def update(self, config: CanvasConfig) -> RenderState:
        """Recompute the state and resize the surface only when the buffer size changed."""
        state = compute_render_state(config, self.viewport, self.padding)
        if self.surface.resize(state.buffer_width, state.buffer_height):
            logger.info("Canvas buffer is now %s", state.dims)
        if state != self.state:
            self.state = state
        return self.state
