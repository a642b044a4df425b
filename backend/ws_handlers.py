"""WebSocket message handlers for the canvas studio.

Each handler is an ``async def handle_xxx(ws, msg, ctx)`` function.
A dispatch table ``HANDLERS`` maps message type strings to handlers.
"""

import base64
import json
import logging
from dataclasses import dataclass

from studio import CanvasStudio

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared context
# ---------------------------------------------------------------------------

@dataclass
class WsContext:
    studio: CanvasStudio
    manager: object = None  # ConnectionManager instance


class MessageError(ValueError):
    """A client message is missing a field or has the wrong type."""


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _number(msg: dict, key: str) -> float:
    value = msg.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MessageError(f"'{key}' must be a number")
    return float(value)


async def send_json(ws, payload: dict) -> None:
    await ws.send_text(json.dumps(payload))


async def send_error(ws, message: str) -> None:
    await send_json(ws, {"type": "error", "message": message})


def init_message(ctx: WsContext) -> dict:
    return {"type": "init", **ctx.studio.state()}


# ---------------------------------------------------------------------------
# Handlers: each is async def handle_xxx(ws, msg, ctx)
# ---------------------------------------------------------------------------

async def handle_set_code(ws, msg, ctx: WsContext):
    code = msg.get("code")
    if not isinstance(code, str):
        raise MessageError("'code' must be a string")
    ctx.studio.set_code(code)


async def handle_reset_code(ws, msg, ctx: WsContext):
    snap = ctx.studio.reset()
    await ctx.manager.broadcast({"type": "code", "code": snap.code})


async def handle_resize_viewport(ws, msg, ctx: WsContext):
    width = _number(msg, "width")
    height = _number(msg, "height")
    if width < 0 or height < 0:
        raise MessageError("viewport size cannot be negative")
    ctx.studio.resize_viewport(width, height)


async def handle_pointer_move(ws, msg, ctx: WsContext):
    ctx.studio.pointer_move(
        _number(msg, "x"),
        _number(msg, "y"),
        _number(msg, "rect_width"),
        _number(msg, "rect_height"),
    )


async def handle_export_png(ws, msg, ctx: WsContext):
    filename, data = ctx.studio.export_png()
    await send_json(ws, {
        "type": "export_ready",
        "filename": filename,
        "data_b64": base64.b64encode(data).decode("ascii"),
    })


async def handle_request_state(ws, msg, ctx: WsContext):
    await send_json(ws, init_message(ctx))


async def dispatch(ws, raw: str, ctx: WsContext) -> None:
    """Decode one client message and run its handler.

    Bad messages are answered with an ``error`` message; the connection stays open.
    """
    try:
        msg = json.loads(raw)
    except json.JSONDecodeError:
        await send_error(ws, "message is not valid JSON")
        return
    if not isinstance(msg, dict):
        await send_error(ws, "message must be a JSON object")
        return

    msg_type = msg.get("type")
    handler = HANDLERS.get(msg_type)
    if handler is None:
        logger.warning("Unknown message type: %r", msg_type)
        await send_error(ws, f"unknown message type: {msg_type}")
        return

    try:
        await handler(ws, msg, ctx)
    except MessageError as e:
        await send_error(ws, f"{msg_type}: {e}")


# ---------------------------------------------------------------------------
# Dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    "set_code": handle_set_code,
    "reset_code": handle_reset_code,
    "resize_viewport": handle_resize_viewport,
    "pointer_move": handle_pointer_move,
    "export_png": handle_export_png,
    "request_state": handle_request_state,
}
