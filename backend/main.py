"""
Canvas Studio backend: FastAPI + WebSocket server.

The browser editor pushes script text, viewport size and pointer positions
over /ws; the backend renders the script onto a Pillow surface and
broadcasts status, render state and PNG frames back.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

import config
import workspace
import ws_handlers
from studio import CanvasStudio

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Studio state
# ---------------------------------------------------------------------------

_studio: CanvasStudio | None = None
_ctx: ws_handlers.WsContext | None = None
_broadcast_tasks: set[asyncio.Task] = set()


def _broadcast_event(event: str, payload: dict) -> None:
    """Forward a studio event to every connected client."""
    task = asyncio.get_running_loop().create_task(
        manager.broadcast({"type": event, **payload})
    )
    _broadcast_tasks.add(task)
    task.add_done_callback(_broadcast_tasks.discard)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _studio, _ctx
    settings = config.load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    workspace.init_workspace(settings.workspace_dir)
    _studio = CanvasStudio(settings, workspace.load_script())
    _studio.subscribe(_broadcast_event)
    _ctx = ws_handlers.WsContext(studio=_studio, manager=manager)
    _studio.start()

    yield

    _studio.close()
    _studio = None
    _ctx = None


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(title="Canvas Studio", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Connection manager
# ---------------------------------------------------------------------------

class ConnectionManager:
    def __init__(self):
        self.active: list[WebSocket] = []

    async def connect(self, ws: WebSocket):
        await ws.accept()
        self.active.append(ws)

    def disconnect(self, ws: WebSocket):
        if ws in self.active:
            self.active.remove(ws)

    async def broadcast(self, message: dict):
        data = json.dumps(message)
        dead = []
        for ws in list(self.active):
            try:
                await ws.send_text(data)
            except Exception as e:
                logger.debug("Dropping client after send failure: %s", e)
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws)


manager = ConnectionManager()


# ---------------------------------------------------------------------------
# REST endpoints
# ---------------------------------------------------------------------------

class StudioUnavailable(RuntimeError):
    pass


def _require_studio() -> CanvasStudio:
    if _studio is None:
        raise StudioUnavailable("Studio is not running")
    return _studio


@app.get("/api/state")
async def get_state():
    return _require_studio().state()


@app.get("/api/script")
async def get_script():
    return {"code": _require_studio().store.snapshot().code}


@app.get("/api/frame")
async def get_frame():
    """Current buffer contents as PNG."""
    return Response(content=_require_studio().surface.to_png(), media_type="image/png")


@app.get("/api/export")
async def export_png():
    """Current buffer as a downloadable PNG with a timestamped name."""
    filename, data = _require_studio().export_png()
    return Response(
        content=data,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.exception_handler(StudioUnavailable)
async def studio_unavailable(request, exc: StudioUnavailable):
    return JSONResponse({"error": str(exc)}, status_code=503)


# ---------------------------------------------------------------------------
# WebSocket endpoint
# ---------------------------------------------------------------------------

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await manager.connect(ws)
    ctx = _ctx
    if ctx is None:
        await ws.close(code=1013)
        manager.disconnect(ws)
        return

    try:
        await ws_handlers.send_json(ws, ws_handlers.init_message(ctx))
        while True:
            raw = await ws.receive_text()
            await ws_handlers.dispatch(ws, raw, ctx)
    except (WebSocketDisconnect, RuntimeError):
        pass
    finally:
        manager.disconnect(ws)


def run() -> None:
    settings = config.load_settings()
    uvicorn.run("main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
