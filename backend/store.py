"""
Single-writer state container for the studio.

Every write swaps in a new immutable ``Snapshot``; the source text, the
config extracted from it and its sanitized form are always replaced together,
so no reader can observe a config that belongs to older text.
"""

import enum
import logging
from dataclasses import dataclass, replace
from typing import Callable

from canvas_config import DEFAULT_CONFIG, CanvasConfig, extract_config_from_code
from render_state import CursorPosition, RenderState

logger = logging.getLogger(__name__)


class ExecutionStatus(str, enum.Enum):
    READY = "Ready"
    PENDING = "Pending"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


_TRANSITIONS = {
    ExecutionStatus.READY: {ExecutionStatus.PENDING},
    ExecutionStatus.PENDING: {
        ExecutionStatus.PENDING,
        ExecutionStatus.SUCCEEDED,
        ExecutionStatus.FAILED,
    },
    ExecutionStatus.SUCCEEDED: {ExecutionStatus.PENDING},
    ExecutionStatus.FAILED: {ExecutionStatus.PENDING},
}


class InvalidTransition(ValueError):
    pass


@dataclass(frozen=True)
class Snapshot:
    code: str = ""
    config: CanvasConfig = DEFAULT_CONFIG
    safe_code: str = ""
    status: ExecutionStatus = ExecutionStatus.READY
    render_state: RenderState | None = None
    cursor: CursorPosition = CursorPosition()
    error: str | None = None
    revision: int = 0

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "config": self.config.to_dict(),
            "status": self.status.value,
            "render_state": self.render_state.to_dict() if self.render_state else None,
            "cursor": self.cursor.to_dict(),
            "error": self.error,
            "revision": self.revision,
        }


Listener = Callable[[Snapshot], None]


class Store:
    def __init__(self, code: str = ""):
        config, safe_code = extract_config_from_code(code)
        self._snapshot = Snapshot(code=code, config=config, safe_code=safe_code)
        self._listeners: list[Listener] = []

    def snapshot(self) -> Snapshot:
        """Return the current point-in-time state."""
        return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called after every write. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _commit(self, **changes) -> Snapshot:
        snap = replace(self._snapshot, revision=self._snapshot.revision + 1, **changes)
        self._snapshot = snap
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("Store listener failed")
        return snap

    # -- writers --------------------------------------------------------------

    def set_code(self, code: str) -> Snapshot:
        config, safe_code = extract_config_from_code(code)
        return self._commit(code=code, config=config, safe_code=safe_code)

    def set_status(self, status: ExecutionStatus, error: str | None = None) -> Snapshot:
        current = self._snapshot.status
        if status not in _TRANSITIONS[current]:
            raise InvalidTransition(f"{current.value} -> {status.value}")
        return self._commit(status=status, error=error)

    def set_render_state(self, state: RenderState) -> Snapshot:
        if state == self._snapshot.render_state:
            return self._snapshot
        return self._commit(render_state=state)

    def set_cursor(self, cursor: CursorPosition) -> Snapshot:
        if cursor == self._snapshot.cursor:
            return self._snapshot
        return self._commit(cursor=cursor)
