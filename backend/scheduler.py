"""
Debounced pipeline scheduling.

Each edit re-arms a single quiet-period timer on the event loop; only the
last edit of a burst leads to a run. The callback receives no arguments and
must read the current store snapshot itself when it fires.
"""

import asyncio
import logging
from typing import Callable

from store import ExecutionStatus, Store

logger = logging.getLogger(__name__)

DEFAULT_DELAY = 0.8  # seconds


class DebounceScheduler:
    def __init__(
        self,
        store: Store,
        callback: Callable[[], None],
        delay: float = DEFAULT_DELAY,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self.store = store
        self.callback = callback
        self.delay = delay
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None
        self._closed = False

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def notify_mutation(self) -> asyncio.TimerHandle | None:
        """Mark the status Pending and (re-)arm the quiet-period timer."""
        if self._closed:
            return None
        self.store.set_status(ExecutionStatus.PENDING)
        return self.arm()

    def arm(self) -> asyncio.TimerHandle | None:
        """Cancel any armed timer and arm a fresh one."""
        if self._closed:
            logger.debug("Scheduler is closed, not arming")
            return None
        self.cancel()
        self._handle = self._get_loop().call_later(self.delay, self._fire)
        return self._handle

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def close(self) -> None:
        """Cancel the armed timer and refuse any further arming."""
        self.cancel()
        self._closed = True

    def _fire(self) -> None:
        self._handle = None
        if self._closed:
            return
        try:
            self.callback()
        except Exception:
            logger.exception("Scheduled pipeline run failed")
