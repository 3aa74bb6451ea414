"""Marshal worker-thread completions back onto the tkinter main loop."""

from __future__ import annotations

import logging
import queue
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class UiDispatcher:
    _POLL_MS = 100

    def __init__(self, poll_ms: Optional[int] = None) -> None:
        self._queue: queue.Queue = queue.Queue()
        self._poll_ms = poll_ms or self._POLL_MS
        self._root: Any = None
        self._poll_job: Optional[str] = None

    def post(self, fn: Callable[[], None]) -> None:
        """Queue ``fn`` to run on the UI context. Safe from any thread."""
        self._queue.put(fn)

    def drain(self) -> int:
        handled = 0
        try:
            while True:
                fn = self._queue.get_nowait()
                handled += 1
                try:
                    fn()
                except Exception:
                    logger.exception("error handling UI callback %r", fn)
        except queue.Empty:
            pass
        return handled

    # ---- tkinter integration ------------------------------------------

    def attach(self, root: Any) -> None:
        self._root = root
        self._poll_job = root.after(self._poll_ms, self._poll)

    def detach(self) -> None:
        if self._root is not None and self._poll_job is not None:
            self._root.after_cancel(self._poll_job)
        self._poll_job = None
        self._root = None

    def _poll(self) -> None:
        self.drain()
        if self._root is not None:
            self._poll_job = self._root.after(self._poll_ms, self._poll)

    def call_later(self, delay: float, fn: Callable[[], None]) -> None:
        """Run ``fn`` on the UI context after ``delay`` seconds."""
        if self._root is None:
            raise RuntimeError("call_later needs a root; call attach() first")
        self._root.after(max(0, int(delay * 1000)), fn)
