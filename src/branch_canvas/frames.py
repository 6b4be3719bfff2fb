"""
Next-frame scheduling for deferred store work.

The store defers two things to "the next frame": the bulk relayout that
follows height changes, and the focus notification after an insert.  Both
go through a ``FrameSlot``, which holds at most one pending callback.  A
request made while the slot is occupied is absorbed, and the slot is
cleared just before its callback runs, so a request made from inside the
callback schedules a fresh frame.

Schedulers:
  - ``ManualFrameScheduler`` — frames advance only when ``run_frame()`` is
    called.  Used headless (tests, the MCP server ticks once per tool call).
  - ``AsyncioFrameScheduler`` — frames fire on the running event loop after
    ``frame_interval`` seconds.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

FrameCallback = Callable[[], None]


class ManualFrameScheduler:
    """Queue callbacks until the owner advances a frame."""

    def __init__(self):
        self._queue: list[tuple[int, FrameCallback]] = []
        self._ids = itertools.count(1)

    @property
    def pending(self) -> int:
        return len(self._queue)

    def request_frame(self, callback: FrameCallback) -> int:
        handle = next(self._ids)
        self._queue.append((handle, callback))
        return handle

    def run_frame(self) -> int:
        """Fire every callback requested before this call.  Returns the count.

        Callbacks requested while the frame runs wait for the next one.
        """
        batch, self._queue = self._queue, []
        for _, callback in batch:
            callback()
        return len(batch)


class AsyncioFrameScheduler:
    """Fire callbacks on an asyncio loop roughly one display frame later."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None, frame_interval: float = 1 / 60):
        self._loop = loop
        self.frame_interval = frame_interval

    def request_frame(self, callback: FrameCallback) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(self.frame_interval, callback)


class FrameSlot:
    """A single-slot wrapper around a scheduler.

    ``request`` returns True when it scheduled a frame and False when one
    was already pending.  Nothing is queued behind a pending request.
    """

    def __init__(self, scheduler, name: str = "frame"):
        self._scheduler = scheduler
        self._callback: Optional[FrameCallback] = None
        self._pending = False
        self.name = name

    @property
    def pending(self) -> bool:
        return self._pending

    def request(self, callback: FrameCallback) -> bool:
        if self._pending:
            logger.debug(f"{self.name}: frame already pending, request absorbed")
            return False
        self._pending = True
        self._callback = callback
        self._scheduler.request_frame(self._fire)
        return True

    def _fire(self) -> None:
        callback = self._callback
        self._pending = False
        self._callback = None
        if callback is not None:
            callback()
