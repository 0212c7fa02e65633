"""
Cooperative single-threaded UI loop.

All engine state is mutated from callbacks run by this loop, between frames,
so nothing in the engine needs locking. The loop is driven explicitly with
tick()/advance() which keeps it deterministic for tests and headless use.
"""

import itertools
from dataclasses import dataclass, field
from typing import Callable, Optional

from .logging import get_logger

logger = get_logger(__name__)

FRAME_INTERVAL = 1.0 / 60


@dataclass(order=True)
class _Timer:
    due: float
    handle: int
    interval: float = field(compare=False, default=0.0)
    callback: Callable[[], None] = field(compare=False, default=None)


class FrameScheduler:
    """Animation-frame requests and interval timers."""

    def __init__(self, now: Optional[Callable[[], float]] = None):
        self._now = now
        self._handles = itertools.count(1)
        self._frame_callbacks: dict[int, Callable[[float], None]] = {}
        self._timers: dict[int, _Timer] = {}
        self._virtual_time: Optional[float] = None if now else 0.0
        self.frames_run = 0

    def now(self) -> float:
        """Current loop time; virtual unless a time source was given."""
        if self._now is None:
            return self._virtual_time
        return self._now()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def request_animation_frame(self, callback: Callable[[float], None]) -> int:
        """Run callback once at the start of the next frame."""
        handle = next(self._handles)
        self._frame_callbacks[handle] = callback
        return handle

    def cancel_animation_frame(self, handle: int) -> None:
        self._frame_callbacks.pop(handle, None)

    def set_interval(self, callback: Callable[[], None], interval: float) -> int:
        """Run callback every interval seconds until cleared."""
        handle = next(self._handles)
        self._timers[handle] = _Timer(self.now() + interval, handle, interval, callback)
        return handle

    def clear(self, handle: int) -> None:
        """Cancel an interval."""
        self._timers.pop(handle, None)

    # ------------------------------------------------------------------
    # Driving the loop
    # ------------------------------------------------------------------

    def _run_timers(self, now: float) -> None:
        while True:
            due = sorted(t for t in self._timers.values() if t.due <= now)
            if not due:
                return
            timer = due[0]
            timer.due += timer.interval
            timer.callback()

    def tick(self) -> None:
        """Run one loop iteration: due timers, then one frame."""
        now = self.now()

        self._run_timers(now)

        # Callbacks requested while a frame runs belong to the next frame
        callbacks, self._frame_callbacks = self._frame_callbacks, {}
        for callback in callbacks.values():
            callback(now)
        if callbacks:
            self.frames_run += 1

    def advance(self, seconds: float, frame_interval: float = FRAME_INTERVAL) -> None:
        """Advance virtual time, ticking once per frame interval."""
        if self._virtual_time is None:
            raise RuntimeError("advance() requires a scheduler on virtual time")
        target = self._virtual_time + seconds
        while self._virtual_time + frame_interval <= target + 1e-9:
            self._virtual_time += frame_interval
            self.tick()
        if self._virtual_time < target:
            self._virtual_time = target
            self.tick()
