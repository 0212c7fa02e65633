"""In/out range selection for ranged comments."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .logging import get_logger

logger = get_logger(__name__)

DEFAULT_RANGE_LENGTH = 5.0
DRAG_SENSITIVITY = 0.2  # seconds per pixel
NUDGE_STEP = 1.0
MIN_OUT_GAP = 0.1


class RangeState(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


@dataclass
class RangeSelection:
    """Transient in/out pair; never persisted on its own."""
    start: float
    end: float
    active: bool = True

    def normalized(self) -> tuple[float, float]:
        """Return (start, end) with start <= end."""
        if self.end < self.start:
            return (self.end, self.start)
        return (self.start, self.end)


class RangeSelector:
    """
    State machine: Idle -> Selecting -> Committed, or Idle -> Selecting -> Cancelled.

    Committed and Cancelled are reported to listeners and the selector then
    rests in Idle again. The selector reads play time and duration from the
    clock it is given and seeks it when the out-point is nudged.
    """

    def __init__(
        self,
        clock,
        default_length: float = DEFAULT_RANGE_LENGTH,
        sensitivity: float = DRAG_SENSITIVITY,
    ):
        self.clock = clock
        self.default_length = default_length
        self.sensitivity = sensitivity
        self.state = RangeState.IDLE
        self.selection: Optional[RangeSelection] = None
        self._drag_origin: Optional[tuple[float, float]] = None
        self._listeners: list[Callable[[RangeState, Optional[RangeSelection]], None]] = []

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: Callable[[RangeState, Optional[RangeSelection]], None]) -> None:
        self._listeners.append(listener)

    def _transition(self, state: RangeState) -> None:
        logger.debug("Range selector: %s -> %s", self.state.value, state.value)
        self.state = state
        for listener in list(self._listeners):
            listener(state, self.selection)

    @property
    def is_selecting(self) -> bool:
        return self.state == RangeState.SELECTING

    def _duration(self) -> float:
        return self.clock.duration or 0.0

    def _clamp(self, value: float) -> float:
        duration = self._duration()
        value = max(0.0, value)
        return min(duration, value) if duration > 0 else value

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def begin(self) -> RangeSelection:
        """Enter Selecting with the play head as in-point and a default out-point."""
        start = self.clock.current_time
        end = start + self.default_length
        duration = self._duration()
        if duration > 0:
            end = min(duration, end)
        self.selection = RangeSelection(start=start, end=end)
        self._transition(RangeState.SELECTING)
        return self.selection

    def toggle(self) -> Optional[RangeSelection]:
        """Range button: start selecting, or cancel an ongoing selection."""
        if self.is_selecting:
            self.cancel()
            return None
        return self.begin()

    def cancel(self) -> None:
        """Leave range mode without side effects."""
        if not self.is_selecting:
            return
        self.selection = None
        self._drag_origin = None
        self._transition(RangeState.CANCELLED)
        self.state = RangeState.IDLE

    def commit(self) -> Optional[tuple[float, float]]:
        """Finish selecting and return the normalized (start, end) pair.

        Returns None when no selection is active.
        """
        if not self.is_selecting or self.selection is None:
            return None
        pair = self.selection.normalized()
        self.selection.active = False
        self._drag_origin = None
        self._transition(RangeState.COMMITTED)
        self.selection = None
        self.state = RangeState.IDLE
        return pair

    # ------------------------------------------------------------------
    # Out-point adjustment
    # ------------------------------------------------------------------

    def _require_selecting(self) -> RangeSelection:
        if not self.is_selecting or self.selection is None:
            raise RuntimeError("Range selector is not selecting")
        return self.selection

    def drag_start(self, pointer_x: float) -> None:
        """Begin dragging the out-point handle at a horizontal pixel position."""
        selection = self._require_selecting()
        self._drag_origin = (pointer_x, selection.end)

    def drag_to(self, pointer_x: float) -> float:
        """Move the out-point linearly with the horizontal pointer delta."""
        selection = self._require_selecting()
        if self._drag_origin is None:
            self.drag_start(pointer_x)
        origin_x, origin_end = self._drag_origin
        selection.end = self._clamp(origin_end + (pointer_x - origin_x) * self.sensitivity)
        return selection.end

    def drag_end(self) -> None:
        self._drag_origin = None

    def nudge(self, direction: int) -> float:
        """Step the out-point one second forward or back and seek to it."""
        selection = self._require_selecting()
        if direction >= 0:
            value = selection.end + NUDGE_STEP
            duration = self._duration()
            if duration > 0:
                value = min(duration, value)
        else:
            value = max(selection.start + MIN_OUT_GAP, selection.end - NUDGE_STEP)
        selection.end = value
        self.clock.seek(value)
        return value

    def set_out(self, value: Optional[float] = None) -> float:
        """Mark the out-point at the play head (or at an explicit time)."""
        selection = self._require_selecting()
        selection.end = self._clamp(self.clock.current_time if value is None else value)
        return selection.end
