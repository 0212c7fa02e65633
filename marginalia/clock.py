"""
Playback clock: the single source of "now" for the annotation engine.

Time reaches the clock two ways, native time-update events from the media
element and a ~100ms poll for players that do not fire them reliably. Both
write the same value, so consumers must not assume it is monotonic.
"""

from typing import Callable, Optional, Protocol

from .logging import get_logger
from .scheduler import FrameScheduler

logger = get_logger(__name__)

POLL_INTERVAL = 0.1
JOG_STEP = 0.1


class MediaElement(Protocol):
    """The subset of a media player the clock relies on."""

    current_time: float
    duration: float
    paused: bool
    volume: float
    muted: bool
    playback_rate: float

    def play(self) -> None: ...

    def pause(self) -> None: ...


class SimulatedMedia:
    """Headless media element whose play head follows scheduler time.

    It never fires time-update events itself, so a clock wrapping it relies
    on the polling fallback, which is what the CLI and tests exercise.
    """

    def __init__(self, scheduler: FrameScheduler, duration: float = 0.0):
        self._scheduler = scheduler
        self.duration = duration
        self.paused = True
        self.volume = 1.0
        self.muted = False
        self.playback_rate = 1.0
        self._position = 0.0
        self._started_at: Optional[float] = None

    @property
    def current_time(self) -> float:
        if self.paused or self._started_at is None:
            return self._position
        elapsed = (self._scheduler.now() - self._started_at) * self.playback_rate
        position = self._position + elapsed
        if self.duration > 0 and position >= self.duration:
            return self.duration
        return position

    @current_time.setter
    def current_time(self, value: float) -> None:
        self._position = value
        if not self.paused:
            self._started_at = self._scheduler.now()

    def play(self) -> None:
        if self.paused:
            self._started_at = self._scheduler.now()
            self.paused = False

    def pause(self) -> None:
        if not self.paused:
            self._position = self.current_time
            self.paused = True
            self._started_at = None


class PlaybackClock:
    """Wraps a media element and fans its state out to listeners."""

    def __init__(
        self,
        media: MediaElement,
        scheduler: FrameScheduler,
        poll_interval: float = POLL_INTERVAL,
    ):
        self.media = media
        self.scheduler = scheduler
        self.poll_interval = poll_interval
        self.current_time = float(media.current_time or 0.0)
        self.duration = float(media.duration or 0.0)
        self.is_playing = not media.paused
        self._poll_handle: Optional[int] = None
        self._time_listeners: list[Callable[[float], None]] = []
        self._play_listeners: list[Callable[[bool], None]] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin polling the media element."""
        if self._poll_handle is None:
            self._poll_handle = self.scheduler.set_interval(self.poll, self.poll_interval)

    def stop(self) -> None:
        if self._poll_handle is not None:
            self.scheduler.clear(self._poll_handle)
            self._poll_handle = None

    def attach(self, media: MediaElement) -> None:
        """Swap in a new media element, e.g. after a version switch."""
        self.media = media
        self.duration = float(media.duration or 0.0)
        self._set_time(float(media.current_time or 0.0))
        self._set_playing(not media.paused)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on_time(self, listener: Callable[[float], None]) -> None:
        self._time_listeners.append(listener)

    def on_play_state(self, listener: Callable[[bool], None]) -> None:
        self._play_listeners.append(listener)

    def _set_time(self, value: float) -> None:
        if value == self.current_time:
            return
        self.current_time = value
        for listener in list(self._time_listeners):
            listener(value)

    def _set_playing(self, playing: bool) -> None:
        if playing == self.is_playing:
            return
        self.is_playing = playing
        for listener in list(self._play_listeners):
            listener(playing)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def handle_time_update(self, value: Optional[float] = None) -> None:
        """Native time-update event from the media element."""
        self._set_time(float(self.media.current_time if value is None else value))

    def handle_duration_change(self) -> None:
        self.duration = float(self.media.duration or 0.0)

    def poll(self) -> None:
        """Polling fallback; reads the same state the events report."""
        self.duration = float(self.media.duration or self.duration or 0.0)
        self._set_time(float(self.media.current_time or 0.0))
        self._set_playing(not self.media.paused)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def play(self) -> None:
        self.media.play()
        self._set_playing(True)

    def pause(self) -> None:
        self.media.pause()
        self._set_playing(False)

    def toggle_play(self) -> None:
        if self.is_playing:
            self.pause()
        else:
            self.play()

    def _clamp(self, value: float) -> float:
        value = max(0.0, value)
        if self.duration > 0:
            value = min(self.duration, value)
        return value

    def seek(self, value: float) -> float:
        """Move the play head, clamped to [0, duration]."""
        value = self._clamp(value)
        self.media.current_time = value
        self._set_time(value)
        return value

    def step(self, seconds: float) -> float:
        return self.seek(self.current_time + seconds)

    def step_frames(self, frames: int, frame_rate: float = 30.0) -> float:
        """Move by whole frames (arrow keys)."""
        return self.step(frames / max(1.0, frame_rate))

    def jog(self, direction: int) -> float:
        """J/L keys: J pauses and steps back, L plays and steps forward."""
        if direction < 0:
            if self.is_playing:
                self.pause()
            return self.step(-JOG_STEP)
        if not self.is_playing:
            self.play()
        return self.step(JOG_STEP)

    @property
    def volume(self) -> float:
        return self.media.volume

    def set_volume(self, volume: float) -> None:
        self.media.volume = max(0.0, min(1.0, volume))
        self.media.muted = self.media.volume == 0

    @property
    def playback_rate(self) -> float:
        return self.media.playback_rate

    def set_playback_rate(self, rate: float) -> None:
        if rate <= 0:
            raise ValueError(f"Playback rate must be positive: {rate}")
        self.media.playback_rate = rate
