"""
Freehand drawing over the video frame.

Pointer moves are buffered and painted at most once per animation frame, so
the input rate never drives the render rate. The overlay's bounding box is
read once per stroke (at pointer-down) and again only after a resize.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from PIL import Image, ImageColor, ImageDraw

from .logging import get_logger
from .models import Drawing, DrawingStatus, Point, generate_temp_id
from .timing import DEFAULT_TOLERANCE, active_drawings

logger = get_logger(__name__)

DRAWING_COLORS = {
    "red": "#FF0000",
    "orange": "#FFA500",
    "yellow": "#FFFF00",
    "green": "#00FF00",
    "blue": "#0000FF",
    "white": "#FFFFFF",
}
DEFAULT_BRUSH_COLOR = "#FF0000"
DEFAULT_BRUSH_SIZE = 3


@dataclass(frozen=True)
class Rect:
    """Bounding box of the overlay in client (pixel) coordinates."""
    left: float
    top: float
    width: float
    height: float

    def normalize(self, client_x: float, client_y: float) -> Point:
        """Map a client pixel position to a clamped [0, 1] point."""
        if self.width <= 0 or self.height <= 0:
            return Point(0.0, 0.0)
        x = (client_x - self.left) / self.width
        y = (client_y - self.top) / self.height
        return Point(min(1.0, max(0.0, x)), min(1.0, max(0.0, y)))


def resolve_color(color: str) -> str:
    """Accept a palette name or a hex string and return the hex form."""
    if color.lower() in DRAWING_COLORS:
        return DRAWING_COLORS[color.lower()]
    ImageColor.getrgb(color)  # raises ValueError on junk
    return color


class OverlaySurface:
    """Transparent raster the size of the rendered video box."""

    def __init__(self, width: int, height: int, brush_size: int = DEFAULT_BRUSH_SIZE):
        self.brush_size = brush_size
        self.image = Image.new("RGBA", (max(1, int(width)), max(1, int(height))), (0, 0, 0, 0))
        self._draw = ImageDraw.Draw(self.image)
        self.paint_count = 0

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    def resize(self, width: int, height: int) -> None:
        """Reallocate the raster; like a canvas, resizing clears it."""
        self.image = Image.new("RGBA", (max(1, int(width)), max(1, int(height))), (0, 0, 0, 0))
        self._draw = ImageDraw.Draw(self.image)

    def clear(self) -> None:
        self._draw.rectangle((0, 0, *self.image.size), fill=(0, 0, 0, 0))

    def _to_pixels(self, point: Point) -> tuple[float, float]:
        width, height = self.image.size
        return point.to_pixels(width, height)

    def dot(self, point: Point, color: str) -> None:
        x, y = self._to_pixels(point)
        r = self.brush_size / 2
        self._draw.ellipse((x - r, y - r, x + r, y + r), fill=color)

    def segment(self, start: Point, end: Point, color: str) -> None:
        """Draw one round-capped line segment."""
        self._draw.line(
            [self._to_pixels(start), self._to_pixels(end)],
            fill=color,
            width=self.brush_size,
            joint="curve",
        )
        self.dot(end, color)

    def stroke(self, points: list[Point], color: str) -> None:
        """Draw a whole stroke; a single point renders as a dot."""
        if not points:
            return
        self.dot(points[0], color)
        if len(points) > 1:
            self._draw.line(
                [self._to_pixels(p) for p in points],
                fill=color,
                width=self.brush_size,
                joint="curve",
            )
            self.dot(points[-1], color)

    def compose(self, frame: Optional[Image.Image] = None) -> Image.Image:
        """Return the overlay, optionally composited on a video frame."""
        if frame is None:
            return self.image.copy()
        base = frame.convert("RGBA").resize(self.image.size)
        return Image.alpha_composite(base, self.image)

    def save(self, output_path: Path, frame: Optional[Image.Image] = None) -> Path:
        self.compose(frame).save(output_path)
        return output_path


class DrawingEngine:
    """
    Turns pointer input into strokes and paints the active ones.

    The engine owns the point buffers and the cached bounding box. It reads
    play time from the clock and the unified drawing list from the store,
    both handed in at construction.
    """

    def __init__(
        self,
        clock,
        scheduler,
        store,
        surface: OverlaySurface,
        measure: Callable[[], Rect],
        on_stroke: Optional[Callable[[Drawing], None]] = None,
        color: str = DEFAULT_BRUSH_COLOR,
        tolerance: float = DEFAULT_TOLERANCE,
    ):
        self.clock = clock
        self.scheduler = scheduler
        self.store = store
        self.surface = surface
        self.measure = measure
        self.on_stroke = on_stroke
        self.color = resolve_color(color)
        self.tolerance = tolerance

        self.drawing_mode = False
        self.stroking = False
        self.stroke_points: list[Point] = []
        self._pending_points: list[Point] = []
        self._rect: Optional[Rect] = None
        self._frame_handle: Optional[int] = None
        self._full_redraw = False

        clock.on_play_state(self._on_play_state)
        clock.on_time(lambda _t: self.request_render())

    # ------------------------------------------------------------------
    # Mode
    # ------------------------------------------------------------------

    def set_drawing_mode(self, enabled: bool) -> None:
        """Entering drawing mode pauses playback; drawing on a moving frame is not allowed."""
        if enabled == self.drawing_mode:
            return
        self.drawing_mode = enabled
        if enabled and self.clock.is_playing:
            self.clock.pause()
        if not enabled and self.stroking:
            self.pointer_up()
        logger.debug("Drawing mode %s", "on" if enabled else "off")

    def toggle_drawing_mode(self) -> bool:
        self.set_drawing_mode(not self.drawing_mode)
        return self.drawing_mode

    def set_color(self, color: str) -> None:
        self.color = resolve_color(color)

    def _on_play_state(self, playing: bool) -> None:
        if playing and self.drawing_mode:
            self.set_drawing_mode(False)

    # ------------------------------------------------------------------
    # Pointer input
    # ------------------------------------------------------------------

    def _bounding_rect(self) -> Rect:
        if self._rect is None:
            self._rect = self.measure()
        return self._rect

    def pointer_down(self, client_x: float, client_y: float) -> bool:
        """Start a stroke; returns False when drawing mode is off."""
        if not self.drawing_mode:
            return False
        self._rect = self.measure()
        point = self._rect.normalize(client_x, client_y)
        self.stroking = True
        self.stroke_points = [point]
        self._pending_points = []
        self.surface.dot(point, self.color)
        return True

    def pointer_move(self, client_x: float, client_y: float) -> None:
        if not self.stroking or not self.drawing_mode:
            return
        self._pending_points.append(self._bounding_rect().normalize(client_x, client_y))
        self._schedule_frame()

    def pointer_up(self) -> Optional[Drawing]:
        """Finish the stroke and hand it to on_stroke as a pending drawing."""
        if not self.stroking:
            return None
        if self._frame_handle is not None:
            self.scheduler.cancel_animation_frame(self._frame_handle)
            self._frame_handle = None
        self._drain()
        self.stroking = False

        points, self.stroke_points = self.stroke_points, []
        if not points:
            return None

        drawing = Drawing(
            id=generate_temp_id(),
            timestamp=self.clock.current_time,
            points=points,
            color=self.color,
            status=DrawingStatus.PENDING,
        )
        logger.debug("Stroke finished: %d point(s) at %.3fs", len(points), drawing.timestamp)
        if self.on_stroke:
            self.on_stroke(drawing)
        if self._full_redraw:
            self._schedule_frame()
        return drawing

    pointer_leave = pointer_up

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _schedule_frame(self) -> None:
        if self._frame_handle is None:
            self._frame_handle = self.scheduler.request_animation_frame(self._on_frame)

    def request_render(self) -> None:
        """Ask for a full repaint on the next frame."""
        self._full_redraw = True
        self._schedule_frame()

    def _drain(self) -> None:
        """Paint buffered points as segments and move them to the stroke."""
        pending, self._pending_points = self._pending_points, []
        for point in pending:
            if self.stroke_points:
                self.surface.segment(self.stroke_points[-1], point, self.color)
            else:
                self.surface.dot(point, self.color)
            self.stroke_points.append(point)

    def _on_frame(self, _now: float) -> None:
        self._frame_handle = None
        if self._full_redraw:
            self._pending_points, pending = [], self._pending_points
            self.stroke_points.extend(pending)
            self.redraw()
        else:
            self._drain()
        self.surface.paint_count += 1

    def visible_drawings(self) -> list[Drawing]:
        """Committed and pending drawings anchored to the current frame."""
        return active_drawings(self.store.drawings, self.clock.current_time, self.tolerance)

    def redraw(self) -> None:
        """Repaint every active drawing plus the stroke in progress."""
        self._full_redraw = False
        self.surface.clear()
        for drawing in self.visible_drawings():
            self.surface.stroke(drawing.points, drawing.color)
        if self.stroke_points:
            self.surface.stroke(self.stroke_points, self.color)

    def resize(self, width: int, height: int) -> None:
        """Container resized: new raster size, stale bounding box, full repaint."""
        self.surface.resize(width, height)
        self._rect = None
        self.redraw()
