"""Tests for drawing.py - pointer batching and overlay rendering."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from PIL import Image

from marginalia.clock import PlaybackClock, SimulatedMedia
from marginalia.drawing import DRAWING_COLORS, DrawingEngine, OverlaySurface, Rect, resolve_color
from marginalia.models import Drawing, DrawingStatus, Point, is_temp_id


@pytest.fixture
def clock(scheduler):
    return PlaybackClock(SimulatedMedia(scheduler, duration=60.0), scheduler)


@pytest.fixture
def store():
    return SimpleNamespace(drawings=[])


@pytest.fixture
def measure():
    return MagicMock(return_value=Rect(left=10, top=20, width=200, height=100))


@pytest.fixture
def strokes():
    return []


@pytest.fixture
def engine(clock, scheduler, store, measure, strokes):
    surface = OverlaySurface(200, 100)
    engine = DrawingEngine(clock, scheduler, store, surface, measure, on_stroke=strokes.append)
    engine.set_drawing_mode(True)
    return engine


def alpha_at(surface, x, y):
    return surface.image.getpixel((x, y))[3]


class TestRect:
    """Tests for client-to-normalized coordinate mapping."""

    def test_normalize(self):
        rect = Rect(left=10, top=20, width=200, height=100)
        assert rect.normalize(110, 70) == Point(0.5, 0.5)

    def test_normalize_clamps(self):
        rect = Rect(left=0, top=0, width=100, height=100)
        assert rect.normalize(-50, 500) == Point(0.0, 1.0)

    def test_empty_rect(self):
        assert Rect(0, 0, 0, 0).normalize(5, 5) == Point(0.0, 0.0)


class TestResolveColor:
    """Tests for palette lookup."""

    def test_palette_name(self):
        assert resolve_color("Blue") == DRAWING_COLORS["blue"]

    def test_hex_passthrough(self):
        assert resolve_color("#123456") == "#123456"

    def test_invalid(self):
        with pytest.raises(ValueError):
            resolve_color("not-a-color")


class TestOverlaySurface:
    """Tests for the raster overlay."""

    def test_dot_for_single_point(self):
        surface = OverlaySurface(100, 100)
        surface.stroke([Point(0.5, 0.5)], "#FF0000")
        assert alpha_at(surface, 50, 50) > 0

    def test_stroke_paints_between_points(self):
        surface = OverlaySurface(100, 100, brush_size=3)
        surface.stroke([Point(0.1, 0.5), Point(0.9, 0.5)], "#00FF00")
        assert surface.image.getpixel((50, 50))[:3] == (0, 255, 0)

    def test_resize_clears(self):
        surface = OverlaySurface(100, 100)
        surface.dot(Point(0.5, 0.5), "#FF0000")
        surface.resize(50, 40)
        assert surface.size == (50, 40)
        assert alpha_at(surface, 25, 20) == 0

    def test_compose_over_frame(self, temp_dir):
        surface = OverlaySurface(20, 20)
        surface.dot(Point(0.5, 0.5), "#FF0000")
        frame = Image.new("RGB", (40, 40), (0, 0, 255))
        output = surface.save(temp_dir / "out.png", frame)
        with Image.open(output) as image:
            assert image.size == (20, 20)
            assert image.getpixel((0, 0))[:3] == (0, 0, 255)
            assert image.getpixel((10, 10))[:3] == (255, 0, 0)


class TestDrawingEngine:
    """Tests for stroke capture and frame-throttled painting."""

    def test_pointer_down_requires_drawing_mode(self, engine):
        engine.set_drawing_mode(False)
        assert engine.pointer_down(50, 50) is False
        assert engine.stroking is False

    def test_moves_are_buffered_until_frame(self, engine, scheduler):
        engine.pointer_down(10, 70)
        engine.pointer_move(60, 70)
        engine.pointer_move(110, 70)
        assert engine.stroke_points == [Point(0.0, 0.5)]
        assert alpha_at(engine.surface, 50, 50) == 0

        scheduler.tick()
        assert engine.stroke_points == [Point(0.0, 0.5), Point(0.25, 0.5), Point(0.5, 0.5)]
        assert alpha_at(engine.surface, 50, 50) > 0

    def test_one_paint_per_frame(self, engine, scheduler):
        engine.pointer_down(10, 70)
        for x in range(20, 200, 5):
            engine.pointer_move(x, 70)
        scheduler.tick()
        assert engine.surface.paint_count == 1

    def test_bounding_box_measured_once_per_stroke(self, engine, measure):
        engine.pointer_down(10, 70)
        for x in range(20, 100, 10):
            engine.pointer_move(x, 70)
        engine.pointer_up()
        assert measure.call_count == 1

    def test_resize_invalidates_bounding_box(self, engine, measure):
        engine.pointer_down(10, 70)
        engine.resize(400, 200)
        engine.pointer_move(50, 70)
        assert measure.call_count == 2
        assert engine.surface.size == (400, 200)

    def test_pointer_up_finalizes_stroke(self, engine, clock, strokes):
        clock.seek(7.05)
        engine.pointer_down(10, 70)
        engine.pointer_move(60, 70)
        drawing = engine.pointer_up()

        assert strokes == [drawing]
        assert is_temp_id(drawing.id)
        assert drawing.timestamp == 7.05
        assert drawing.status == DrawingStatus.PENDING
        assert drawing.points == [Point(0.0, 0.5), Point(0.25, 0.5)]
        assert engine.stroking is False

    def test_click_records_a_dot(self, engine):
        engine.pointer_down(110, 70)
        drawing = engine.pointer_up()
        assert drawing.is_dot

    def test_pointer_leave_flushes(self, engine):
        engine.pointer_down(10, 70)
        engine.pointer_move(60, 70)
        drawing = engine.pointer_leave()
        assert len(drawing.points) == 2

    def test_pointer_up_without_stroke(self, engine):
        assert engine.pointer_up() is None

    def test_playback_exits_drawing_mode(self, engine, clock):
        clock.play()
        assert engine.drawing_mode is False

    def test_entering_drawing_mode_pauses(self, engine, clock):
        engine.set_drawing_mode(False)
        clock.play()
        engine.set_drawing_mode(True)
        assert clock.is_playing is False

    def test_redraw_shows_only_active_drawings(self, engine, store, clock, scheduler):
        store.drawings = [
            Drawing(id=1, timestamp=7.05, points=[Point(0.25, 0.5)]),
            Drawing(id=2, timestamp=20.0, points=[Point(0.75, 0.5)], status=DrawingStatus.PENDING),
        ]
        clock.seek(7.0)
        scheduler.tick()
        assert alpha_at(engine.surface, 50, 50) > 0
        assert alpha_at(engine.surface, 150, 50) == 0

        clock.seek(20.02)
        scheduler.tick()
        assert alpha_at(engine.surface, 50, 50) == 0
        assert alpha_at(engine.surface, 150, 50) > 0

    def test_set_color(self, engine):
        engine.set_color("green")
        engine.pointer_down(110, 70)
        assert engine.pointer_up().color == DRAWING_COLORS["green"]
