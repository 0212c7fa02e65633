"""
Timestamp matching and timeline geometry.

Playback time arrives from events and from a polling fallback, so it jitters
by tens of milliseconds. Frame-anchored annotations are therefore matched
within a tolerance window instead of by float equality.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from .models import Comment, Drawing, Id, parse_seconds, same_id

DEFAULT_TOLERANCE = 0.1


def is_active(annotation_time: float, current_time: float, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    """Check whether an annotation anchored at annotation_time belongs to the current frame."""
    return abs(annotation_time - current_time) < tolerance


def is_within_range(start: float, end: Optional[float], current_time: float) -> bool:
    """Inclusive interval test used to highlight ranged comments on the timeline."""
    if end is None:
        return False
    low, high = (start, end) if start <= end else (end, start)
    return low <= current_time <= high


def active_drawings(
    drawings: Iterable[Drawing],
    current_time: float,
    tolerance: float = DEFAULT_TOLERANCE,
) -> list[Drawing]:
    """Drawings visible at current_time, in their original order."""
    return [d for d in drawings if is_active(d.timestamp, current_time, tolerance)]


def active_comments(
    comments: Iterable[Comment],
    current_time: float,
    tolerance: float = DEFAULT_TOLERANCE,
) -> list[Comment]:
    """Comments whose point or range covers current_time."""
    result = []
    for comment in comments:
        if comment.timestamp is None:
            continue
        if comment.timestamp_end is not None:
            if is_within_range(comment.timestamp, comment.timestamp_end, current_time):
                result.append(comment)
        elif is_active(comment.timestamp, current_time, tolerance):
            result.append(comment)
    return result


@dataclass(frozen=True)
class TimelineMarker:
    """Position of a comment on the scrub bar, as fractions of the duration."""
    comment_id: Id
    left: float
    width: float
    is_range: bool
    is_active: bool
    author: str
    content: str
    timestamp: float


def timeline_markers(
    comments: Iterable[Comment],
    duration: float,
    active_comment_id: Optional[Id] = None,
) -> list[TimelineMarker]:
    """Compute scrub-bar markers for every timed comment.

    Args:
        comments: Comments of the current version (replies included)
        duration: Media duration in seconds; no markers when it is 0
        active_comment_id: Comment whose range is being edited or hovered

    Returns:
        Markers in input order
    """
    if not duration or duration <= 0:
        return []

    markers = []
    for comment in comments:
        ts = parse_seconds(comment.timestamp)
        if ts is None:
            continue
        end = parse_seconds(comment.timestamp_end)
        left = min(1.0, ts / duration)
        width = (end - ts) / duration if end is not None else 0.0
        markers.append(
            TimelineMarker(
                comment_id=comment.id,
                left=left,
                width=max(0.0, width),
                is_range=end is not None,
                is_active=same_id(comment.id, active_comment_id),
                author=comment.author or "Guest",
                content=comment.content,
                timestamp=ts,
            )
        )
    return markers


# =============================================================================
# Formatting
# =============================================================================

def format_duration(seconds: Optional[float]) -> str:
    """Format seconds as m:ss, or h:mm:ss once past the hour."""
    if not seconds or seconds < 0:
        return "0:00"

    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def parse_timestamp_seconds(value) -> Optional[float]:
    """Seconds from a wire or user value; None for null and non-finite input."""
    return parse_seconds(value)


def format_timecode(seconds, fps: float = 30) -> str:
    """Format seconds as m:ss:ff using whole frames at the given rate."""
    fps_int = max(1, round(fps))
    value = parse_seconds(seconds)
    if value is None or value < 0:
        return "0:00:00"

    total_frames = int(value * fps_int)
    minutes = total_frames // (fps_int * 60)
    secs = (total_frames // fps_int) % 60
    frames = total_frames % fps_int
    return f"{minutes}:{secs:02d}:{frames:02d}"


def seconds_to_cue(seconds: float, format: str = "vtt") -> str:
    """
    Convert seconds to a subtitle cue timestamp.

    Args:
        seconds: Time in seconds
        format: "vtt" for WebVTT (HH:MM:SS.mmm) or "srt" for SubRip (HH:MM:SS,mmm)

    Returns:
        Formatted timecode string
    """
    ms = int(round(max(0.0, seconds) * 1000))
    hours, remainder = divmod(ms, 3600000)
    minutes, remainder = divmod(remainder, 60000)
    secs, milliseconds = divmod(remainder, 1000)

    separator = "." if format == "vtt" else ","
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{separator}{milliseconds:03d}"
