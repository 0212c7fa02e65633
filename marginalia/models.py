"""
Review annotation data model.

Time values are seconds (floats) as the backend stores them. Drawing points
are normalized percentages (0.0-1.0) of the rendered video box so strokes
survive any resize of the player.
"""

import math
import random
import string
import time
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

Id = Union[int, str]

TEMP_ID_PREFIX = "temp_"


class ApprovalStatus(str, Enum):
    """Review state of a media version."""
    PENDING = "pending"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"


class DrawingStatus(str, Enum):
    """Where a stroke is in its persistence lifecycle."""
    PENDING = "pending"  # staged locally, not sent
    SAVING = "saving"  # request in flight
    COMMITTED = "committed"  # server has it


def generate_temp_id() -> str:
    """Generate a temporary id for an optimistic record."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}_{suffix}"


def is_temp_id(value) -> bool:
    """Check whether an id was produced by generate_temp_id."""
    return isinstance(value, str) and value.startswith(TEMP_ID_PREFIX)


def same_id(a, b) -> bool:
    """Compare ids that may arrive as int from JSON and str from the CLI."""
    if a is None or b is None:
        return False
    return str(a) == str(b)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_seconds(value) -> Optional[float]:
    """Coerce a wire timestamp to seconds, or None when absent/non-finite."""
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass
class MediaVersion:
    """One playable revision of a video."""
    id: Id
    version_number: int = 1
    duration: float = 0.0
    width: Optional[int] = None
    height: Optional[int] = None
    frame_rate: float = 30.0
    parent_version_id: Optional[Id] = None  # None for the root version
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    title: str = ""
    mime_type: str = "video/mp4"

    @property
    def is_root(self) -> bool:
        return self.parent_version_id is None

    @property
    def frame_duration(self) -> float:
        """Duration of a single frame in seconds."""
        return 1.0 / max(1.0, self.frame_rate or 30.0)

    @classmethod
    def from_dict(cls, data: dict) -> "MediaVersion":
        """Build a version from a backend video record."""
        status = data.get("approval_status") or data.get("latest_approval_status") or "pending"
        return cls(
            id=data["id"],
            version_number=int(data.get("version_number") or 1),
            duration=parse_seconds(data.get("duration")) or 0.0,
            width=data.get("width"),
            height=data.get("height"),
            frame_rate=parse_seconds(data.get("fps") or data.get("frame_rate")) or 30.0,
            parent_version_id=data.get("parent_video_id", data.get("parent_version_id")),
            approval_status=ApprovalStatus(status),
            title=data.get("title") or "",
            mime_type=data.get("mime_type") or "video/mp4",
        )


def order_versions(versions: list[MediaVersion]) -> list[MediaVersion]:
    """Versions of one video, newest first."""
    return sorted(versions, key=lambda v: v.version_number, reverse=True)


@dataclass
class Comment:
    """
    A text annotation on a media version.

    timestamp is None for a general (unanchored) comment. timestamp_end is set
    only for ranged comments and only on top-level comments.
    """
    id: Id
    video_id: Id
    content: str
    timestamp: Optional[float] = None
    timestamp_end: Optional[float] = None
    parent_comment_id: Optional[Id] = None
    author: str = ""
    created_at: str = field(default_factory=utc_now)
    optimistic: bool = False

    @property
    def is_reply(self) -> bool:
        return self.parent_comment_id is not None

    @property
    def is_general(self) -> bool:
        return self.timestamp is None

    @property
    def is_range(self) -> bool:
        """Check if this comment covers an in/out interval."""
        return self.timestamp is not None and self.timestamp_end is not None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data.pop("optimistic")
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Comment":
        """Create a comment from a backend record.

        The author is the account username when present, otherwise the
        guest-supplied visitor name.
        """
        return cls(
            id=data["id"],
            video_id=data.get("video_id"),
            content=data.get("content") or "",
            timestamp=parse_seconds(data.get("timestamp")),
            timestamp_end=parse_seconds(data.get("timestamp_end")),
            parent_comment_id=data.get("parent_comment_id"),
            author=data.get("username") or data.get("visitor_name") or data.get("author") or "",
            created_at=str(data.get("created_at") or utc_now()),
        )


@dataclass(frozen=True)
class Point:
    """A normalized coordinate inside the rendered video box."""
    x: float
    y: float

    def to_pixels(self, width: float, height: float) -> tuple[float, float]:
        return (self.x * width, self.y * height)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: dict) -> "Point":
        return cls(x=float(data["x"]), y=float(data["y"]))


@dataclass
class Drawing:
    """A freehand stroke anchored to one media timestamp."""
    id: Id
    timestamp: float
    points: list[Point]
    color: str = "#FF0000"
    video_id: Optional[Id] = None
    status: DrawingStatus = DrawingStatus.COMMITTED

    @property
    def is_dot(self) -> bool:
        return len(self.points) == 1

    def with_status(self, status: DrawingStatus, **changes) -> "Drawing":
        return replace(self, status=status, **changes)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "video_id": self.video_id,
            "timestamp": self.timestamp,
            "points": [p.to_dict() for p in self.points],
            "color": self.color,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Drawing":
        """Create a drawing from a backend record (points live in drawing_data)."""
        raw_points = data.get("drawing_data", data.get("points")) or []
        return cls(
            id=data["id"],
            timestamp=parse_seconds(data.get("timestamp")) or 0.0,
            points=[Point.from_dict(p) for p in raw_points],
            color=data.get("color") or "#FF0000",
            video_id=data.get("video_id"),
        )
