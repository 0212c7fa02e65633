"""
Marginalia - Timeline Annotation Engine

Time-anchored review feedback for video:
- Comment threads anchored to a moment, a range, or nothing at all
- Freehand drawings pinned to the frame they were drawn on
- Playback-driven visibility of annotations
- Guest review through share links, with locally tracked ownership
- Export to WebVTT, SRT and JSON
"""

__version__ = "0.3.0"

from .models import Comment, Drawing, MediaVersion, Point
from .timing import is_active, is_within_range
from .ranges import RangeSelector
from .threads import organize
from .access import AccessResolver, Identity, ShareAccess
from .store import AnnotationStore
from .sync import SyncClient
from .session import ReviewSession
from .export import export_threads

__all__ = [
    "Comment",
    "Drawing",
    "MediaVersion",
    "Point",
    "is_active",
    "is_within_range",
    "RangeSelector",
    "organize",
    "AccessResolver",
    "Identity",
    "ShareAccess",
    "AnnotationStore",
    "SyncClient",
    "ReviewSession",
    "export_threads",
]
