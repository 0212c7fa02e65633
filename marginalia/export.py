"""
Export comment threads as subtitle tracks or JSON.

WebVTT plays natively in browsers; SRT imports into most editors (Premiere,
DaVinci Resolve). Replies ride along in their parent's cue, indented.
General comments have no time, so only the JSON export carries them.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from .logging import get_logger
from .models import MediaVersion
from .threads import Thread, count_comments
from .timing import seconds_to_cue

logger = get_logger(__name__)

POINT_CUE_LENGTH = 2.0
EXPORT_FORMATS = ("vtt", "srt", "json")


def _cue_bounds(thread: Thread) -> tuple[float, float]:
    start = thread.parent.timestamp
    end = thread.parent.timestamp_end
    if end is None:
        end = start + POINT_CUE_LENGTH
    return start, end


def _cue_text(thread: Thread, include_authors: bool) -> str:
    parent = thread.parent
    lines = [f"[{parent.author or 'Guest'}] {parent.content}" if include_authors else parent.content]
    for reply in thread.replies:
        if include_authors:
            lines.append(f"  > {reply.author or 'Guest'}: {reply.content}")
        else:
            lines.append(f"  > {reply.content}")
    return "\n".join(lines)


def _timed(threads: Iterable[Thread]) -> list[Thread]:
    return [t for t in threads if t.parent.timestamp is not None]


def export_to_webvtt(threads: list[Thread], output_path: Path, include_authors: bool = True) -> Path:
    """Write timed threads as a WebVTT track."""
    lines = ["WEBVTT", ""]

    for i, thread in enumerate(_timed(threads), 1):
        start, end = _cue_bounds(thread)
        lines.append(str(i))
        lines.append(f"{seconds_to_cue(start, 'vtt')} --> {seconds_to_cue(end, 'vtt')}")
        lines.append(_cue_text(thread, include_authors))
        lines.append("")

    output_path.write_text("\n".join(lines), encoding="utf-8")
    return output_path


def export_to_srt(threads: list[Thread], output_path: Path, include_authors: bool = True) -> Path:
    """Write timed threads as SubRip."""
    lines = []

    for i, thread in enumerate(_timed(threads), 1):
        start, end = _cue_bounds(thread)
        lines.append(str(i))
        lines.append(f"{seconds_to_cue(start, 'srt')} --> {seconds_to_cue(end, 'srt')}")
        lines.append(_cue_text(thread, include_authors))
        lines.append("")

    output_path.write_text("\n".join(lines), encoding="utf-8")
    return output_path


def export_to_json(
    threads: list[Thread],
    output_path: Path,
    version: Optional[MediaVersion] = None,
) -> Path:
    """Export every thread, general comments included, for programmatic access."""
    data = {
        "version": "1.0",
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "count": count_comments(threads),
        "threads": [
            {
                **thread.parent.to_dict(),
                "replies": [reply.to_dict() for reply in thread.replies],
            }
            for thread in threads
        ],
    }
    if version is not None:
        data["video"] = {
            "id": version.id,
            "version_number": version.version_number,
            "approval_status": version.approval_status.value,
        }

    output_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return output_path


def export_threads(
    threads: list[Thread],
    output_path: Path,
    format: Optional[str] = None,
    version: Optional[MediaVersion] = None,
) -> Path:
    """Export in the given format, or the one implied by the file suffix."""
    output_path = Path(output_path)
    format = (format or output_path.suffix.lstrip(".") or "vtt").lower()
    if format not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {format}")

    if format == "vtt":
        export_to_webvtt(threads, output_path)
    elif format == "srt":
        export_to_srt(threads, output_path)
    else:
        export_to_json(threads, output_path, version=version)

    logger.info("Exported %d comment(s) to %s", count_comments(threads), output_path)
    return output_path
