"""Shared fixtures for marginalia tests."""

import itertools
import logging
import shutil
import tempfile
from pathlib import Path

import pytest

from marginalia.access import Identity, MemoryStorage, ShareAccess, ShareAccessType
from marginalia.errors import SyncError
from marginalia.models import Comment, Drawing, MediaVersion, Point
from marginalia.scheduler import FrameScheduler
from marginalia.schemas import ReviewRecord, StreamInfo
from marginalia.session import ReviewSession


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    dirpath = tempfile.mkdtemp()
    yield Path(dirpath)
    shutil.rmtree(dirpath)


class FakeSyncClient:
    """In-memory backend with the SyncClient interface.

    Set fail[method_name] to a SyncError to make the next call to that
    method raise it.
    """

    def __init__(self, identity, comments=None, drawings=None):
        self.identity = identity
        self.comments = {}
        self.drawings = {}
        self.fail = {}
        self.calls = []
        self.capabilities_sent = []
        self.reviews = []
        self._ids = itertools.count(100)
        for comment in comments or []:
            self.comments.setdefault(str(comment.video_id), []).append(comment)
        for drawing in drawings or []:
            self.drawings.setdefault(str(drawing.video_id), []).append(drawing)

    def _call(self, name, *args):
        self.calls.append((name, *args))
        error = self.fail.pop(name, None)
        if error is not None:
            raise error

    def list_comments(self, video_id):
        self._call("list_comments", video_id)
        return list(self.comments.get(str(video_id), []))

    def list_drawings(self, video_id):
        self._call("list_drawings", video_id)
        return list(self.drawings.get(str(video_id), []))

    def create_comment(self, payload):
        self._call("create_comment", payload)
        comment = Comment(
            id=next(self._ids),
            video_id=payload.video_id,
            content=payload.content,
            timestamp=payload.timestamp,
            timestamp_end=payload.timestamp_end,
            parent_comment_id=payload.parent_comment_id,
            author=payload.visitor_name or self.identity.username or "",
        )
        self.comments.setdefault(str(payload.video_id), []).append(comment)
        capability = f"cap-{comment.id}" if self.identity.is_guest else None
        return comment, capability

    def update_comment(self, comment_id, payload, capability=None):
        self._call("update_comment", comment_id)
        self.capabilities_sent.append(capability)
        for comments in self.comments.values():
            for comment in comments:
                if str(comment.id) == str(comment_id):
                    comment.content = payload.content
                    return comment
        raise SyncError("Comment not found", 404)

    def delete_comment(self, comment_id, capability=None):
        self._call("delete_comment", comment_id)
        self.capabilities_sent.append(capability)

    def create_drawing(self, payload):
        self._call("create_drawing", payload)
        drawing = Drawing(
            id=next(self._ids),
            timestamp=payload.timestamp,
            points=[Point(p.x, p.y) for p in payload.drawing_data],
            color=payload.color,
            video_id=payload.video_id,
        )
        self.drawings.setdefault(str(payload.video_id), []).append(drawing)
        return drawing

    def delete_drawing(self, drawing_id):
        self._call("delete_drawing", drawing_id)

    def submit_review(self, payload):
        self._call("submit_review", payload)
        record = ReviewRecord(id=len(self.reviews) + 1, video_id=payload.video_id, status=payload.status,
                              notes=payload.notes, username="reviewer")
        self.reviews.append(record)
        return record

    def review_history(self, video_id):
        self._call("review_history", video_id)
        return [r for r in self.reviews if str(r.video_id) == str(video_id)]

    def stream_url(self, video_id, quality="proxy"):
        self._call("stream_url", video_id, quality)
        return StreamInfo(url=f"https://cdn.example/{video_id}/{quality}.mp4", is_proxy=quality == "proxy")


@pytest.fixture
def versions():
    """Two versions of one video, 60 seconds long."""
    return [
        MediaVersion(id=1, version_number=1, duration=60.0),
        MediaVersion(id=2, version_number=2, duration=60.0, parent_version_id=1),
    ]


@pytest.fixture
def scheduler():
    return FrameScheduler()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def reviewer():
    return Identity(token="secret-token", username="ana")


@pytest.fixture
def guest():
    return Identity(share=ShareAccess(token="share123", access_type=ShareAccessType.COMMENT))


@pytest.fixture
def make_comment():
    """Factory for comments with sensible defaults."""
    counter = itertools.count(1)

    def factory(**overrides):
        n = next(counter)
        data = {
            "id": n,
            "video_id": 2,
            "content": f"comment {n}",
            "created_at": f"2024-01-01T00:00:{n:02d}+00:00",
        }
        data.update(overrides)
        return Comment(**data)

    return factory


@pytest.fixture
def make_session(versions, scheduler, storage):
    """Factory for sessions over a FakeSyncClient."""

    def factory(client, **kwargs):
        kwargs.setdefault("storage", storage)
        kwargs.setdefault("scheduler", scheduler)
        kwargs.setdefault("surface_size", (200, 100))
        return ReviewSession(client, versions, **kwargs)

    return factory


@pytest.fixture
def fake_client():
    """The in-memory backend class, for tests that build their own."""
    return FakeSyncClient


@pytest.fixture(autouse=True)
def package_logger():
    """Restore the package logger after each test; CLI runs reconfigure it."""
    logger = logging.getLogger("marginalia")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield logger
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
