"""
Review session: builds the annotation engine once and exposes user actions.

Every collaborator (clock, store, drawing engine, range selector, access
resolver) is constructed here and handed to the others by reference. User
actions validate and check capabilities before any request is made, then go
through the store's optimistic mutations.
"""

from typing import Callable, Optional

import pydantic

from .access import AccessResolver, Capabilities, GuestOwnershipRecord, VISITOR_NAME_KEY, VisitorStorage
from .clock import PlaybackClock, SimulatedMedia
from .drawing import DrawingEngine, OverlaySurface, Rect
from .errors import PermissionDenied, SyncError, ValidationError
from .logging import Notifier, get_logger
from .models import (
    ApprovalStatus,
    Comment,
    Drawing,
    DrawingStatus,
    Id,
    MediaVersion,
    generate_temp_id,
    is_temp_id,
    order_versions,
    same_id,
)
from .ranges import RangeSelector
from .scheduler import FrameScheduler
from .schemas import CommentCreate, CommentUpdate, DrawingCreate, PointPayload, ReviewCreate, ReviewRecord, StreamInfo
from .store import AnnotationStore, run_now
from .sync import SyncClient
from .threads import Thread
from .timing import DEFAULT_TOLERANCE, TimelineMarker, active_comments, timeline_markers

logger = get_logger(__name__)

DEFAULT_APPROVAL_NOTES = {
    ApprovalStatus.APPROVED: "Approved by client",
    ApprovalStatus.CHANGES_REQUESTED: "Changes requested by client",
    ApprovalStatus.PENDING: "Returned to review",
}

DEFAULT_SURFACE_SIZE = (1280, 720)


def _build(model, **fields):
    """Validate a wire payload, reporting problems as client-side errors."""
    try:
        return model(**fields)
    except pydantic.ValidationError as e:
        raise ValidationError(str(e)) from e


class ReviewSession:
    """One reviewer (or guest) looking at one video and its versions."""

    def __init__(
        self,
        client: SyncClient,
        versions: list[MediaVersion],
        storage=None,
        notifier: Optional[Notifier] = None,
        scheduler: Optional[FrameScheduler] = None,
        media=None,
        surface_size: tuple[int, int] = DEFAULT_SURFACE_SIZE,
        executor: Callable[[Callable[[], None]], None] = run_now,
        tolerance: float = DEFAULT_TOLERANCE,
        visitor_name: Optional[str] = None,
        start_version: Optional[Id] = None,
    ):
        self.versions = order_versions(versions)
        if not self.versions:
            raise ValueError("A session needs at least one media version")

        self.client = client
        self.identity = client.identity
        self.notifier = notifier or Notifier()
        self.scheduler = scheduler or FrameScheduler()
        self.storage = storage if storage is not None else VisitorStorage()
        self.tolerance = tolerance

        self.resolver = AccessResolver(self.identity, GuestOwnershipRecord(self.storage))
        self.store = AnnotationStore(client, executor=executor, notifier=self.notifier)

        self._owns_media = media is None
        self.media = media or SimulatedMedia(self.scheduler, self.versions[0].duration)
        self.clock = PlaybackClock(self.media, self.scheduler)
        self.ranges = RangeSelector(self.clock)

        width, height = surface_size
        self._container = Rect(0, 0, width, height)
        self.surface = OverlaySurface(width, height)
        self.engine = DrawingEngine(
            self.clock,
            self.scheduler,
            self.store,
            self.surface,
            measure=lambda: self._container,
            on_stroke=self._on_stroke,
            tolerance=tolerance,
        )
        self.store.subscribe(self.engine.request_render)

        stored_name = visitor_name if visitor_name is not None else self.storage.get(VISITOR_NAME_KEY, "")
        self.visitor_name = (stored_name or "").strip()

        self.current_version: Optional[MediaVersion] = None
        self.switch_version(self.versions[0].id if start_version is None else start_version)
        self.clock.start()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_guest(self) -> bool:
        return self.identity.is_guest

    @property
    def capabilities(self) -> Capabilities:
        return self.resolver.capabilities()

    def _require_version(self) -> MediaVersion:
        if self.current_version is None:
            raise ValidationError("No media version is loaded")
        return self.current_version

    def get_version(self, version_id: Id) -> MediaVersion:
        for version in self.versions:
            if same_id(version.id, version_id):
                return version
        raise ValidationError(f"Unknown version: {version_id}")

    def threads(self) -> list[Thread]:
        return self.store.threads()

    def markers(self, active_comment_id: Optional[Id] = None) -> list[TimelineMarker]:
        duration = self.clock.duration or self._require_version().duration
        return timeline_markers(self.store.comments, duration, active_comment_id)

    def active_comments(self) -> list[Comment]:
        return active_comments(self.store.comments, self.clock.current_time, self.tolerance)

    def can_edit(self, comment: Comment) -> bool:
        return self.resolver.can_edit(comment)

    def can_delete(self, comment: Comment) -> bool:
        return self.resolver.can_delete(comment)

    # ------------------------------------------------------------------
    # Version switching and layout
    # ------------------------------------------------------------------

    def switch_version(self, version_id: Id) -> MediaVersion:
        """Make another version current; annotations of the old one vanish at once."""
        version = self.get_version(version_id)
        self.engine.set_drawing_mode(False)
        self.ranges.cancel()
        if self._owns_media:
            self.media = SimulatedMedia(self.scheduler, version.duration)
            self.clock.attach(self.media)
        self.current_version = version
        self.store.switch_version(version.id)
        logger.info("Viewing version %d (video %s)", version.version_number, version.id)
        return version

    def resize(self, width: int, height: int, left: float = 0, top: float = 0) -> None:
        """The player container changed size."""
        self._container = Rect(left, top, width, height)
        self.engine.resize(width, height)

    # ------------------------------------------------------------------
    # Visitor name
    # ------------------------------------------------------------------

    def set_visitor_name(self, name: str) -> str:
        self.visitor_name = (name or "").strip()
        if self.visitor_name:
            self.storage.set(VISITOR_NAME_KEY, self.visitor_name)
        return self.visitor_name

    def _author_name(self) -> str:
        if self.is_guest:
            if not self.visitor_name:
                raise ValidationError("Enter your name before commenting")
            return self.visitor_name
        return self.identity.username or ""

    def _require_comment_rights(self) -> None:
        if not self.resolver.can_comment():
            raise PermissionDenied("This share link does not allow comments")

    @staticmethod
    def _clean_content(content: Optional[str]) -> str:
        text = (content or "").strip()
        if not text:
            raise ValidationError("Comment cannot be empty")
        return text

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def submit_comment(self, content: str, general: bool = False, timestamp: Optional[float] = None) -> Comment:
        """Post a top-level comment at the play head, over the selected range, or unanchored.

        Args:
            content: Comment text; surrounding whitespace is stripped
            general: If True the comment is not tied to any time
            timestamp: Anchor time; defaults to the current play time

        Returns:
            The stored comment
        """
        self._require_comment_rights()
        text = self._clean_content(content)
        author = self._author_name()
        version = self._require_version()

        timestamp_end = None
        if self.ranges.is_selecting:
            if general:
                raise ValidationError("A general comment cannot cover a range")
            if self.ranges.selection is None or self.ranges.selection.end is None:
                raise ValidationError("Mark an out-point for the range")
            timestamp, timestamp_end = self.ranges.selection.normalized()
        elif general:
            timestamp = None
        elif timestamp is None:
            timestamp = self.clock.current_time

        payload = _build(
            CommentCreate,
            video_id=version.id,
            content=text,
            timestamp=timestamp,
            timestamp_end=timestamp_end,
            visitor_name=author if self.is_guest else None,
        )
        optimistic = Comment(
            id=generate_temp_id(),
            video_id=version.id,
            content=text,
            timestamp=timestamp,
            timestamp_end=timestamp_end,
            author=author,
            optimistic=True,
        )
        saved = self._create(payload, optimistic)
        if timestamp_end is not None:
            self.ranges.commit()
        if self.is_guest:
            self.set_visitor_name(author)
            self._persist_pending_drawings()
        self.notifier.success("Comment added")
        return saved

    def reply(self, parent_id: Id, content: str) -> Comment:
        """Reply to a top-level comment, anchored at the current play time."""
        self._require_comment_rights()
        text = self._clean_content(content)
        author = self._author_name()
        version = self._require_version()

        parent = self.store.get_comment(parent_id)
        if parent is None:
            raise ValidationError(f"Comment not found: {parent_id}")
        if parent.is_reply:
            raise ValidationError("Replies can only be added to top-level comments")
        if self.ranges.is_selecting:
            raise ValidationError("A reply cannot cover a range")

        timestamp = self.clock.current_time
        payload = _build(
            CommentCreate,
            video_id=version.id,
            content=text,
            timestamp=timestamp,
            parent_comment_id=parent.id,
            visitor_name=author if self.is_guest else None,
        )
        optimistic = Comment(
            id=generate_temp_id(),
            video_id=version.id,
            content=text,
            timestamp=timestamp,
            parent_comment_id=parent.id,
            author=author,
            optimistic=True,
        )
        saved = self._create(payload, optimistic)
        if self.is_guest:
            self.set_visitor_name(author)
        self.notifier.success("Reply added")
        return saved

    def _create(self, payload: CommentCreate, optimistic: Comment) -> Comment:
        issued = {}

        def send() -> Comment:
            saved, capability = self.client.create_comment(payload)
            issued["capability"] = capability
            return saved

        try:
            saved = self.store.add_comment(optimistic, send)
        except SyncError as e:
            self.notifier.error(e.message)
            raise
        self.resolver.record_created(saved.id, issued.get("capability"))
        return saved

    def _owned_comment(self, comment_id: Id, action: str) -> Comment:
        comment = self.store.get_comment(comment_id)
        if comment is None:
            raise ValidationError(f"Comment not found: {comment_id}")
        if is_temp_id(comment.id):
            raise ValidationError("Comment is still being saved")
        allowed = self.resolver.can_edit(comment) if action == "edit" else self.resolver.can_delete(comment)
        if not allowed:
            raise PermissionDenied(f"You can only {action} your own comments")
        return comment

    def edit_comment(self, comment_id: Id, content: str) -> Comment:
        comment = self._owned_comment(comment_id, "edit")
        text = self._clean_content(content)
        capability = self.resolver.ownership.capability_for(comment.id) if self.is_guest else None
        payload = _build(CommentUpdate, content=text)
        try:
            saved = self.store.edit_comment(
                comment.id, text, lambda: self.client.update_comment(comment.id, payload, capability)
            )
        except SyncError as e:
            self.notifier.error(e.message)
            raise
        self.notifier.success("Comment updated")
        return saved

    def delete_comment(self, comment_id: Id) -> None:
        """Delete a comment; its replies disappear with it."""
        comment = self._owned_comment(comment_id, "delete")
        capability = self.resolver.ownership.capability_for(comment.id) if self.is_guest else None
        removed = [
            c.id for c in self.store.comments
            if same_id(c.id, comment.id) or same_id(c.parent_comment_id, comment.id)
        ]
        try:
            self.store.remove_comment(comment.id, lambda: self.client.delete_comment(comment.id, capability))
        except SyncError as e:
            self.notifier.error(e.message)
            raise
        for comment_id in removed:
            self.resolver.record_deleted(comment_id)
        self.notifier.success("Comment deleted")

    # ------------------------------------------------------------------
    # Drawings
    # ------------------------------------------------------------------

    def set_drawing_mode(self, enabled: bool) -> None:
        if enabled:
            self._require_comment_rights()
        self.engine.set_drawing_mode(enabled)

    def toggle_drawing_mode(self) -> bool:
        self.set_drawing_mode(not self.engine.drawing_mode)
        return self.engine.drawing_mode

    def _drawing_payload(self, drawing: Drawing) -> DrawingCreate:
        return _build(
            DrawingCreate,
            video_id=self._require_version().id,
            timestamp=drawing.timestamp,
            drawing_data=[PointPayload(x=p.x, y=p.y) for p in drawing.points],
            color=drawing.color,
        )

    def _on_stroke(self, drawing: Drawing) -> None:
        drawing = drawing.with_status(DrawingStatus.PENDING, video_id=self._require_version().id)
        if self.is_guest:
            # Sent with the next comment
            self.store.stage_drawing(drawing)
            return
        payload = self._drawing_payload(drawing)
        try:
            self.store.add_drawing(drawing, lambda: self.client.create_drawing(payload))
        except SyncError as e:
            self.notifier.error(e.message)

    def _persist_pending_drawings(self) -> None:
        for drawing in self.store.pending_drawings():
            payload = self._drawing_payload(drawing)
            try:
                self.store.save_drawing(drawing.id, lambda payload=payload: self.client.create_drawing(payload))
            except SyncError as e:
                logger.warning("Stroke %s stays pending: %s", drawing.id, e)
                self.notifier.error(e.message)

    def undo_last_stroke(self) -> Optional[Drawing]:
        """Remove the newest stroke on the current frame."""
        visible = self.engine.visible_drawings()
        if not visible:
            return None
        target = visible[-1]
        self._remove_drawing(target)
        return target

    def clear_frame(self) -> list[Drawing]:
        """Remove every stroke on the current frame."""
        visible = self.engine.visible_drawings()
        for drawing in visible:
            self._remove_drawing(drawing)
        return visible

    def _remove_drawing(self, drawing: Drawing) -> None:
        self._require_comment_rights()
        if drawing.status == DrawingStatus.PENDING:
            self.store.discard_drawing(drawing.id)
            return
        if drawing.status == DrawingStatus.SAVING:
            raise ValidationError("Stroke is still being saved")
        try:
            self.store.remove_drawings([drawing.id], lambda: self.client.delete_drawing(drawing.id))
        except SyncError as e:
            self.notifier.error(e.message)
            raise

    # ------------------------------------------------------------------
    # Range selection
    # ------------------------------------------------------------------

    def toggle_range(self):
        self._require_comment_rights()
        return self.ranges.toggle()

    # ------------------------------------------------------------------
    # Playback shortcuts
    # ------------------------------------------------------------------

    def handle_key(self, key: str, shift: bool = False, input_focused: bool = False) -> bool:
        """Player keyboard shortcuts; returns True when the key was handled.

        Keys typed into a text field are never shortcuts.
        """
        if input_focused:
            return False
        frame_rate = self._require_version().frame_rate
        lowered = key.lower() if len(key) == 1 else key
        if key == " ":
            self.clock.toggle_play()
        elif lowered == "k":
            self.clock.pause()
        elif lowered == "j":
            self.clock.jog(-1)
        elif lowered == "l":
            self.clock.jog(1)
        elif key == "ArrowLeft":
            if shift:
                self.clock.step(-1.0)
            else:
                self.clock.step_frames(-1, frame_rate)
        elif key == "ArrowRight":
            if shift:
                self.clock.step(1.0)
            else:
                self.clock.step_frames(1, frame_rate)
        else:
            return False
        return True

    # ------------------------------------------------------------------
    # Approval and media
    # ------------------------------------------------------------------

    def approve(self, status, notes: Optional[str] = None) -> ReviewRecord:
        """Record an approval decision for the current version."""
        if not self.capabilities.can_approve:
            raise PermissionDenied("Only signed-in reviewers can approve versions")
        version = self._require_version()
        try:
            status = ApprovalStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown approval status: {status}") from e

        payload = ReviewCreate(video_id=version.id, status=status, notes=notes or DEFAULT_APPROVAL_NOTES[status])
        try:
            record = self.client.submit_review(payload)
        except SyncError as e:
            self.notifier.error(e.message)
            raise
        version.approval_status = record.status
        self.notifier.success(f"Version {version.version_number}: {record.status.value}")
        return record

    def history(self) -> list[ReviewRecord]:
        if not self.capabilities.can_approve:
            raise PermissionDenied("Only signed-in reviewers can view approval history")
        return self.client.review_history(self._require_version().id)

    def stream_url(self, quality: str = "proxy") -> StreamInfo:
        if quality not in ("proxy", "original"):
            raise ValidationError(f"Unknown stream quality: {quality}")
        return self.client.stream_url(self._require_version().id, quality)

    def close(self) -> None:
        self.clock.stop()
        self.engine.set_drawing_mode(False)
