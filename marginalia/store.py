"""
In-memory annotation state for the media version on screen.

Loads are tagged with a generation number: switching versions bumps the
generation and cancels loads still in flight, and any response carrying an
old tag is dropped. Mutations are optimistic commands whose undo closure is
captured when they are applied and run if the paired request fails.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Optional, TypeVar

from .errors import SyncError
from .logging import Notifier, get_logger
from .models import Comment, Drawing, DrawingStatus, Id, same_id
from .threads import Thread, organize, without_thread

logger = get_logger(__name__)

T = TypeVar("T")


class StoreState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass
class LoadRequest:
    """One version-tagged fetch (comments or drawings)."""
    tag: int
    video_id: Id
    kind: str
    cancelled: bool = False
    done: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class Mutation:
    """An optimistic change and the closure that reverts it."""
    description: str
    apply: Callable[[], None]
    undo: Callable[[], None] = field(default=lambda: None)


def run_now(task: Callable[[], None]) -> None:
    task()


class AnnotationStore:
    """Authoritative comment and drawing lists for the current version."""

    def __init__(
        self,
        client,
        executor: Callable[[Callable[[], None]], None] = run_now,
        notifier: Optional[Notifier] = None,
    ):
        self.client = client
        self.executor = executor
        self.notifier = notifier or Notifier()
        self.state = StoreState.IDLE
        self.video_id: Optional[Id] = None
        self.comments: list[Comment] = []
        self.drawings: list[Drawing] = []
        self.error: Optional[SyncError] = None
        self._generation = 0
        self._inflight: list[LoadRequest] = []
        self._listeners: list[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: Callable[[], None]) -> None:
        """Call listener after every change to the lists or the state."""
        self._listeners.append(listener)

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener()

    @property
    def generation(self) -> int:
        return self._generation

    def threads(self) -> list[Thread]:
        return organize(self.comments)

    def get_comment(self, comment_id: Id) -> Optional[Comment]:
        return next((c for c in self.comments if same_id(c.id, comment_id)), None)

    def get_drawing(self, drawing_id: Id) -> Optional[Drawing]:
        return next((d for d in self.drawings if same_id(d.id, drawing_id)), None)

    def pending_drawings(self) -> list[Drawing]:
        return [d for d in self.drawings if d.status == DrawingStatus.PENDING]

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def switch_version(self, video_id: Id) -> int:
        """Make video_id current: clear the lists and fetch its annotations.

        Returns:
            The generation tag the new loads carry
        """
        for request in self._inflight:
            request.cancel()
        self._generation += 1
        tag = self._generation
        self.video_id = video_id
        self.comments = []
        self.drawings = []
        self.error = None
        self.state = StoreState.LOADING
        logger.debug("Loading annotations for video %s (generation %d)", video_id, tag)
        self._changed()

        self._inflight = [
            LoadRequest(tag, video_id, "comments"),
            LoadRequest(tag, video_id, "drawings"),
        ]
        for request in list(self._inflight):
            self.executor(lambda request=request: self._run_load(request))
        return tag

    def reload(self) -> int:
        if self.video_id is None:
            raise RuntimeError("No version loaded")
        return self.switch_version(self.video_id)

    def _is_stale(self, request: LoadRequest) -> bool:
        return (
            request.cancelled
            or request.tag != self._generation
            or not same_id(request.video_id, self.video_id)
        )

    def _run_load(self, request: LoadRequest) -> None:
        if request.cancelled:
            return
        fetch = self.client.list_comments if request.kind == "comments" else self.client.list_drawings
        try:
            items = fetch(request.video_id)
        except SyncError as e:
            self.fail_load(request, e)
            return
        self.deliver(request, items)

    def deliver(self, request: LoadRequest, items: list) -> bool:
        """Apply a load response unless it belongs to a superseded version."""
        if self._is_stale(request):
            logger.info(
                "Discarding stale %s for video %s (generation %d, current %d)",
                request.kind, request.video_id, request.tag, self._generation,
            )
            return False

        if request.kind == "comments":
            self.comments = list(items)
        else:
            # Strokes drawn while the load was in flight are kept
            local = [d for d in self.drawings if d.status != DrawingStatus.COMMITTED]
            self.drawings = list(items) + local

        request.done = True
        if all(r.done for r in self._inflight if r.tag == request.tag) and self.state == StoreState.LOADING:
            self.state = StoreState.READY
            logger.debug(
                "Video %s ready: %d comment(s), %d drawing(s)",
                self.video_id, len(self.comments), len(self.drawings),
            )
        self._changed()
        return True

    def fail_load(self, request: LoadRequest, error: SyncError) -> None:
        if self._is_stale(request):
            logger.info("Ignoring failed %s load for superseded video %s", request.kind, request.video_id)
            return
        request.done = True
        self.state = StoreState.ERROR
        self.error = error
        self.notifier.error(error.message)
        self._changed()

    # ------------------------------------------------------------------
    # Optimistic mutations
    # ------------------------------------------------------------------

    def execute(
        self,
        mutation: Mutation,
        request: Callable[[], T],
        on_success: Optional[Callable[[T], None]] = None,
    ) -> T:
        """Apply a mutation, run its request, and undo it if the request fails.

        A result for a version that is no longer current is returned to the
        caller but never applied to the lists.
        """
        tag = self._generation
        mutation.apply()
        self._changed()

        try:
            result = request()
        except SyncError:
            if tag == self._generation:
                mutation.undo()
                logger.warning("Rolled back: %s", mutation.description)
                self._changed()
            raise

        if on_success is not None and tag == self._generation:
            on_success(result)
            self._changed()
        return result

    def _snapshot(self) -> Callable[[], None]:
        comments, drawings = list(self.comments), list(self.drawings)

        def restore() -> None:
            self.comments = comments
            self.drawings = drawings

        return restore

    def add_comment(self, optimistic: Comment, request: Callable[[], Comment]) -> Comment:
        """Show a temp comment at once and swap in the stored one on success."""
        def apply() -> None:
            self.comments = self.comments + [optimistic]

        def swap_in(saved: Comment) -> None:
            self.comments = [saved if c is optimistic else c for c in self.comments]

        return self.execute(
            Mutation(f"add comment {optimistic.id}", apply, self._snapshot()),
            request,
            swap_in,
        )

    def edit_comment(self, comment_id: Id, content: str, request: Callable[[], Comment]) -> Comment:
        def apply() -> None:
            self.comments = [
                replace(c, content=content, optimistic=True) if same_id(c.id, comment_id) else c
                for c in self.comments
            ]

        def swap_in(saved: Comment) -> None:
            self.comments = [saved if same_id(c.id, comment_id) else c for c in self.comments]

        return self.execute(
            Mutation(f"edit comment {comment_id}", apply, self._snapshot()),
            request,
            swap_in,
        )

    def remove_comment(self, comment_id: Id, request: Callable[[], None]) -> None:
        """Delete a comment and, locally, every reply hanging off it."""
        def apply() -> None:
            self.comments = without_thread(self.comments, comment_id)

        self.execute(Mutation(f"delete comment {comment_id}", apply, self._snapshot()), request)

    def stage_drawing(self, drawing: Drawing) -> None:
        """Add a finished stroke to the unified list without sending it."""
        self.drawings = self.drawings + [drawing]
        self._changed()

    def save_drawing(self, drawing_id: Id, request: Callable[[], Drawing]) -> Drawing:
        """Persist a staged stroke: saving while in flight, committed after."""
        def apply() -> None:
            self.drawings = [
                d.with_status(DrawingStatus.SAVING) if same_id(d.id, drawing_id) else d
                for d in self.drawings
            ]

        def commit(saved: Drawing) -> None:
            self.drawings = [
                d.with_status(DrawingStatus.COMMITTED, id=saved.id) if same_id(d.id, drawing_id) else d
                for d in self.drawings
            ]

        return self.execute(
            Mutation(f"save drawing {drawing_id}", apply, self._snapshot()),
            request,
            commit,
        )

    def add_drawing(self, drawing: Drawing, request: Callable[[], Drawing]) -> Drawing:
        """Show a stroke as saving and persist it now; a failure removes it."""
        def apply() -> None:
            self.drawings = self.drawings + [drawing.with_status(DrawingStatus.SAVING)]

        def commit(saved: Drawing) -> None:
            self.drawings = [
                d.with_status(DrawingStatus.COMMITTED, id=saved.id) if same_id(d.id, drawing.id) else d
                for d in self.drawings
            ]

        return self.execute(
            Mutation(f"add drawing {drawing.id}", apply, self._snapshot()),
            request,
            commit,
        )

    def discard_drawing(self, drawing_id: Id) -> None:
        self.drawings = [d for d in self.drawings if not same_id(d.id, drawing_id)]
        self._changed()

    def remove_drawings(self, drawing_ids: list[Id], request: Callable[[], None]) -> None:
        """Undo/clear-frame: drop strokes locally, restore them if the delete fails."""
        def apply() -> None:
            self.drawings = [d for d in self.drawings if not any(same_id(d.id, i) for i in drawing_ids)]

        self.execute(Mutation(f"delete {len(drawing_ids)} drawing(s)", apply, self._snapshot()), request)
