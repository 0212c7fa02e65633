"""Reply threads for the comment list."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from .models import Comment, Id, same_id


@dataclass
class Thread:
    """A top-level comment and its replies, oldest reply first."""
    parent: Comment
    replies: list[Comment] = field(default_factory=list)

    @property
    def id(self) -> Id:
        return self.parent.id


def _created_key(comment: Comment):
    value = comment.created_at
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()
    except ValueError:
        return float("inf")


def _parent_key(comment: Comment):
    # Timed comments first by time, general comments last; creation order breaks ties
    if comment.timestamp is None:
        return (1, 0.0, _created_key(comment))
    return (0, comment.timestamp, _created_key(comment))


def organize(comments: Iterable[Comment]) -> list[Thread]:
    """
    Build reply threads from a flat comment list.

    Pure function of its input so it can be recomputed after every mutation.
    Replies whose parent is not a top-level comment in the same list are
    dropped.
    """
    comments = list(comments)
    parents = sorted((c for c in comments if c.parent_comment_id is None), key=_parent_key)

    replies_by_parent: dict[str, list[Comment]] = {}
    for comment in comments:
        if comment.parent_comment_id is not None:
            replies_by_parent.setdefault(str(comment.parent_comment_id), []).append(comment)

    return [
        Thread(parent=parent, replies=sorted(replies_by_parent.get(str(parent.id), []), key=_created_key))
        for parent in parents
    ]


def flatten(threads: Iterable[Thread]) -> list[Comment]:
    """Turn threads back into a flat list (parent followed by its replies)."""
    result = []
    for thread in threads:
        result.append(thread.parent)
        result.extend(thread.replies)
    return result


def without_thread(comments: Iterable[Comment], comment_id: Id) -> list[Comment]:
    """Drop a comment and every reply pointing at it."""
    return [
        c for c in comments
        if not same_id(c.id, comment_id) and not same_id(c.parent_comment_id, comment_id)
    ]


def count_comments(threads: Iterable[Thread]) -> int:
    return sum(1 + len(t.replies) for t in threads)
