"""
Capabilities for signed-in reviewers and share-link guests.

Guests have no server session, so "ownership" of a guest comment is tracked
locally in a GuestOwnershipRecord. Each entry keeps the opaque capability
token the backend issued with the comment; that token, not the local id, is
what the server verifies on guest edit/delete.
"""

import json
import sqlite3
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from .logging import get_logger
from .models import Comment, Id

logger = get_logger(__name__)

OWNERSHIP_KEY = "guest_comment_ids"
VISITOR_NAME_KEY = "visitor_name"


class ShareAccessType(str, Enum):
    VIEW = "view"
    COMMENT = "comment"


@dataclass(frozen=True)
class ShareAccess:
    """A share link as seen by a guest."""
    token: str
    access_type: ShareAccessType = ShareAccessType.VIEW
    password: Optional[str] = None


@dataclass(frozen=True)
class Identity:
    """Who is driving the session."""
    token: Optional[str] = None
    username: Optional[str] = None
    share: Optional[ShareAccess] = None

    @property
    def is_guest(self) -> bool:
        # Viewing through a share link is guest mode even with a stored login
        return self.share is not None or not self.token


@dataclass(frozen=True)
class Capabilities:
    can_view: bool
    can_comment: bool
    can_approve: bool
    can_share: bool
    can_download: bool


class VisitorStorage:
    """
    Durable key-value storage for the visitor, scoped per machine not per share.

    SQLite keeps it zero-config and survives restarts the way browser local
    storage does.
    """

    def __init__(self, db_path: Optional[Path] = None):
        if db_path is None:
            from .config import get_state_dir

            db_path = get_state_dir() / "visitor.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            conn.commit()

    def get(self, key: str, default=None):
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable visitor value for %s", key)
            return default

    def set(self, key: str, value) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                (key, json.dumps(value)),
            )
            conn.commit()

    def delete(self, key: str) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()


class MemoryStorage:
    """In-process stand-in for VisitorStorage (tests, one-shot CLI runs)."""

    def __init__(self):
        self._data: dict = {}

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value) -> None:
        self._data[key] = json.loads(json.dumps(value))

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class GuestOwnershipRecord:
    """Comment ids created by this visitor, with their capability tokens."""

    def __init__(self, storage):
        self.storage = storage

    def _load(self) -> dict[str, Optional[str]]:
        raw = self.storage.get(OWNERSHIP_KEY, {})
        # Older records were a plain list of ids
        if isinstance(raw, list):
            return {str(i): None for i in raw}
        if isinstance(raw, dict):
            return {str(k): v for k, v in raw.items()}
        return {}

    def ids(self) -> set[str]:
        return set(self._load())

    def owns(self, comment_id: Id) -> bool:
        return str(comment_id) in self._load()

    def capability_for(self, comment_id: Id) -> Optional[str]:
        return self._load().get(str(comment_id))

    def add(self, comment_id: Id, capability: Optional[str] = None) -> None:
        record = self._load()
        record[str(comment_id)] = capability
        self.storage.set(OWNERSHIP_KEY, record)

    def remove(self, comment_id: Id) -> None:
        record = self._load()
        if str(comment_id) in record:
            del record[str(comment_id)]
            self.storage.set(OWNERSHIP_KEY, record)


class AccessResolver:
    """Computes what the current identity may do."""

    def __init__(self, identity: Identity, ownership: GuestOwnershipRecord):
        self.identity = identity
        self.ownership = ownership

    @property
    def is_guest(self) -> bool:
        return self.identity.is_guest

    def capabilities(self) -> Capabilities:
        authenticated = not self.is_guest
        return Capabilities(
            can_view=True,
            can_comment=self.can_comment(),
            can_approve=authenticated,
            can_share=authenticated,
            can_download=authenticated,
        )

    def can_comment(self) -> bool:
        if not self.is_guest:
            return True
        share = self.identity.share
        return share is not None and share.access_type == ShareAccessType.COMMENT

    def can_edit(self, comment: Comment) -> bool:
        if not self.is_guest:
            return True
        return self.ownership.owns(comment.id)

    def can_delete(self, comment: Comment) -> bool:
        return self.can_edit(comment)

    # Ownership bookkeeping, guests only

    def record_created(self, comment_id: Id, capability: Optional[str] = None) -> None:
        if self.is_guest:
            self.ownership.add(comment_id, capability)

    def record_deleted(self, comment_id: Id) -> None:
        if self.is_guest:
            self.ownership.remove(comment_id)
