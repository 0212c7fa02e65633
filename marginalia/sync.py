"""
REST client for comments, drawings, reviews and stream URLs.

Signed-in calls carry a bearer credential. Guest calls go to the
share-scoped mirror of each route under /shares/{token}/ and carry the
optional share password instead; they never send a bearer credential.
"""

from typing import Optional

import requests

from .access import Identity, ShareAccessType
from .errors import PermissionDenied, SyncError
from .logging import get_logger
from .models import Comment, Drawing, Id, MediaVersion, Point, order_versions
from .schemas import CommentCreate, CommentUpdate, DrawingCreate, ReviewCreate, ReviewRecord, StreamInfo

logger = get_logger(__name__)

SHARE_PASSWORD_HEADER = "x-share-password"
GUEST_CAPABILITY_HEADER = "x-guest-capability"


class SyncClient:
    """Backend operations for one identity."""

    def __init__(
        self,
        api_url: str,
        identity: Identity,
        session: Optional[requests.Session] = None,
        timeout: float = 15.0,
    ):
        self.api_url = api_url.rstrip("/")
        self.identity = identity
        self.session = session or requests.Session()
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @property
    def is_guest(self) -> bool:
        return self.identity.is_guest

    def _share_prefix(self) -> str:
        share = self.identity.share
        if share is None:
            raise PermissionDenied("A share link is required for guest access")
        return f"/shares/{share.token}"

    def _headers(self, capability: Optional[str] = None) -> dict:
        headers = {}
        if self.is_guest:
            share = self.identity.share
            if share is not None and share.password:
                headers[SHARE_PASSWORD_HEADER] = share.password
            if capability:
                headers[GUEST_CAPABILITY_HEADER] = capability
        else:
            headers["Authorization"] = f"Bearer {self.identity.token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        fallback: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
        capability: Optional[str] = None,
    ):
        url = f"{self.api_url}{path}"
        logger.debug("%s %s", method, url)
        try:
            response = self.session.request(
                method,
                url,
                json=json,
                params=params,
                headers=self._headers(capability),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error("%s %s failed: %s", method, url, e)
            raise SyncError(fallback) from e

        if not response.ok:
            message = fallback
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("error"):
                    message = str(body["error"])
            except ValueError:
                pass
            logger.error("%s %s -> %d: %s", method, url, response.status_code, message)
            raise SyncError(message, response.status_code)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise SyncError(f"{fallback}: invalid response body", response.status_code) from e

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def list_comments(self, video_id: Id) -> list[Comment]:
        if self.is_guest:
            path = f"{self._share_prefix()}/comments/video/{video_id}"
        else:
            path = f"/comments/video/{video_id}"
        data = self._request("GET", path, "Failed to load comments") or []
        return [Comment.from_dict(item) for item in data]

    def create_comment(self, payload: CommentCreate) -> tuple[Comment, Optional[str]]:
        """Create a comment or reply.

        Returns:
            The stored comment and, for guests, the capability token the
            server issued for managing it (None when it issued none)
        """
        path = f"{self._share_prefix()}/comments" if self.is_guest else "/comments"
        body = payload.model_dump(exclude_none=True)
        if not self.is_guest:
            body.pop("visitor_name", None)
        data = self._request("POST", path, "Failed to add comment", json=body)
        return Comment.from_dict(data), data.get("guest_capability")

    def update_comment(self, comment_id: Id, payload: CommentUpdate, capability: Optional[str] = None) -> Comment:
        if self.is_guest:
            path = f"{self._share_prefix()}/comments/{comment_id}"
        else:
            path = f"/comments/{comment_id}"
        data = self._request(
            "PATCH", path, "Failed to update comment", json=payload.model_dump(), capability=capability
        )
        return Comment.from_dict(data)

    def delete_comment(self, comment_id: Id, capability: Optional[str] = None) -> None:
        if self.is_guest:
            path = f"{self._share_prefix()}/comments/{comment_id}"
        else:
            path = f"/comments/{comment_id}"
        self._request("DELETE", path, "Failed to delete comment", capability=capability)

    # ------------------------------------------------------------------
    # Drawings
    # ------------------------------------------------------------------

    def list_drawings(self, video_id: Id) -> list[Drawing]:
        if self.is_guest:
            path = f"{self._share_prefix()}/drawings/video/{video_id}"
        else:
            path = f"/drawings/video/{video_id}"
        data = self._request("GET", path, "Failed to load drawings") or []
        return [Drawing.from_dict(item) for item in data]

    def create_drawing(self, payload: DrawingCreate) -> Drawing:
        path = f"{self._share_prefix()}/drawings" if self.is_guest else "/drawings"
        data = self._request("POST", path, "Failed to save drawing", json=payload.model_dump())
        drawing = Drawing.from_dict(data)
        # Some backends answer with just the id
        if not drawing.points:
            drawing.points = [Point(p.x, p.y) for p in payload.drawing_data]
            drawing.timestamp = payload.timestamp
            drawing.color = payload.color
        return drawing

    def delete_drawing(self, drawing_id: Id) -> None:
        if self.is_guest:
            path = f"{self._share_prefix()}/drawings/{drawing_id}"
        else:
            path = f"/drawings/{drawing_id}"
        self._request("DELETE", path, "Failed to undo stroke")

    # ------------------------------------------------------------------
    # Media and reviews
    # ------------------------------------------------------------------

    def stream_url(self, video_id: Id, quality: str = "proxy") -> StreamInfo:
        """Resolve a time-limited playable URL for a version."""
        if self.is_guest:
            path = f"{self._share_prefix()}/video/{video_id}/stream"
        else:
            path = f"/videos/{video_id}/stream"
        data = self._request("GET", path, "Failed to load stream", params={"quality": quality})
        return StreamInfo.model_validate(data)

    def get_share(self) -> dict:
        """Share record with its resource and the versions it exposes."""
        return self._request("GET", self._share_prefix(), "Failed to open share link")

    def submit_review(self, payload: ReviewCreate) -> ReviewRecord:
        if self.is_guest:
            raise PermissionDenied("Guests cannot approve versions")
        data = self._request("POST", "/reviews", "Failed to save approval", json=payload.model_dump(mode="json"))
        return ReviewRecord.model_validate(data)

    def review_history(self, video_id: Id) -> list[ReviewRecord]:
        if self.is_guest:
            raise PermissionDenied("Guests cannot view approval history")
        data = self._request("GET", f"/reviews/{video_id}", "Failed to load approval history") or []
        return [ReviewRecord.model_validate(item) for item in data]

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def list_versions(self, video_id: Optional[Id] = None) -> list[MediaVersion]:
        """Versions of a video, newest first.

        Guests get the versions the share exposes; video_id then only
        selects the starting point and may be omitted.
        """
        if self.is_guest:
            resource = (self.get_share() or {}).get("resource") or {}
            if resource.get("type") != "video":
                raise SyncError("Share link does not point at a video")
            records = [resource["content"], *(resource.get("versions") or [])]
        else:
            if video_id is None:
                raise ValueError("video_id is required for signed-in access")
            data = self._request("GET", f"/videos/{video_id}", "Failed to load video")
            records = [data, *(data.get("versions") or [])]

        versions: dict[str, MediaVersion] = {}
        for record in records:
            version = MediaVersion.from_dict(record)
            versions[str(version.id)] = version
        return order_versions(list(versions.values()))

    def share_access_type(self) -> ShareAccessType:
        """Access level the share grants, as configured by its owner."""
        raw = (self.get_share() or {}).get("access_type") or ShareAccessType.VIEW.value
        try:
            return ShareAccessType(raw)
        except ValueError:
            logger.warning("Unknown share access type %r, treating as view-only", raw)
            return ShareAccessType.VIEW
