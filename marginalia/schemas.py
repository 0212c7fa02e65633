"""Pydantic models for the review backend's request and response bodies."""

from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

from .models import ApprovalStatus

WireId = Union[int, str]


class PointPayload(BaseModel):
    x: float = Field(..., ge=0.0, le=1.0)
    y: float = Field(..., ge=0.0, le=1.0)


class CommentCreate(BaseModel):
    """Body of POST /comments (and the share-scoped variant)."""

    video_id: WireId
    content: str = Field(..., min_length=1)
    timestamp: Optional[float] = Field(default=None, ge=0.0)
    timestamp_end: Optional[float] = Field(default=None, ge=0.0)
    parent_comment_id: Optional[WireId] = None
    visitor_name: Optional[str] = Field(default=None, description="Guest display name")

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be blank")
        return value


class CommentUpdate(BaseModel):
    """Body of PATCH /comments/{id}."""

    content: str = Field(..., min_length=1)


class DrawingCreate(BaseModel):
    """Body of POST /drawings; the point list travels as drawing_data."""

    video_id: WireId
    timestamp: float = Field(..., ge=0.0)
    drawing_data: list[PointPayload]
    color: str = Field(default="#FF0000")


class ReviewCreate(BaseModel):
    """Body of POST /reviews."""

    video_id: WireId
    status: ApprovalStatus
    notes: Optional[str] = None


class StreamInfo(BaseModel):
    """Response of GET /videos/{id}/stream."""

    url: str
    is_proxy: bool = Field(default=False, alias="isProxy")
    mime: str = Field(default="video/mp4")

    model_config = {"populate_by_name": True}


class ReviewRecord(BaseModel):
    """One entry of a version's approval history."""

    id: Optional[WireId] = None
    video_id: Optional[WireId] = None
    status: ApprovalStatus
    notes: Optional[str] = None
    username: Optional[str] = None
    created_at: Optional[str] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def stringify_created_at(cls, value):
        return None if value is None else str(value)
