"""Page models: metadata, blocks and uploads."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from portal.kernel.blocks import blocks_to_json
from portal.kernel.types import Page

BlockTypeName = Literal["text", "image", "record-link"]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class CreatePageRequest(BaseModel):
    model_config = {"extra": "forbid"}

    name: str | None = Field(default=None, max_length=200)


class UpdatePageRequest(BaseModel):
    """Only the fields that are set are changed."""

    model_config = {"extra": "forbid"}

    name: str | None = Field(default=None, max_length=200)
    slug: str | None = Field(default=None, max_length=100)
    is_published: bool | None = None


class InsertBlockRequest(BaseModel):
    """Insert a fresh block after `after_id`, or at the end when it is omitted."""

    model_config = {"extra": "forbid"}

    after_id: str | None = None
    type: BlockTypeName = "text"


class TransformBlockRequest(BaseModel):
    model_config = {"extra": "forbid"}

    type: BlockTypeName


class UpdateBlockRequest(BaseModel):
    """Content edit. Only fields belonging to the block's type may be set."""

    model_config = {"extra": "forbid"}

    doc: dict[str, Any] | None = None
    url: str | None = None
    alt: str | None = None
    caption: str | None = None
    record_id: str | None = None
    record_type: str | None = None
    title: str | None = None

    def fields(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class PageResponse(BaseModel):
    """A page with its blocks in stored JSON form."""

    id: str
    name: str
    slug: str
    is_published: bool
    blocks: list[dict[str, Any]]
    created_at: datetime | None = None
    updated_at: datetime | None = None
    can_undo: bool = False
    can_redo: bool = False

    @classmethod
    def from_model(cls, page: Page, can_undo: bool = False, can_redo: bool = False) -> PageResponse:
        return cls(
            id=page.id,
            name=page.name,
            slug=page.slug,
            is_published=page.is_published,
            blocks=blocks_to_json(page.blocks),
            created_at=page.created_at,
            updated_at=page.updated_at,
            can_undo=can_undo,
            can_redo=can_redo,
        )


class PageListResponse(BaseModel):
    pages: list[PageResponse]
    active_page_id: str | None = None


class BlockEditResponse(BaseModel):
    """Result of a block edit. `saved` is False when the save failed but the edit was kept."""

    page: PageResponse
    saved: bool
    error: str | None = None


class UploadResponse(BaseModel):
    url: str
    page: PageResponse


class PublicPageResponse(BaseModel):
    """What anonymous readers see for a published page."""

    name: str
    slug: str
    blocks: list[dict[str, Any]]
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, page: Page) -> PublicPageResponse:
        return cls(name=page.name, slug=page.slug, blocks=blocks_to_json(page.blocks), updated_at=page.updated_at)
