"""Page routes: page metadata, block editing, undo/redo, image uploads and public reads."""

from __future__ import annotations

import hashlib
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status

from backend.config import settings
from backend.dependencies import get_page_backend, get_workspace, raise_for
from backend.models.page import (
    BlockEditResponse,
    CreatePageRequest,
    InsertBlockRequest,
    PageListResponse,
    PageResponse,
    PublicPageResponse,
    TransformBlockRequest,
    UpdateBlockRequest,
    UpdatePageRequest,
    UploadResponse,
)
from backend.models.table import ReorderRequest
from backend.services.workspace import UserWorkspace
from portal.kernel.storage import BackendError, PageBackend
from portal.kernel.types import MutationResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pages", tags=["pages"])
public_router = APIRouter(tags=["public"])

# 5-minute browser TTL, 1-hour shared cache
_CACHE_CONTROL = "public, max-age=300, s-maxage=3600, stale-while-revalidate=86400"


def _page_response(ws: UserWorkspace, page_id: str) -> PageResponse:
    store = ws.pages
    return PageResponse.from_model(store.pages[page_id], store.can_undo(page_id), store.can_redo(page_id))


def _edit_response(ws: UserWorkspace, page_id: str, result: MutationResult) -> BlockEditResponse:
    return BlockEditResponse(
        page=_page_response(ws, page_id),
        saved=result.error is None,
        error=result.error,
    )


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


@router.get("", status_code=200)
async def list_pages(ws: UserWorkspace = Depends(get_workspace)) -> PageListResponse:
    """All of the current user's pages, most recently updated first."""
    store = ws.pages
    return PageListResponse(
        pages=[_page_response(ws, page_id) for page_id in store.pages],
        active_page_id=store.active_page_id,
    )


@router.post("/refresh", status_code=200)
async def refresh_pages(ws: UserWorkspace = Depends(get_workspace)) -> PageListResponse:
    """Reload every page from the database. Undo history is discarded."""
    raise_for(await ws.pages.fetch_pages())
    return await list_pages(ws)


@router.post("", status_code=201)
async def create_page(req: CreatePageRequest, ws: UserWorkspace = Depends(get_workspace)) -> PageResponse:
    """Create a page holding one empty text block. It becomes the active page."""
    result = raise_for(await ws.pages.create_page(req.name))
    return _page_response(ws, result.value.id)


@router.get("/{page_id}", status_code=200)
async def get_page(page_id: str, ws: UserWorkspace = Depends(get_workspace)) -> PageResponse:
    """
    Load a page fresh from the database and open it.

    The page becomes active and its undo history starts over.
    """
    result = raise_for(await ws.pages.fetch_page(page_id))
    return _page_response(ws, result.value.id)


@router.post("/{page_id}/activate", status_code=200)
async def activate_page(page_id: str, ws: UserWorkspace = Depends(get_workspace)) -> PageResponse:
    raise_for(ws.pages.set_active_page(page_id))
    return _page_response(ws, page_id)


@router.patch("/{page_id}", status_code=200)
async def update_page(
    page_id: str,
    req: UpdatePageRequest,
    ws: UserWorkspace = Depends(get_workspace),
) -> PageResponse:
    """Rename, re-slug, publish or unpublish a page."""
    raise_for(await ws.pages.update_page_meta(page_id, name=req.name, slug=req.slug, is_published=req.is_published))
    return _page_response(ws, page_id)


@router.delete("/{page_id}", status_code=204)
async def delete_page(page_id: str, ws: UserWorkspace = Depends(get_workspace)) -> Response:
    raise_for(await ws.pages.delete_page(page_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------


@router.post("/{page_id}/blocks", status_code=201)
async def insert_block(
    page_id: str,
    req: InsertBlockRequest,
    ws: UserWorkspace = Depends(get_workspace),
) -> BlockEditResponse:
    result = raise_for(await ws.pages.insert_block_after(page_id, req.after_id, req.type))
    return _edit_response(ws, page_id, result)


@router.delete("/{page_id}/blocks/{block_id}", status_code=200)
async def delete_block(page_id: str, block_id: str, ws: UserWorkspace = Depends(get_workspace)) -> BlockEditResponse:
    """Remove a block. Removing the last one leaves a single empty text block."""
    result = raise_for(await ws.pages.delete_block(page_id, block_id))
    return _edit_response(ws, page_id, result)


@router.post("/{page_id}/blocks/{block_id}/duplicate", status_code=201)
async def duplicate_block(page_id: str, block_id: str, ws: UserWorkspace = Depends(get_workspace)) -> BlockEditResponse:
    result = raise_for(await ws.pages.duplicate_block(page_id, block_id))
    return _edit_response(ws, page_id, result)


@router.post("/{page_id}/blocks/reorder", status_code=200)
async def reorder_blocks(
    page_id: str,
    req: ReorderRequest,
    ws: UserWorkspace = Depends(get_workspace),
) -> BlockEditResponse:
    result = raise_for(await ws.pages.reorder_blocks(page_id, req.from_index, req.to_index))
    return _edit_response(ws, page_id, result)


@router.post("/{page_id}/blocks/{block_id}/transform", status_code=200)
async def transform_block(
    page_id: str,
    block_id: str,
    req: TransformBlockRequest,
    ws: UserWorkspace = Depends(get_workspace),
) -> BlockEditResponse:
    """Turn a block into another type. Its content is not carried over."""
    result = raise_for(await ws.pages.transform_block(page_id, block_id, req.type))
    return _edit_response(ws, page_id, result)


@router.patch("/{page_id}/blocks/{block_id}", status_code=200)
async def update_block(
    page_id: str,
    block_id: str,
    req: UpdateBlockRequest,
    ws: UserWorkspace = Depends(get_workspace),
) -> BlockEditResponse:
    """
    Edit a block's content. The edit is kept even if the save fails;
    `saved` tells the client whether it reached the database.
    """
    result = raise_for(await ws.pages.update_block(page_id, block_id, req.fields()))
    return _edit_response(ws, page_id, result)


@router.post("/{page_id}/undo", status_code=200)
async def undo(page_id: str, ws: UserWorkspace = Depends(get_workspace)) -> BlockEditResponse:
    result = raise_for(await ws.pages.undo(page_id))
    return _edit_response(ws, page_id, result)


@router.post("/{page_id}/redo", status_code=200)
async def redo(page_id: str, ws: UserWorkspace = Depends(get_workspace)) -> BlockEditResponse:
    result = raise_for(await ws.pages.redo(page_id))
    return _edit_response(ws, page_id, result)


@router.put("/{page_id}/blocks/{block_id}/image", status_code=200)
async def upload_image(
    page_id: str,
    block_id: str,
    request: Request,
    filename: str = Query(default="image", max_length=200),
    content_type: str = Header(default="application/octet-stream"),
    ws: UserWorkspace = Depends(get_workspace),
) -> UploadResponse:
    """
    Upload the raw request body as the image for an image block.

    The file name comes from the `filename` query parameter, the media type
    from the Content-Type header.
    """
    data = await request.body()
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Images are limited to {settings.MAX_UPLOAD_BYTES} bytes.",
        )
    result = raise_for(await ws.pages.upload_image(page_id, block_id, data, filename, content_type))
    return UploadResponse(url=result.value, page=_page_response(ws, page_id))


# ---------------------------------------------------------------------------
# Public reads
# ---------------------------------------------------------------------------


@public_router.get("/p/{slug}", status_code=200)
async def read_published_page(
    slug: str,
    response: Response,
    backend: PageBackend = Depends(get_page_backend),
) -> PublicPageResponse:
    """
    A published page by slug, for anonymous readers.

    Cache headers:
    - Cache-Control: public, 5-min browser TTL, 1-hour CDN TTL, 24h stale-while-revalidate
    - ETag: MD5 of page id and last update time
    """
    try:
        page = await backend.load_published(slug)
    except BackendError as e:
        logger.warning("pages: failed to load published page %s: %s", slug, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Could not load page.") from e

    if page is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Page not found.")

    stamp = page.updated_at.isoformat() if page.updated_at else ""
    etag = hashlib.md5(f"{page.id}:{stamp}".encode(), usedforsecurity=False).hexdigest()
    response.headers["Cache-Control"] = _CACHE_CONTROL
    response.headers["ETag"] = f'"{etag}"'
    return PublicPageResponse.from_model(page)
