"""
Folio Kernel — Page Store

Client-side state for pages and their block lists.

Page metadata (create, rename, publish, delete) follows the same two-phase,
revert-on-failure policy as the table store. Block edits are different: the
block array is the unit of persistence, so every edit updates the local list
and then saves the whole array. If that save fails the error is recorded
but the local blocks stay as the user left them.

Structural block edits (insert, delete, duplicate, reorder, transform) push
a snapshot onto the page's BlockHistory; content edits do not. Undo and redo
move the history cursor and save the snapshot they land on.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import datetime
from typing import Any, TypeVar
from uuid import uuid4

from portal.kernel import blocks as block_ops
from portal.kernel.history import BlockHistory
from portal.kernel.mutations import Refused, UserIdSource, guarded, ok, user_id_getter
from portal.kernel.storage import BackendError, ObjectStorage, PageBackend
from portal.kernel.types import (
    DEFAULT_PAGE_NAME,
    Block,
    BlockType,
    ErrorKind,
    ImageBlock,
    MutationResult,
    Page,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Lowercase, runs of non-alphanumerics become '-', no leading/trailing dash."""
    return _SLUG_SEPARATORS.sub("-", name.lower()).strip("-")


def _safe_filename(filename: str) -> str:
    base = filename.replace("\\", "/").rsplit("/", 1)[-1]
    stem, dot, ext = base.rpartition(".")
    if not dot:
        stem, ext = base, ""
    cleaned = slugify(stem) or "upload"
    return f"{cleaned}.{ext.lower()}" if ext else cleaned


class PageStore:
    """Pages, the active page, and undo history per page."""

    def __init__(
        self,
        backend: PageBackend,
        current_user_id: UserIdSource = None,
        storage: ObjectStorage | None = None,
    ) -> None:
        self._backend = backend
        self._storage = storage
        self._current_user_id = user_id_getter(current_user_id)
        self.pages: dict[str, Page] = {}
        self.active_page_id: str | None = None
        self.histories: dict[str, BlockHistory] = {}
        self.is_loading = False
        self.error: str | None = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_user(self) -> str:
        user_id = self._current_user_id()
        if not user_id:
            raise Refused(ErrorKind.NOT_AUTHENTICATED, "Not authenticated")
        return str(user_id)

    def _require_page(self, page_id: str) -> Page:
        page = self.pages.get(page_id)
        if page is None:
            raise Refused(ErrorKind.NOT_FOUND, f"Page not found: {page_id}")
        return page

    def _history(self, page: Page) -> BlockHistory:
        history = self.histories.get(page.id)
        if history is None:
            history = BlockHistory(page.blocks)
            self.histories[page.id] = history
        return history

    async def _persist(self, call: Awaitable[T], message: str, rollback: Callable[[], None]) -> T:
        try:
            return await call
        except BackendError as e:
            logger.warning("page_store: %s: %s", message, e)
            rollback()
            raise Refused(ErrorKind.BACKEND, f"{message}: {e}") from e

    def _stamp(self, page_id: str, updated_at: datetime | None) -> None:
        page = self.pages.get(page_id)
        if page is not None and updated_at is not None:
            self.pages[page_id] = replace(page, updated_at=updated_at)

    async def _save_blocks(self, user_id: str, page_id: str, blocks: list[Block]) -> MutationResult:
        """
        Write the page's block array. A failure is recorded on the store but
        the local blocks are kept; the result is still ok with the error attached.
        """
        self.pages[page_id] = replace(self.pages[page_id], blocks=blocks)
        try:
            updated_at = await self._backend.save_page_content(
                user_id, page_id, block_ops.blocks_to_json(blocks)
            )
        except BackendError as e:
            logger.warning("page_store: failed to save blocks for page %s, keeping local edits: %s", page_id, e)
            self.error = f"Failed to save page: {e}"
            return MutationResult(ok=True, value=blocks, error=self.error, kind=ErrorKind.BACKEND)
        self._stamp(page_id, updated_at)
        self.error = None
        return ok(blocks)

    async def _structural_edit(
        self,
        page_id: str,
        edit: Callable[[list[Block]], list[Block]],
    ) -> MutationResult:
        user_id = self._require_user()
        page = self._require_page(page_id)
        history = self._history(page)
        try:
            blocks = edit(page.blocks)
        except block_ops.BlockNotFound as e:
            raise Refused(ErrorKind.NOT_FOUND, f"Block not found: {e.args[0]}") from e
        except (IndexError, ValueError) as e:
            raise Refused(ErrorKind.INVALID, str(e)) from e
        history.push(blocks)
        return await self._save_blocks(user_id, page_id, blocks)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def active_page(self) -> Page | None:
        if self.active_page_id is None:
            return None
        return self.pages.get(self.active_page_id)

    def blocks(self, page_id: str) -> list[Block]:
        page = self.pages.get(page_id)
        return list(page.blocks) if page is not None else []

    def can_undo(self, page_id: str) -> bool:
        history = self.histories.get(page_id)
        return history is not None and history.can_undo

    def can_redo(self, page_id: str) -> bool:
        history = self.histories.get(page_id)
        return history is not None and history.can_redo

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    @guarded
    async def fetch_pages(self) -> MutationResult:
        user_id = self._require_user()
        self.is_loading = True
        self.error = None
        try:
            pages = await self._backend.load_pages(user_id)
        except BackendError as e:
            logger.exception("page_store: failed to load pages for user %s", user_id)
            raise Refused(ErrorKind.BACKEND, f"Failed to load pages: {e}") from e
        finally:
            self.is_loading = False

        self.pages = {p.id: replace(p, blocks=block_ops.ensure_blocks(p.blocks)) for p in pages}
        self.histories = {}
        if self.active_page_id not in self.pages:
            self.active_page_id = None
        logger.info("page_store: loaded %d pages for user %s", len(pages), user_id)
        return ok(list(self.pages))

    @guarded
    async def create_page(self, name: str | None = None) -> MutationResult:
        """Create a page with one empty text block. It becomes the active page. Value: the Page."""
        user_id = self._require_user()
        name = (name or "").strip() or DEFAULT_PAGE_NAME
        page = Page(
            id=str(uuid4()),
            name=name,
            slug=slugify(name),
            blocks=[block_ops.create_text_block()],
        )
        previous_active = self.active_page_id
        self.pages = {page.id: page, **self.pages}
        self.histories[page.id] = BlockHistory(page.blocks)
        self.active_page_id = page.id

        def rollback() -> None:
            self.pages.pop(page.id, None)
            self.histories.pop(page.id, None)
            if self.active_page_id == page.id:
                self.active_page_id = previous_active if previous_active in self.pages else None

        stored = await self._persist(
            self._backend.insert_page(user_id, page),
            "Failed to create page",
            rollback,
        )
        if page.id in self.pages:
            self.pages[page.id] = replace(
                self.pages[page.id],
                created_at=stored.created_at,
                updated_at=stored.updated_at,
            )
        self.error = None
        return ok(self.pages.get(page.id, page))

    @guarded
    async def fetch_page(self, page_id: str) -> MutationResult:
        """Reload one page with its blocks, make it active, and start a fresh history."""
        user_id = self._require_user()
        self.is_loading = True
        try:
            page = await self._backend.load_page(user_id, page_id)
        except BackendError as e:
            logger.warning("page_store: failed to load page %s: %s", page_id, e)
            raise Refused(ErrorKind.BACKEND, f"Failed to load page: {e}") from e
        finally:
            self.is_loading = False
        if page is None:
            raise Refused(ErrorKind.NOT_FOUND, f"Page not found: {page_id}")

        page = replace(page, blocks=block_ops.ensure_blocks(page.blocks))
        self.pages[page.id] = page
        self.histories[page.id] = BlockHistory(page.blocks)
        self.active_page_id = page.id
        self.error = None
        return ok(page)

    @guarded
    async def update_page_meta(
        self,
        page_id: str,
        name: str | None = None,
        slug: str | None = None,
        is_published: bool | None = None,
    ) -> MutationResult:
        """
        Update name, slug and/or published flag. Only the given fields change.
        A blank name becomes the placeholder; a blank slug is derived from the name.
        """
        user_id = self._require_user()
        page = self._require_page(page_id)

        fields: dict[str, Any] = {}
        if name is not None:
            fields["name"] = name.strip() or DEFAULT_PAGE_NAME
        if slug is not None:
            fields["slug"] = slugify(slug) or slugify(fields.get("name", page.name))
        if is_published is not None:
            fields["is_published"] = bool(is_published)
        if not fields:
            return ok(page)

        previous = {key: getattr(page, key) for key in fields}
        self.pages[page_id] = replace(page, **fields)

        def rollback() -> None:
            current = self.pages.get(page_id)
            if current is not None:
                self.pages[page_id] = replace(current, **previous)

        updated_at = await self._persist(
            self._backend.update_page_meta(user_id, page_id, fields),
            "Failed to update page",
            rollback,
        )
        self._stamp(page_id, updated_at)
        self.error = None
        return ok(self.pages.get(page_id))

    @guarded
    async def delete_page(self, page_id: str) -> MutationResult:
        user_id = self._require_user()
        page = self._require_page(page_id)
        order = list(self.pages)
        history = self.histories.pop(page_id, None)
        was_active = self.active_page_id == page_id

        del self.pages[page_id]
        if was_active:
            self.active_page_id = None

        def rollback() -> None:
            if page_id in self.pages:
                return
            position = {pid: i for i, pid in enumerate(order)}
            restored = {**self.pages, page_id: page}
            self.pages = dict(
                sorted(restored.items(), key=lambda item: position.get(item[0], len(order)))
            )
            if history is not None:
                self.histories[page_id] = history
            if was_active and self.active_page_id is None:
                self.active_page_id = page_id

        await self._persist(
            self._backend.delete_page(user_id, page_id),
            "Failed to delete page",
            rollback,
        )
        self.error = None
        return ok()

    def set_active_page(self, page_id: str | None) -> MutationResult:
        if page_id is not None and page_id not in self.pages:
            return MutationResult(ok=False, error=f"Page not found: {page_id}", kind=ErrorKind.NOT_FOUND)
        self.active_page_id = page_id
        return ok(page_id)

    # ------------------------------------------------------------------
    # Blocks: structural (recorded in history)
    # ------------------------------------------------------------------

    @guarded
    async def insert_block_after(
        self,
        page_id: str,
        after_id: str | None,
        block_type: BlockType | str = BlockType.TEXT,
    ) -> MutationResult:
        """Insert a fresh block after `after_id` (or at the end). Value: the block list."""
        try:
            block = block_ops.create_block(block_type)
        except ValueError as e:
            raise Refused(ErrorKind.INVALID, f"Unknown block type: {block_type}") from e
        return await self._structural_edit(
            page_id, lambda blocks: block_ops.insert_block_after(blocks, after_id, block)
        )

    @guarded
    async def delete_block(self, page_id: str, block_id: str) -> MutationResult:
        return await self._structural_edit(page_id, lambda blocks: block_ops.delete_block(blocks, block_id))

    @guarded
    async def duplicate_block(self, page_id: str, block_id: str) -> MutationResult:
        return await self._structural_edit(
            page_id, lambda blocks: block_ops.duplicate_block(blocks, block_id)[0]
        )

    @guarded
    async def reorder_blocks(self, page_id: str, from_index: int, to_index: int) -> MutationResult:
        return await self._structural_edit(
            page_id, lambda blocks: block_ops.reorder_blocks(blocks, from_index, to_index)
        )

    @guarded
    async def transform_block(self, page_id: str, block_id: str, new_type: BlockType | str) -> MutationResult:
        """Replace a block with a fresh one of another type. The old content is discarded."""
        if new_type not in {t.value for t in BlockType}:
            raise Refused(ErrorKind.INVALID, f"Unknown block type: {new_type}")
        return await self._structural_edit(
            page_id, lambda blocks: block_ops.transform_block(blocks, block_id, new_type)[0]
        )

    # ------------------------------------------------------------------
    # Blocks: content (not recorded in history)
    # ------------------------------------------------------------------

    @guarded
    async def update_block(self, page_id: str, block_id: str, fields: dict[str, Any]) -> MutationResult:
        user_id = self._require_user()
        page = self._require_page(page_id)
        try:
            blocks = block_ops.update_block(page.blocks, block_id, fields)
        except block_ops.BlockNotFound as e:
            raise Refused(ErrorKind.NOT_FOUND, f"Block not found: {block_id}") from e
        except ValueError as e:
            raise Refused(ErrorKind.INVALID, str(e)) from e
        return await self._save_blocks(user_id, page_id, blocks)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @guarded
    async def undo(self, page_id: str) -> MutationResult:
        """Step back one structural edit. At the bottom of history this is a no-op."""
        user_id = self._require_user()
        page = self._require_page(page_id)
        snapshot = self._history(page).undo()
        if snapshot is None:
            return ok(list(page.blocks))
        return await self._save_blocks(user_id, page_id, snapshot)

    @guarded
    async def redo(self, page_id: str) -> MutationResult:
        user_id = self._require_user()
        page = self._require_page(page_id)
        snapshot = self._history(page).redo()
        if snapshot is None:
            return ok(list(page.blocks))
        return await self._save_blocks(user_id, page_id, snapshot)

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    @guarded
    async def upload_image(
        self,
        page_id: str,
        block_id: str,
        data: bytes,
        filename: str,
        content_type: str,
    ) -> MutationResult:
        """
        Upload an image and point an image block at it.

        The blob goes to `{user_id}/{uuid}-{filename}`; the returned public URL
        is written into the block's `url`. Value: the URL.
        """
        user_id = self._require_user()
        page = self._require_page(page_id)
        if self._storage is None:
            raise Refused(ErrorKind.BACKEND, "Uploads are not configured")
        try:
            block = page.blocks[block_ops.index_of(page.blocks, block_id)]
        except block_ops.BlockNotFound as e:
            raise Refused(ErrorKind.NOT_FOUND, f"Block not found: {block_id}") from e
        if not isinstance(block, ImageBlock):
            raise Refused(ErrorKind.INVALID, f"Block {block_id} is not an image block")
        if not content_type.startswith("image/"):
            raise Refused(ErrorKind.INVALID, f"Not an image: {content_type}")
        if not data:
            raise Refused(ErrorKind.INVALID, "Empty upload")

        key = f"{user_id}/{uuid4()}-{_safe_filename(filename)}"
        try:
            url = await self._storage.put(key, data, content_type)
        except BackendError as e:
            logger.warning("page_store: upload failed for page %s block %s: %s", page_id, block_id, e)
            raise Refused(ErrorKind.BACKEND, f"Failed to upload image: {e}") from e

        logger.info("page_store: uploaded %d bytes to %s", len(data), key)

        # The page may have changed while the upload was in flight
        current = self.pages.get(page_id)
        if current is None:
            raise Refused(ErrorKind.NOT_FOUND, f"Page not found: {page_id}")
        try:
            blocks = block_ops.update_block(current.blocks, block_id, {"url": url})
        except (block_ops.BlockNotFound, ValueError) as e:
            raise Refused(ErrorKind.NOT_FOUND, f"Block not found: {block_id}") from e
        result = await self._save_blocks(user_id, page_id, blocks)
        return replace(result, value=url)
