"""Repository for pages and their block content."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import asyncpg

from backend.db import scoped, system_scoped
from portal.kernel.blocks import blocks_from_json, blocks_to_json
from portal.kernel.storage import BackendError, PageBackend
from portal.kernel.types import Page

# Columns a metadata update may touch
_META_FIELDS = ("name", "slug", "is_published")


def _row_to_page(row: asyncpg.Record) -> Page:
    """Convert a database row to a Page. Stored content is decoded into blocks."""
    return Page(
        id=str(row["id"]),
        name=row["name"],
        slug=row["slug"],
        is_published=row["is_published"],
        blocks=blocks_from_json(row["content"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PageRepo(PageBackend):
    """All page-related database operations."""

    async def load_pages(self, user_id: str) -> list[Page]:
        """
        List all pages for a user with their blocks.

        Returns:
            Pages ordered by updated_at DESC
        """
        async with scoped(user_id, "load_pages") as conn:
            rows = await conn.fetch("SELECT * FROM pages ORDER BY updated_at DESC")
        return [_row_to_page(row) for row in rows]

    async def load_page(self, user_id: str, page_id: str) -> Page | None:
        """
        Get a page by ID. RLS ensures only the owner can access.

        Returns:
            Page if found and owned by user, None otherwise
        """
        async with scoped(user_id, "load_page") as conn:
            row = await conn.fetchrow("SELECT * FROM pages WHERE id = $1", page_id)
        return _row_to_page(row) if row else None

    async def insert_page(self, user_id: str, page: Page) -> Page:
        async with scoped(user_id, "insert_page") as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO pages (id, user_id, name, slug, is_published, content)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING *
                """,
                page.id,
                user_id,
                page.name,
                page.slug,
                page.is_published,
                blocks_to_json(page.blocks),
            )
        return _row_to_page(row)

    async def update_page_meta(self, user_id: str, page_id: str, fields: dict[str, Any]) -> datetime:
        """
        Update name, slug and/or is_published.

        Returns:
            The page's new updated_at

        Raises:
            BackendError: If the page is missing or not owned by the user
        """
        updates = {k: v for k, v in fields.items() if k in _META_FIELDS}
        if not updates:
            raise BackendError("no page fields to update")

        set_clause = ", ".join(f"{k} = ${i + 2}" for i, k in enumerate(updates))

        async with scoped(user_id, "update_page_meta") as conn:
            # S608/B608: False positive - set_clause only contains whitelisted column names
            updated_at = await conn.fetchval(
                f"""
                UPDATE pages
                SET {set_clause}, updated_at = now()
                WHERE id = $1
                RETURNING updated_at
                """,  # nosec B608
                page_id,
                *updates.values(),
            )
        if updated_at is None:
            raise BackendError(f"page {page_id} not found")
        return updated_at

    async def save_page_content(self, user_id: str, page_id: str, content: list[dict[str, Any]]) -> datetime:
        """Replace the page's block array. Returns the new updated_at."""
        async with scoped(user_id, "save_page_content") as conn:
            updated_at = await conn.fetchval(
                "UPDATE pages SET content = $2, updated_at = now() WHERE id = $1 RETURNING updated_at",
                page_id,
                content,
            )
        if updated_at is None:
            raise BackendError(f"page {page_id} not found")
        return updated_at

    async def delete_page(self, user_id: str, page_id: str) -> None:
        async with scoped(user_id, "delete_page") as conn:
            result = await conn.execute("DELETE FROM pages WHERE id = $1", page_id)
        if result != "DELETE 1":
            raise BackendError(f"page {page_id} not found")

    async def load_published(self, slug: str) -> Page | None:
        """
        Public lookup of a published page. Not user-scoped.

        Returns:
            The most recently updated published page with this slug, or None
        """
        async with system_scoped("load_published") as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM pages
                WHERE slug = $1 AND is_published
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                slug,
            )
        return _row_to_page(row) if row else None
