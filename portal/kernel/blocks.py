"""
Folio Kernel — Page Blocks

Pure functions over a page's ordered block list: (blocks, intent) → blocks.

A page never has zero blocks. Deleting the last one leaves a fresh empty
text block in its place.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import replace
from typing import Any
from uuid import uuid4

from portal.kernel.types import (
    Block,
    BlockType,
    ImageBlock,
    RecordLinkBlock,
    TextBlock,
    empty_doc,
)

logger = logging.getLogger(__name__)


class BlockNotFound(KeyError):
    """Block id is not on the page."""


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------


def _block_id() -> str:
    return str(uuid4())


def create_text_block(doc: dict[str, Any] | None = None) -> TextBlock:
    return TextBlock(id=_block_id(), doc=copy.deepcopy(doc) if doc else empty_doc())


def create_image_block() -> ImageBlock:
    return ImageBlock(id=_block_id())


def create_record_link_block() -> RecordLinkBlock:
    return RecordLinkBlock(id=_block_id())


_FACTORIES = {
    BlockType.TEXT: create_text_block,
    BlockType.IMAGE: create_image_block,
    BlockType.RECORD_LINK: create_record_link_block,
}


def create_block(block_type: BlockType | str) -> Block:
    """Fresh empty block of the given type. Raises ValueError for unknown types."""
    return _FACTORIES[BlockType(block_type)]()


def ensure_blocks(blocks: list[Block]) -> list[Block]:
    return blocks if blocks else [create_text_block()]


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def index_of(blocks: list[Block], block_id: str) -> int:
    for i, block in enumerate(blocks):
        if block.id == block_id:
            return i
    raise BlockNotFound(block_id)


# ---------------------------------------------------------------------------
# Structural edits
# ---------------------------------------------------------------------------


def insert_block_after(blocks: list[Block], after_id: str | None, block: Block) -> list[Block]:
    """Insert right after `after_id`, or append when `after_id` is None."""
    if after_id is None:
        return [*blocks, block]
    i = index_of(blocks, after_id)
    return [*blocks[: i + 1], block, *blocks[i + 1 :]]


def delete_block(blocks: list[Block], block_id: str) -> list[Block]:
    i = index_of(blocks, block_id)
    return ensure_blocks([*blocks[:i], *blocks[i + 1 :]])


def duplicate_block(blocks: list[Block], block_id: str) -> tuple[list[Block], Block]:
    """Deep-copy a block under a new id, placed immediately after the source."""
    i = index_of(blocks, block_id)
    clone = replace(copy.deepcopy(blocks[i]), id=_block_id())
    return [*blocks[: i + 1], clone, *blocks[i + 1 :]], clone


def reorder_blocks(blocks: list[Block], from_index: int, to_index: int) -> list[Block]:
    count = len(blocks)
    if not (0 <= from_index < count and 0 <= to_index < count):
        raise IndexError(f"block index out of range: {from_index} -> {to_index}")
    moved = list(blocks)
    block = moved.pop(from_index)
    moved.insert(to_index, block)
    return moved


def transform_block(blocks: list[Block], block_id: str, new_type: BlockType | str) -> tuple[list[Block], Block]:
    """
    Replace a block in place with a fresh block of `new_type`.
    Destructive: the old content is discarded, not migrated.
    """
    i = index_of(blocks, block_id)
    fresh = create_block(new_type)
    return [*blocks[:i], fresh, *blocks[i + 1 :]], fresh


# ---------------------------------------------------------------------------
# Content edits
# ---------------------------------------------------------------------------

_EDITABLE_FIELDS: dict[BlockType, frozenset[str]] = {
    BlockType.TEXT: frozenset({"doc"}),
    BlockType.IMAGE: frozenset({"url", "alt", "caption"}),
    BlockType.RECORD_LINK: frozenset({"record_id", "record_type", "title"}),
}


def update_block(blocks: list[Block], block_id: str, fields: dict[str, Any]) -> list[Block]:
    """
    Content-only edit. Fields that don't belong to the block's type, or that
    are None, raise ValueError.
    """
    i = index_of(blocks, block_id)
    block = blocks[i]
    unknown = set(fields) - _EDITABLE_FIELDS[block.type]
    if unknown:
        raise ValueError(f"{block.type.value} block has no field(s): {', '.join(sorted(unknown))}")
    nulls = sorted(name for name, value in fields.items() if value is None)
    if nulls:
        raise ValueError(f"{block.type.value} block field(s) cannot be null: {', '.join(nulls)}")
    return [*blocks[:i], replace(block, **copy.deepcopy(fields)), *blocks[i + 1 :]]


# ---------------------------------------------------------------------------
# Serialization (page content JSON)
# ---------------------------------------------------------------------------


def block_to_dict(block: Block) -> dict[str, Any]:
    if isinstance(block, TextBlock):
        return {"id": block.id, "type": "text", "doc": block.doc}
    if isinstance(block, ImageBlock):
        return {
            "id": block.id,
            "type": "image",
            "url": block.url,
            "alt": block.alt,
            "caption": block.caption,
        }
    return {
        "id": block.id,
        "type": "record-link",
        "recordId": block.record_id,
        "recordType": block.record_type,
        "title": block.title,
    }


def block_from_dict(d: dict[str, Any]) -> Block:
    """Decode one stored block. Unknown types come back as an empty text block."""
    block_id = str(d.get("id") or _block_id())
    block_type = d.get("type")
    if block_type == BlockType.TEXT:
        return TextBlock(id=block_id, doc=d.get("doc") or empty_doc())
    if block_type == BlockType.IMAGE:
        return ImageBlock(
            id=block_id,
            url=d.get("url") or "",
            alt=d.get("alt") or "",
            caption=d.get("caption") or "",
        )
    if block_type == BlockType.RECORD_LINK:
        return RecordLinkBlock(
            id=block_id,
            record_id=d.get("recordId") or "",
            record_type=d.get("recordType") or "",
            title=d.get("title") or "",
        )
    logger.warning("blocks: unknown block type %r for block %s, using empty text", block_type, block_id)
    return TextBlock(id=block_id)


def blocks_to_json(blocks: list[Block]) -> list[dict[str, Any]]:
    return [block_to_dict(b) for b in blocks]


def blocks_from_json(data: Any) -> list[Block]:
    """Decode a page's content column. Anything but a list of blocks → one empty text block."""
    if not isinstance(data, list):
        return [create_text_block()]
    return ensure_blocks([block_from_dict(d) for d in data if isinstance(d, dict)])
