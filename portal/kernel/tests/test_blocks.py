"""
Folio Kernel — Block List and History Tests

Pure block edits, the never-empty page rule, stored JSON shape, and the
undo/redo snapshot stack.
"""

import pytest

from portal.kernel import blocks as block_ops
from portal.kernel.history import BlockHistory
from portal.kernel.types import BlockType, ImageBlock, RecordLinkBlock, TextBlock, empty_doc


def hello_doc(text="hello"):
    return {"type": "doc", "content": [{"type": "paragraph", "content": [{"type": "text", "text": text}]}]}


@pytest.fixture
def three():
    return [
        block_ops.create_text_block(hello_doc("one")),
        block_ops.create_image_block(),
        block_ops.create_record_link_block(),
    ]


# ============================================================================
# Construction
# ============================================================================


class TestConstruction:
    def test_text_block_default_doc(self):
        block = block_ops.create_text_block()
        assert block.type == BlockType.TEXT
        assert block.doc == {"type": "doc", "content": [{"type": "paragraph"}]}

    def test_image_block_is_empty(self):
        block = block_ops.create_image_block()
        assert (block.url, block.alt, block.caption) == ("", "", "")

    def test_create_block_by_type_string(self):
        assert isinstance(block_ops.create_block("record-link"), RecordLinkBlock)
        assert isinstance(block_ops.create_block("image"), ImageBlock)

    def test_create_unknown_type(self):
        with pytest.raises(ValueError):
            block_ops.create_block("video")

    def test_fresh_ids(self):
        assert block_ops.create_text_block().id != block_ops.create_text_block().id


# ============================================================================
# Structural edits
# ============================================================================


class TestStructuralEdits:
    def test_insert_after(self, three):
        new = block_ops.create_text_block()
        result = block_ops.insert_block_after(three, three[0].id, new)
        assert [b.id for b in result] == [three[0].id, new.id, three[1].id, three[2].id]

    def test_insert_with_no_anchor_appends(self, three):
        new = block_ops.create_text_block()
        assert block_ops.insert_block_after(three, None, new)[-1] is new

    def test_insert_after_unknown_block(self, three):
        with pytest.raises(block_ops.BlockNotFound):
            block_ops.insert_block_after(three, "missing", block_ops.create_text_block())

    def test_delete(self, three):
        result = block_ops.delete_block(three, three[1].id)
        assert [b.id for b in result] == [three[0].id, three[2].id]
        assert len(three) == 3

    def test_deleting_only_block_leaves_empty_text(self):
        only = block_ops.create_image_block()
        result = block_ops.delete_block([only], only.id)
        assert len(result) == 1
        assert isinstance(result[0], TextBlock)
        assert result[0].doc == empty_doc()
        assert result[0].id != only.id

    def test_duplicate_is_deep_copy_after_source(self, three):
        result, clone = block_ops.duplicate_block(three, three[0].id)
        assert result[1] is clone
        assert clone.id != three[0].id
        assert clone.doc == three[0].doc
        clone.doc["content"].clear()
        assert three[0].doc["content"]

    def test_reorder(self, three):
        a, b, c = (blk.id for blk in three)
        assert [x.id for x in block_ops.reorder_blocks(three, 0, 2)] == [b, c, a]

    def test_reorder_out_of_range(self, three):
        with pytest.raises(IndexError):
            block_ops.reorder_blocks(three, 3, 0)

    def test_transform_discards_content(self, three):
        result, fresh = block_ops.transform_block(three, three[0].id, "image")
        assert result[0] is fresh
        assert isinstance(fresh, ImageBlock)
        assert fresh.id != three[0].id
        assert (fresh.url, fresh.alt, fresh.caption) == ("", "", "")


# ============================================================================
# Content edits
# ============================================================================


class TestUpdateBlock:
    def test_update_image_fields(self, three):
        result = block_ops.update_block(three, three[1].id, {"url": "https://x/y.png", "alt": "y"})
        assert result[1].url == "https://x/y.png"
        assert result[1].alt == "y"
        assert three[1].url == ""

    def test_field_from_another_type_rejected(self, three):
        with pytest.raises(ValueError):
            block_ops.update_block(three, three[0].id, {"url": "x"})

    def test_null_field_rejected(self, three):
        with pytest.raises(ValueError):
            block_ops.update_block(three, three[0].id, {"doc": None})
        with pytest.raises(ValueError):
            block_ops.update_block(three, three[1].id, {"alt": "y", "url": None})
        assert three[1].url == ""

    def test_update_record_link(self, three):
        result = block_ops.update_block(three, three[2].id, {"record_id": "r1", "title": "Row one"})
        assert result[2].record_id == "r1"
        assert result[2].title == "Row one"


# ============================================================================
# Serialization
# ============================================================================


class TestSerialization:
    def test_record_link_uses_camel_case_keys(self):
        block = RecordLinkBlock(id="b1", record_id="r1", record_type="product", title="Mug")
        assert block_ops.block_to_dict(block) == {
            "id": "b1",
            "type": "record-link",
            "recordId": "r1",
            "recordType": "product",
            "title": "Mug",
        }

    def test_round_trip_preserves_blocks(self, three):
        assert block_ops.blocks_from_json(block_ops.blocks_to_json(three)) == three

    def test_unknown_stored_type_reads_as_text(self):
        result = block_ops.blocks_from_json([{"id": "b1", "type": "video", "src": "x"}])
        assert result == [TextBlock(id="b1")]

    def test_empty_or_legacy_content_gives_one_block(self):
        assert len(block_ops.blocks_from_json({})) == 1
        assert len(block_ops.blocks_from_json([])) == 1
        assert len(block_ops.blocks_from_json(None)) == 1


# ============================================================================
# History
# ============================================================================


class TestHistory:
    def test_initial_state(self, three):
        history = BlockHistory(three)
        assert history.index == 0
        assert len(history) == 1
        assert not history.can_undo
        assert not history.can_redo

    def test_undo_at_bottom_is_noop(self, three):
        history = BlockHistory(three)
        assert history.undo() is None
        assert history.index == 0

    def test_redo_at_top_is_noop(self, three):
        history = BlockHistory(three)
        history.push(three[:1])
        assert history.redo() is None
        assert history.index == 1

    def test_undo_then_redo_restores_snapshot(self, three):
        history = BlockHistory(three)
        edited = block_ops.delete_block(three, three[1].id)
        history.push(edited)

        assert history.undo() == three
        assert history.redo() == edited

    def test_push_truncates_redo_tail(self, three):
        history = BlockHistory(three)
        history.push(three[:2])
        history.push(three[:1])
        history.undo()
        history.undo()
        history.push(three[1:])

        assert len(history) == 2
        assert not history.can_redo
        assert history.current() == three[1:]

    def test_snapshots_are_isolated(self, three):
        history = BlockHistory(three)
        three[0].doc["content"].clear()
        assert history.current()[0].doc["content"]

        snapshot = history.current()
        snapshot.pop()
        assert len(history.current()) == 3

    def test_index_stays_in_bounds(self, three):
        history = BlockHistory(three)
        for _ in range(3):
            history.push(three)
        for _ in range(10):
            history.undo()
            assert 0 <= history.index < len(history)
        for _ in range(10):
            history.redo()
            assert 0 <= history.index < len(history)
        assert history.index == len(history) - 1
