"""
Folio Kernel — Block History

Undo/redo for the page builder: a stack of full block-list snapshots and a
cursor into it. Only structural edits push; typing inside a block does not.

Snapshots are deep copies on the way in and on the way out, so nothing the
caller does to a returned list can leak back into history.
"""

from __future__ import annotations

import copy

from portal.kernel.types import Block


class BlockHistory:
    """Snapshot stack with a cursor. Unbounded."""

    def __init__(self, initial: list[Block]) -> None:
        self._stack: list[list[Block]] = [copy.deepcopy(initial)]
        self._index = 0

    @property
    def index(self) -> int:
        return self._index

    def __len__(self) -> int:
        return len(self._stack)

    @property
    def can_undo(self) -> bool:
        return self._index > 0

    @property
    def can_redo(self) -> bool:
        return self._index < len(self._stack) - 1

    def current(self) -> list[Block]:
        return copy.deepcopy(self._stack[self._index])

    def push(self, blocks: list[Block]) -> None:
        """Record a new snapshot. Anything past the cursor is discarded."""
        del self._stack[self._index + 1 :]
        self._stack.append(copy.deepcopy(blocks))
        self._index = len(self._stack) - 1

    def undo(self) -> list[Block] | None:
        """Step back one snapshot. None (no-op) at the bottom."""
        if not self.can_undo:
            return None
        self._index -= 1
        return self.current()

    def redo(self) -> list[Block] | None:
        """Step forward one snapshot. None (no-op) at the top."""
        if not self.can_redo:
            return None
        self._index += 1
        return self.current()
