"""
Folio Kernel — Debounce

Cell editors commit on a quiet period rather than on every keystroke. A
Debouncer holds at most one pending value and one timer; each push resets
the timer, and when it fires the latest value is committed.

flush() commits right away (editor blur, unmount). cancel() drops the
pending value without committing.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

_NOTHING = object()

DEFAULT_DELAY = 1.0


class Debouncer:
    """Coalesce rapid values into a single async commit."""

    def __init__(self, callback: Callable[[Any], Awaitable[Any]], delay: float = DEFAULT_DELAY) -> None:
        self._callback = callback
        self.delay = delay
        self._value: Any = _NOTHING
        self._handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._value is not _NOTHING

    def push(self, value: Any) -> None:
        """Replace the pending value and restart the quiet-period timer."""
        self._value = value
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def _take(self) -> Any:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        value, self._value = self._value, _NOTHING
        return value

    def _fire(self) -> None:
        self._handle = None
        if not self.pending:
            return
        task = asyncio.get_running_loop().create_task(self._commit(self._take()))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _commit(self, value: Any) -> Any:
        try:
            return await self._callback(value)
        except Exception:
            logger.exception("debounce: commit failed")
            raise

    async def flush(self) -> Any:
        """Commit the pending value now and wait for any in-flight commits. None if nothing was pending."""
        result = None
        if self.pending:
            result = await self._commit(self._take())
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return result

    def cancel(self) -> None:
        self._take()


def cell_debouncer(
    store: Any,
    table_id: str,
    row_id: str,
    column_id: str,
    delay: float = DEFAULT_DELAY,
    on_commit: Callable[[], None] | None = None,
) -> Debouncer:
    """
    A debouncer whose commits go to `store.update_cell` for one cell.

    on_commit runs after every commit, successful or not.
    """

    async def commit(value: Any) -> Any:
        try:
            return await store.update_cell(table_id, row_id, column_id, value)
        finally:
            if on_commit is not None:
                on_commit()

    return Debouncer(commit, delay=delay)
