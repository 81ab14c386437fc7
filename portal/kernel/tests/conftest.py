"""
Kernel test configuration.

Stores run against MemoryBackend. FlakyBackend fails the next N calls to a
named backend operation so the revert and log-and-keep paths can be driven
deterministically.
"""

import pytest

from portal.kernel.database_store import DatabaseStore
from portal.kernel.page_store import PageStore
from portal.kernel.storage import BackendError, MemoryBackend, MemoryObjectStorage

USER_ID = "user-1"


class FlakyBackend(MemoryBackend):
    """MemoryBackend that raises BackendError for scheduled operations."""

    def __init__(self) -> None:
        super().__init__()
        self.failures: dict[str, int] = {}

    def fail(self, op: str, times: int = 1) -> None:
        self.failures[op] = self.failures.get(op, 0) + times

    def _record(self, op: str) -> None:
        super()._record(op)
        remaining = self.failures.get(op, 0)
        if remaining:
            self.failures[op] = remaining - 1
            raise BackendError(f"{op} unavailable")


@pytest.fixture
def backend():
    return FlakyBackend()


@pytest.fixture
def uploads():
    return MemoryObjectStorage()


@pytest.fixture
def db(backend):
    return DatabaseStore(backend, USER_ID)


@pytest.fixture
def pages(backend, uploads):
    return PageStore(backend, USER_ID, storage=uploads)


@pytest.fixture
async def table_id(db):
    result = await db.create_table("Products")
    assert result.ok
    return result.value
