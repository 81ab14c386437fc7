"""
Folio Kernel — Mutation plumbing shared by the stores.

Store operations run in two phases: apply a local patch, then await the
backend. Preconditions that fail (no user, unknown id, bad input) raise
Refused inside the operation; the @guarded decorator turns that into a
failed MutationResult and records the message on the store.
"""

from __future__ import annotations

import functools
from collections.abc import Callable
from typing import Any

from portal.kernel.types import ErrorKind, MutationResult

UserIdSource = str | Callable[[], str | None] | None


class Refused(Exception):
    """An operation was refused before or after touching the backend."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


def user_id_getter(source: UserIdSource) -> Callable[[], str | None]:
    """Accept a fixed user id, a callable returning one, or None."""
    if callable(source):
        return source
    return lambda: source


def guarded(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Convert Refused into a failed MutationResult and set `self.error`."""

    @functools.wraps(fn)
    async def wrapper(self, *args: Any, **kwargs: Any) -> MutationResult:
        try:
            return await fn(self, *args, **kwargs)
        except Refused as e:
            self.error = e.message
            return MutationResult(ok=False, error=e.message, kind=e.kind)

    return wrapper


def ok(value: Any = None) -> MutationResult:
    return MutationResult(ok=True, value=value)
