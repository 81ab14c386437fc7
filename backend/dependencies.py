"""
Shared FastAPI dependencies and result translation for the store-backed routes.
"""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status

from backend.auth import get_current_user_id
from backend.services.workspace import UserWorkspace, Workspace
from portal.kernel.storage import BackendError, PageBackend
from portal.kernel.types import ErrorKind, MutationResult

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    ErrorKind.NOT_AUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID: 422,
    ErrorKind.BACKEND: status.HTTP_502_BAD_GATEWAY,
}


def get_workspace_registry(request: Request) -> Workspace:
    """The app-wide Workspace, installed on app.state by the lifespan."""
    return request.app.state.workspace


def get_page_backend(request: Request) -> PageBackend:
    """The unscoped page backend, for public reads."""
    return request.app.state.page_backend


async def get_workspace(
    user_id: str = Depends(get_current_user_id),
    registry: Workspace = Depends(get_workspace_registry),
) -> UserWorkspace:
    """
    FastAPI dependency returning the current user's hydrated stores.

    Raises:
        HTTPException: 502 if the user's data cannot be loaded
    """
    try:
        return await registry.for_user(user_id)
    except BackendError as e:
        logger.warning("workspace: failed to hydrate user %s: %s", user_id, e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not load your workspace. Please try again.",
        ) from e


def raise_for(result: MutationResult) -> MutationResult:
    """
    Turn a failed store result into an HTTPException.

    Results that succeeded locally but failed to persist (ok with an error
    attached) pass through; the route reports them as unsaved.
    """
    if result.ok:
        return result
    code = _STATUS_BY_KIND.get(result.kind, status.HTTP_400_BAD_REQUEST)
    raise HTTPException(status_code=code, detail=result.error or "Request failed.")
