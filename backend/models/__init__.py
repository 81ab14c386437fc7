"""
Pydantic models for Folio.

All API data shapes defined here. No imports from db, repos, or routes.
"""

from backend.models.page import (
    CreatePageRequest,
    PageResponse,
    UpdatePageRequest,
)
from backend.models.table import (
    AddColumnRequest,
    CreateTableRequest,
    TableResponse,
    ViewRequest,
)

__all__ = [
    # Table models
    "CreateTableRequest",
    "AddColumnRequest",
    "ViewRequest",
    "TableResponse",
    # Page models
    "CreatePageRequest",
    "UpdatePageRequest",
    "PageResponse",
]
