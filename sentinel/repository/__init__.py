"""
Content repository layer for Content Sentinel.

The engine reads due items from and writes availability state to any store
implementing ContentRepositoryProtocol; a SQLite adapter is included.
"""

from sentinel.repository.base import (
    ContentType,
    ContentStatus,
    ContentRecord,
    DueSelection,
    ContentRepositoryProtocol,
)
from sentinel.repository.sqlite_repository import SQLiteContentRepository

__all__ = [
    "ContentType",
    "ContentStatus",
    "ContentRecord",
    "DueSelection",
    "ContentRepositoryProtocol",
    "SQLiteContentRepository",
]
