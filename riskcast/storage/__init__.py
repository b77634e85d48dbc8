"""
Shared store for the riskcast core.

Every piece of coordination state lives here: job leases and attempts,
fired events, and score snapshots. Processes hold nothing between ticks.

All storage uses DuckDB.
"""

from functools import lru_cache

from riskcast.config import get_settings

from .base import StorageBackend
from .duckdb_storage import DuckDBStorage


@lru_cache
def get_storage() -> StorageBackend:
    """
    Get cached storage backend instance (singleton).

    Returns:
        StorageBackend implementation instance
    """
    settings = get_settings()
    return DuckDBStorage(db_path=settings.db_path)


__all__ = [
    "StorageBackend",
    "DuckDBStorage",
    "get_storage",
]
