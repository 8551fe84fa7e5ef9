from typing import Optional

from ..utils.logger import info, warn
from .base import (
    Storage, StorageUnavailable, Run, RunLogEntry, EbayLink,
    RUNNING, SUCCESS, ERROR,
)
from .memory import MemoryStorage


def init_storage(database_url: Optional[str]) -> Storage:
    """
    Pick the backend once at startup.

    A configured DATABASE_URL that cannot be reached raises StorageUnavailable
    instead of falling back, so a restart never silently loses state.
    """
    if not database_url:
        warn("[storage] DATABASE_URL not set, using in-memory storage (state is lost on restart)")
        return MemoryStorage()

    from .sql import SqlStorage
    storage = SqlStorage(database_url)
    info(f"[storage] using durable SQL storage ({storage.dialect})")
    return storage


__all__ = [
    "Storage", "StorageUnavailable", "Run", "RunLogEntry", "EbayLink",
    "RUNNING", "SUCCESS", "ERROR", "MemoryStorage", "init_storage",
]
