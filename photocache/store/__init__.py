"""Entry storage backends."""

from .base import EntryStore
from .factory import build_entry_store
from .memory import InMemoryEntryStore
from .redis import RedisEntryStore
from .sql import SqlEntryStore

__all__ = [
    "EntryStore",
    "build_entry_store",
    "InMemoryEntryStore",
    "RedisEntryStore",
    "SqlEntryStore",
]
