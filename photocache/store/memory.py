"""In-memory entry store, intended for development and tests."""

import threading
from dataclasses import replace
from typing import List, Optional, Sequence

from photocache.errors import StoreError
from photocache.models import CacheEntry, LocationKey
from photocache.store.base import EntryStore, check_batch
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="store/in_memory_entry_store")


class InMemoryEntryStore(EntryStore):
    """Thread-safe in-memory store. Callers receive copies of stored entries."""

    def __init__(self) -> None:
        logger.debug("Initializing InMemoryEntryStore")
        self._entries: dict[str, CacheEntry] = {}
        self._by_location: dict[str, list[str]] = {}
        self._locations: set[LocationKey] = set()
        self._lock = threading.Lock()

    def query(self, location_key: LocationKey) -> List[CacheEntry]:
        with self._lock:
            ids = self._by_location.get(location_key.token, [])
            return [replace(self._entries[eid]) for eid in ids]

    def get(self, entry_id: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(entry_id)
            return replace(entry) if entry else None

    def insert_batch(self, location_key: LocationKey, entries: Sequence[CacheEntry]) -> None:
        """Stage the whole batch, then commit it in one step."""
        check_batch(location_key, entries)
        if not entries:
            return
        with self._lock:
            if self._by_location.get(location_key.token):
                raise StoreError(f"Entries already exist for {location_key}")
            staged = {}
            for entry in entries:
                if entry.id in self._entries:
                    raise StoreError(f"Entry id already stored: {entry.id}")
                staged[entry.id] = replace(entry)
            self._entries.update(staged)
            self._by_location[location_key.token] = list(staged)

    def update_payload(self, entry_id: str, payload: bytes) -> bool:
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None:
                return False
            if entry.payload is None:
                entry.payload = bytes(payload)
            return True

    def delete_entry(self, entry_id: str) -> None:
        with self._lock:
            entry = self._entries.pop(entry_id, None)
            if entry is None:
                return
            ids = self._by_location.get(entry.location_key.token)
            if ids is not None:
                ids.remove(entry_id)
                if not ids:
                    del self._by_location[entry.location_key.token]

    def delete_all(self, location_key: LocationKey) -> int:
        with self._lock:
            ids = self._by_location.pop(location_key.token, [])
            for eid in ids:
                self._entries.pop(eid, None)
            return len(ids)

    def add_location(self, location_key: LocationKey) -> bool:
        with self._lock:
            if location_key in self._locations:
                return False
            self._locations.add(location_key)
            return True

    def list_locations(self) -> List[LocationKey]:
        with self._lock:
            return sorted(self._locations)

    def delete_location(self, location_key: LocationKey) -> bool:
        with self._lock:
            known = location_key in self._locations
            self._locations.discard(location_key)
            for eid in self._by_location.pop(location_key.token, []):
                self._entries.pop(eid, None)
            return known

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._by_location.clear()
            self._locations.clear()
