"""Shared protocol for cache entry storage backends."""

from typing import List, Optional, Protocol, Sequence

from photocache.errors import StoreError
from photocache.models import CacheEntry, LocationKey


class EntryStore(Protocol):
    """Protocol for entry storage backends.

    Backends raise ``StoreError`` when the underlying storage fails. Writes are
    expected to come from a single writer; backends still guard their own
    state so reads from other threads see consistent data.
    """

    def query(self, location_key: LocationKey) -> List[CacheEntry]:
        """Return the entries for a location in insertion order."""

    def get(self, entry_id: str) -> Optional[CacheEntry]:
        """Fetch one entry by id, returning None if it does not exist."""

    def insert_batch(self, location_key: LocationKey, entries: Sequence[CacheEntry]) -> None:
        """Persist all entries for a location, or none of them."""

    def update_payload(self, entry_id: str, payload: bytes) -> bool:
        """Set the payload of a pending entry; False if the entry is gone."""

    def delete_entry(self, entry_id: str) -> None:
        """Delete an entry without raising if it is absent."""

    def delete_all(self, location_key: LocationKey) -> int:
        """Delete every entry for a location, returning how many were removed."""

    def add_location(self, location_key: LocationKey) -> bool:
        """Save a location; False if it was already saved."""

    def list_locations(self) -> List[LocationKey]:
        """Return every saved location, ordered by latitude then longitude."""

    def delete_location(self, location_key: LocationKey) -> bool:
        """Forget a saved location and delete its entries; False if it was unknown."""

    def clear(self) -> None:
        """Clear all stored entries and locations."""


def check_batch(location_key: LocationKey, entries: Sequence[CacheEntry]) -> None:
    """Reject batches that mix locations or repeat ids before anything is written."""
    seen = set()
    for entry in entries:
        if entry.location_key != location_key:
            raise StoreError(f"Entry {entry.id} belongs to {entry.location_key}, not {location_key}")
        if entry.id in seen:
            raise StoreError(f"Duplicate entry id in batch: {entry.id}")
        seen.add(entry.id)
