"""Lazy fetch-and-cache of remote photos for map locations.

``ResourceCache`` sits between an ``EntryStore`` and the two remote
collaborators (a ``LocatorFetcher`` and a ``PayloadDownloader``):

- ``entries_for`` saves the location and returns its stored entries, searching
  the remote service and persisting one pending placeholder per locator only
  when the location has no entries at all.
- ``resolve`` returns the bytes of one entry, downloading and persisting them
  the first time they are requested.

Remote work is coalesced: at most one search per location and one download per
entry is in flight, and concurrent callers await the same task. Blocking
network calls run in worker threads; store calls happen on the event loop,
which keeps the store single-writer.

Errors from collaborators are never swallowed and never retried here.
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import replace
from typing import Awaitable, Callable, Dict, Hashable, List, Optional, Union

from photocache import config
from photocache.errors import CollectionClearedError, EntryNotFoundError, FetchError
from photocache.models import CacheEntry, LocationKey
from photocache.sources.base import LocatorFetcher, PayloadDownloader
from photocache.store.base import EntryStore
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="resource_cache")


class ResourceCache:
    """On-demand cache of remote photos keyed by location."""

    def __init__(self, store: EntryStore, fetcher: LocatorFetcher, downloader: PayloadDownloader) -> None:
        self.store = store
        self.fetcher = fetcher
        self.downloader = downloader
        self._fetches: Dict[LocationKey, asyncio.Task] = {}
        self._downloads: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(cls, settings: config.Settings | None = None) -> "ResourceCache":
        """Assemble a cache from the configured store and Flickr clients."""
        from photocache.sources.downloader import HttpPayloadDownloader
        from photocache.sources.flickr_client import FlickrLocatorFetcher
        from photocache.store.factory import build_entry_store

        settings = settings or config.settings
        return cls(
            store=build_entry_store(settings),
            fetcher=FlickrLocatorFetcher.from_settings(settings),
            downloader=HttpPayloadDownloader.from_settings(settings),
        )

    # ------------------------------------------------------------------
    # In-flight registry
    # ------------------------------------------------------------------

    @staticmethod
    def _forget(registry: Dict, key: Hashable, task: asyncio.Task) -> None:
        """Drop a settled task from its registry unless it was replaced."""
        if registry.get(key) is task:
            del registry[key]
        if not task.cancelled():
            # Mark the exception retrieved; every awaiter still re-raises it.
            task.exception()

    async def _coalesce(self, registry: Dict, key: Hashable, operation: Callable[[], Awaitable]):
        """Run ``operation`` once per key, letting concurrent callers share it."""
        task = registry.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(operation())
            registry[key] = task
            task.add_done_callback(functools.partial(self._forget, registry, key))
        else:
            logger.debug(f"Joining in-flight operation for {key}")
        # Shielded so a cancelled caller does not cancel the shared work.
        return await asyncio.shield(task)

    def is_fetching(self, location_key: LocationKey) -> bool:
        return location_key in self._fetches

    def is_downloading(self, entry_id: str) -> bool:
        return entry_id in self._downloads

    async def _settle_fetch(self, location_key: LocationKey) -> None:
        """Wait until no search for ``location_key`` is in flight."""
        while True:
            pending = self._fetches.get(location_key)
            if pending is None or pending.done():
                return
            await asyncio.wait([pending])

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    async def entries_for(self, location_key: LocationKey) -> List[CacheEntry]:
        """Return the entries for a location, searching remotely on a miss.

        Stored entries are authoritative: once a location has any entries the
        remote service is not consulted again, even if some are still pending.
        Raises ``FetchError`` when the search fails; nothing is stored then.
        """
        entries = self.store.query(location_key)
        if entries:
            logger.debug(f"Cache hit for {location_key}: {len(entries)} entries")
            return entries
        self.add_location(location_key)
        entries = await self._coalesce(self._fetches, location_key, lambda: self._populate(location_key))
        return _copies(entries)

    async def _populate(self, location_key: LocationKey) -> List[CacheEntry]:
        """Search for locators and persist one pending entry per locator."""
        locators = await asyncio.to_thread(self.fetcher.fetch_locators, location_key)
        locators = [locator for locator in locators if locator]
        if not locators:
            logger.info("No photos found", extra={"location": location_key.token})
            return []

        entries = [
            CacheEntry(location_key=location_key, locator=locator, position=position)
            for position, locator in enumerate(locators)
        ]
        self.store.insert_batch(location_key, entries)
        logger.info(f"Stored {len(entries)} pending entries for {location_key}")
        return self.store.query(location_key)

    async def clear_and_refetch(self, location_key: LocationKey) -> List[CacheEntry]:
        """Delete every entry for a location, then search again.

        Deletion happens first, so a failed search leaves the location empty;
        that case raises ``CollectionClearedError`` chained to the cause.
        """
        await self._settle_fetch(location_key)
        self.add_location(location_key)
        removed = self.store.delete_all(location_key)
        logger.info(f"Cleared {removed} entries for {location_key}")
        entries = await self._coalesce(self._fetches, location_key, lambda: self._refetch(location_key))
        return _copies(entries)

    async def _refetch(self, location_key: LocationKey) -> List[CacheEntry]:
        try:
            return await self._populate(location_key)
        except FetchError as exc:
            logger.warning(
                "Refetch failed after clearing location",
                extra={"location": location_key.token, "error": str(exc)},
            )
            raise CollectionClearedError(exc) from exc

    def add_location(self, location_key: LocationKey) -> bool:
        """Save a pin without searching; False if it was already saved."""
        added = self.store.add_location(location_key)
        if added:
            logger.info(f"Saved location {location_key}")
        return added

    def list_locations(self) -> List[LocationKey]:
        """Return every saved pin, including pins with no photos."""
        return self.store.list_locations()

    async def delete_location(self, location_key: LocationKey) -> bool:
        """Forget a pin and its entries once any search for it has settled."""
        await self._settle_fetch(location_key)
        removed = self.store.delete_location(location_key)
        logger.info(f"Deleted location {location_key}")
        return removed

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def get_entry(self, entry_id: str) -> CacheEntry:
        """Return a stored entry or raise ``EntryNotFoundError``."""
        entry = self.store.get(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        return entry

    async def resolve(self, entry_id: str) -> bytes:
        """Return the payload of an entry, downloading it the first time.

        A failed download leaves the entry pending and raises ``NetworkError``
        or ``DecodeError``; the next call tries again.
        """
        entry = self.get_entry(entry_id)
        if entry.payload is not None:
            return entry.payload
        return await self._coalesce(self._downloads, entry_id, lambda: self._download(entry))

    async def _download(self, entry: CacheEntry) -> bytes:
        payload = await asyncio.to_thread(self.downloader.download, entry.locator)
        if not self.store.update_payload(entry.id, payload):
            # Deleted mid-download: the deletion stands.
            logger.info("Entry deleted during download; payload not stored", extra={"entry_id": entry.id})
            return payload
        logger.debug(f"Resolved entry {entry.id} ({len(payload)} bytes)")
        return payload

    async def prefetch(self, location_key: LocationKey,
                       limit: Optional[int] = None) -> Dict[str, Union[bytes, BaseException]]:
        """Resolve pending entries of a location concurrently.

        Returns a mapping of entry id to payload or to the error that entry
        failed with; one failure does not stop the others.
        """
        pending = [entry for entry in self.store.query(location_key) if entry.payload is None]
        if limit is not None:
            pending = pending[:limit]
        results = await asyncio.gather(*(self.resolve(entry.id) for entry in pending), return_exceptions=True)
        return {entry.id: result for entry, result in zip(pending, results)}

    def delete_entry(self, entry_id: str) -> None:
        """Remove one entry; unknown ids are ignored."""
        self.store.delete_entry(entry_id)
        logger.debug(f"Deleted entry {entry_id}")


def _copies(entries: List[CacheEntry]) -> List[CacheEntry]:
    """Give each caller of a shared search its own entries."""
    return [replace(entry) for entry in entries]
