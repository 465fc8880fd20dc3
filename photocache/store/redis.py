"""Redis-backed entry store.

Each entry is a hash under ``<prefix>entry:<id>``; each location keeps the
ordered ids of its entries in a list under ``<prefix>location:<lat,lon>``.
Saved pins are members of the set ``<prefix>locations``. Batch inserts and
bulk deletes run in a MULTI/EXEC pipeline; payload writes WATCH the entry so a
concurrent delete is never undone.
"""

from typing import List, Optional, Sequence

import redis

from photocache.errors import StoreError
from photocache.models import CacheEntry, LocationKey
from photocache.store.base import EntryStore, check_batch
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="store/redis_entry_store")


class RedisEntryStore(EntryStore):
    """Entries stored in Redis hashes, ordered per location by a list."""

    def __init__(self, client, prefix: str = "photocache:") -> None:
        """Initialize with a Redis client (bytes responses) and key prefix."""
        logger.debug("Initializing RedisEntryStore")
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "RedisEntryStore":
        """Connect to Redis and build the store, failing fast if unreachable."""
        client = redis.Redis.from_url(redis_url)
        try:
            client.ping()
        except redis.RedisError as exc:
            raise StoreError(f"Redis unavailable: {exc}") from exc
        logger.info("Using RedisEntryStore")
        return cls(client, **kwargs)

    def _entry_key(self, entry_id: str) -> str:
        return f"{self.prefix}entry:{entry_id}"

    def _location_key(self, location_key: LocationKey) -> str:
        return f"{self.prefix}location:{location_key.token}"

    @property
    def _locations_key(self) -> str:
        return f"{self.prefix}locations"

    @staticmethod
    def _text(value) -> str:
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    def _hash_to_entry(self, entry_id: str, data: dict) -> Optional[CacheEntry]:
        """Convert a stored hash to a CacheEntry, or None if it is incomplete."""
        if not data or b"locator" not in data:
            return None
        return CacheEntry(
            id=entry_id,
            location_key=LocationKey.parse(self._text(data[b"location"])),
            locator=self._text(data[b"locator"]),
            position=int(data[b"position"]),
            payload=data.get(b"payload"),
        )

    def query(self, location_key: LocationKey) -> List[CacheEntry]:
        try:
            ids = [self._text(raw) for raw in self.client.lrange(self._location_key(location_key), 0, -1)]
            if not ids:
                return []
            pipe = self.client.pipeline(transaction=False)
            for entry_id in ids:
                pipe.hgetall(self._entry_key(entry_id))
            hashes = pipe.execute()
        except redis.RedisError as exc:
            logger.error("Failed to read entries from Redis: %s", exc)
            raise StoreError(f"Could not read entries for {location_key}") from exc
        entries = []
        for entry_id, data in zip(ids, hashes):
            entry = self._hash_to_entry(entry_id, data)
            if entry is not None:
                entries.append(entry)
        return entries

    def get(self, entry_id: str) -> Optional[CacheEntry]:
        try:
            data = self.client.hgetall(self._entry_key(entry_id))
        except redis.RedisError as exc:
            logger.error("Failed to read entry from Redis: %s", exc)
            raise StoreError(f"Could not read entry {entry_id}") from exc
        return self._hash_to_entry(entry_id, data)

    def insert_batch(self, location_key: LocationKey, entries: Sequence[CacheEntry]) -> None:
        check_batch(location_key, entries)
        if not entries:
            return
        list_key = self._location_key(location_key)
        try:
            if self.client.exists(list_key):
                raise StoreError(f"Entries already exist for {location_key}")
            pipe = self.client.pipeline(transaction=True)
            for entry in entries:
                mapping = {
                    "location": location_key.token,
                    "position": entry.position,
                    "locator": entry.locator,
                }
                if entry.payload is not None:
                    mapping["payload"] = entry.payload
                pipe.hset(self._entry_key(entry.id), mapping=mapping)
            pipe.rpush(list_key, *[entry.id for entry in entries])
            pipe.execute()
        except redis.RedisError as exc:
            logger.error("Failed to write entry batch to Redis: %s", exc)
            raise StoreError(f"Could not store {len(entries)} entries for {location_key}") from exc

    def update_payload(self, entry_id: str, payload: bytes) -> bool:
        key = self._entry_key(entry_id)
        try:
            with self.client.pipeline() as pipe:
                while True:
                    try:
                        pipe.watch(key)
                        if not pipe.exists(key):
                            pipe.unwatch()
                            return False
                        pipe.multi()
                        pipe.hsetnx(key, "payload", bytes(payload))
                        pipe.execute()
                        break
                    except redis.WatchError:
                        logger.debug("Entry %s changed while storing payload; retrying", entry_id)
        except redis.RedisError as exc:
            logger.error("Failed to write payload to Redis: %s", exc)
            raise StoreError(f"Could not store payload for {entry_id}") from exc
        return True

    def delete_entry(self, entry_id: str) -> None:
        key = self._entry_key(entry_id)
        try:
            location = self.client.hget(key, "location")
            if location is None:
                return
            pipe = self.client.pipeline(transaction=True)
            pipe.delete(key)
            pipe.lrem(f"{self.prefix}location:{self._text(location)}", 0, entry_id)
            pipe.execute()
        except redis.RedisError as exc:
            logger.error("Failed to delete entry from Redis: %s", exc)
            raise StoreError(f"Could not delete entry {entry_id}") from exc

    def delete_all(self, location_key: LocationKey) -> int:
        list_key = self._location_key(location_key)
        try:
            ids = [self._text(raw) for raw in self.client.lrange(list_key, 0, -1)]
            pipe = self.client.pipeline(transaction=True)
            for entry_id in ids:
                pipe.delete(self._entry_key(entry_id))
            pipe.delete(list_key)
            pipe.execute()
        except redis.RedisError as exc:
            logger.error("Failed to delete entries from Redis: %s", exc)
            raise StoreError(f"Could not delete entries for {location_key}") from exc
        return len(ids)

    def add_location(self, location_key: LocationKey) -> bool:
        try:
            added = self.client.sadd(self._locations_key, location_key.token)
        except redis.RedisError as exc:
            logger.error("Failed to save location to Redis: %s", exc)
            raise StoreError(f"Could not save location {location_key}") from exc
        return bool(added)

    def list_locations(self) -> List[LocationKey]:
        try:
            members = self.client.smembers(self._locations_key)
        except redis.RedisError as exc:
            logger.error("Failed to list locations from Redis: %s", exc)
            raise StoreError("Could not read saved locations") from exc
        return sorted(LocationKey.parse(self._text(member)) for member in members)

    def delete_location(self, location_key: LocationKey) -> bool:
        list_key = self._location_key(location_key)
        try:
            ids = [self._text(raw) for raw in self.client.lrange(list_key, 0, -1)]
            pipe = self.client.pipeline(transaction=True)
            pipe.srem(self._locations_key, location_key.token)
            for entry_id in ids:
                pipe.delete(self._entry_key(entry_id))
            pipe.delete(list_key)
            removed = pipe.execute()[0]
        except redis.RedisError as exc:
            logger.error("Failed to delete location from Redis: %s", exc)
            raise StoreError(f"Could not delete location {location_key}") from exc
        return bool(removed)

    def clear(self) -> None:
        try:
            for key in self.client.scan_iter(f"{self.prefix}*"):
                self.client.delete(key)
        except redis.RedisError as exc:
            logger.error("Failed to clear entries from Redis: %s", exc)
            raise StoreError("Could not clear entries") from exc
