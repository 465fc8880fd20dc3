import fnmatch
import unittest

import redis

from photocache.errors import StoreError
from photocache.models import CacheEntry, LocationKey
from photocache.store.memory import InMemoryEntryStore
from photocache.store.redis import RedisEntryStore
from photocache.store.sql import SqlEntryStore

LONDON = LocationKey(51.5, -0.12)
PARIS = LocationKey(48.8566, 2.3522)


def _batch(key, *locators):
    return [CacheEntry(location_key=key, locator=loc, position=i) for i, loc in enumerate(locators)]


def _encode(value):
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


class FakeRedis:
    """Just enough of redis.Redis (bytes responses) for RedisEntryStore."""

    def __init__(self):
        self.hashes = {}
        self.lists = {}
        self.sets = {}
        self.versions = {}
        self.fail_next_execute = False
        self.before_exec = None

    def _key(self, name):
        return name.decode("utf-8") if isinstance(name, bytes) else name

    def _touch(self, name):
        name = self._key(name)
        self.versions[name] = self.versions.get(name, 0) + 1

    def hset(self, name, mapping):
        self._touch(name)
        self.hashes.setdefault(self._key(name), {}).update({_encode(k): _encode(v) for k, v in mapping.items()})

    def hgetall(self, name):
        return dict(self.hashes.get(self._key(name), {}))

    def hget(self, name, field):
        return self.hashes.get(self._key(name), {}).get(_encode(field))

    def hsetnx(self, name, field, value):
        data = self.hashes.setdefault(self._key(name), {})
        if _encode(field) in data:
            return 0
        self._touch(name)
        data[_encode(field)] = _encode(value)
        return 1

    def exists(self, name):
        name = self._key(name)
        return int(name in self.hashes or name in self.lists or name in self.sets)

    def rpush(self, name, *values):
        self._touch(name)
        self.lists.setdefault(self._key(name), []).extend(_encode(v) for v in values)

    def lrange(self, name, start, end):
        items = self.lists.get(self._key(name), [])
        return list(items[start:] if end == -1 else items[start:end + 1])

    def lrem(self, name, count, value):
        name = self._key(name)
        self._touch(name)
        items = [v for v in self.lists.get(name, []) if v != _encode(value)]
        if items:
            self.lists[name] = items
        else:
            self.lists.pop(name, None)

    def sadd(self, name, *values):
        members = self.sets.setdefault(self._key(name), set())
        added = {_encode(v) for v in values} - members
        members.update(added)
        if added:
            self._touch(name)
        return len(added)

    def srem(self, name, *values):
        name = self._key(name)
        members = self.sets.get(name, set())
        removed = {_encode(v) for v in values} & members
        members.difference_update(removed)
        if not members:
            self.sets.pop(name, None)
        if removed:
            self._touch(name)
        return len(removed)

    def smembers(self, name):
        return set(self.sets.get(self._key(name), set()))

    def delete(self, *names):
        for name in names:
            self._touch(name)
            self.hashes.pop(self._key(name), None)
            self.lists.pop(self._key(name), None)
            self.sets.pop(self._key(name), None)

    def scan_iter(self, pattern):
        keys = list(self.hashes) + list(self.lists) + list(self.sets)
        return [k for k in keys if fnmatch.fnmatch(k, pattern)]

    def pipeline(self, transaction=True):
        return FakePipeline(self)


class FakePipeline:
    """Queues commands; after watch() and before multi() they run immediately."""

    def __init__(self, client):
        self.client = client
        self.commands = []
        self.watched = {}
        self.immediate = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.reset()

    def reset(self):
        self.commands = []
        self.watched = {}
        self.immediate = False

    def watch(self, *names):
        for name in names:
            name = self.client._key(name)
            self.watched[name] = self.client.versions.get(name, 0)
        self.immediate = True

    def unwatch(self):
        self.watched = {}
        self.immediate = False

    def multi(self):
        self.immediate = False

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            if self.immediate:
                return getattr(self.client, name)(*args, **kwargs)
            self.commands.append((name, args, kwargs))
            return self
        return queue

    def execute(self):
        if self.client.before_exec is not None:
            hook, self.client.before_exec = self.client.before_exec, None
            hook()
        if self.client.fail_next_execute:
            self.client.fail_next_execute = False
            self.reset()
            raise redis.ResponseError("EXECABORT Transaction discarded")
        changed = any(self.client.versions.get(name, 0) != version for name, version in self.watched.items())
        if changed:
            self.reset()
            raise redis.WatchError("Watched variable changed.")
        results = [getattr(self.client, name)(*args, **kwargs) for name, args, kwargs in self.commands]
        self.reset()
        return results


class EntryStoreContract:
    """Behaviour every EntryStore backend must share."""

    def make_store(self):
        raise NotImplementedError

    def setUp(self):
        self.store = self.make_store()

    def test_query_returns_insertion_order(self):
        batch = _batch(LONDON, "b.jpg", "a.jpg", "c.jpg")
        self.store.insert_batch(LONDON, batch)
        stored = self.store.query(LONDON)
        self.assertEqual([e.locator for e in stored], ["b.jpg", "a.jpg", "c.jpg"])
        self.assertEqual([e.id for e in stored], [e.id for e in batch])
        self.assertTrue(all(e.payload is None for e in stored))

    def test_query_unknown_location_is_empty(self):
        self.assertEqual(self.store.query(PARIS), [])

    def test_locations_are_isolated(self):
        self.store.insert_batch(LONDON, _batch(LONDON, "a.jpg"))
        self.store.insert_batch(PARIS, _batch(PARIS, "p.jpg"))
        self.assertEqual([e.locator for e in self.store.query(PARIS)], ["p.jpg"])

    def test_get_returns_entry_or_none(self):
        batch = _batch(LONDON, "a.jpg")
        self.store.insert_batch(LONDON, batch)
        entry = self.store.get(batch[0].id)
        self.assertEqual(entry.locator, "a.jpg")
        self.assertEqual(entry.location_key, LONDON)
        self.assertIsNone(self.store.get("missing"))

    def test_update_payload_resolves_once(self):
        batch = _batch(LONDON, "a.jpg")
        self.store.insert_batch(LONDON, batch)
        self.assertTrue(self.store.update_payload(batch[0].id, b"\xff\xd8"))
        self.assertTrue(self.store.update_payload(batch[0].id, b"other"))
        self.assertEqual(self.store.get(batch[0].id).payload, b"\xff\xd8")

    def test_update_payload_for_missing_entry_is_noop(self):
        self.assertFalse(self.store.update_payload("missing", b"x"))
        self.assertIsNone(self.store.get("missing"))

    def test_delete_entry_is_idempotent(self):
        batch = _batch(LONDON, "a.jpg", "b.jpg")
        self.store.insert_batch(LONDON, batch)
        self.store.delete_entry(batch[0].id)
        self.store.delete_entry(batch[0].id)
        self.store.delete_entry("never-existed")
        self.assertEqual([e.locator for e in self.store.query(LONDON)], ["b.jpg"])

    def test_delete_all_removes_location(self):
        self.store.insert_batch(LONDON, _batch(LONDON, "a.jpg", "b.jpg"))
        self.store.insert_batch(PARIS, _batch(PARIS, "p.jpg"))
        self.assertEqual(self.store.delete_all(LONDON), 2)
        self.assertEqual(self.store.query(LONDON), [])
        self.assertEqual(len(self.store.query(PARIS)), 1)
        self.assertEqual(self.store.delete_all(LONDON), 0)

    def test_batch_for_populated_location_rejected(self):
        self.store.insert_batch(LONDON, _batch(LONDON, "a.jpg"))
        with self.assertRaises(StoreError):
            self.store.insert_batch(LONDON, _batch(LONDON, "b.jpg"))
        self.assertEqual([e.locator for e in self.store.query(LONDON)], ["a.jpg"])

    def test_batch_with_foreign_entry_rejected(self):
        batch = _batch(LONDON, "a.jpg") + _batch(PARIS, "p.jpg")
        with self.assertRaises(StoreError):
            self.store.insert_batch(LONDON, batch)
        self.assertEqual(self.store.query(LONDON), [])

    def test_add_location_is_idempotent(self):
        self.assertTrue(self.store.add_location(LONDON))
        self.assertFalse(self.store.add_location(LocationKey(51.5, -0.12)))
        self.assertEqual(self.store.list_locations(), [LONDON])

    def test_list_locations_sorted_and_independent_of_entries(self):
        self.store.add_location(LONDON)
        self.store.add_location(PARIS)
        self.store.add_location(LocationKey(10, 20))
        self.assertEqual(self.store.list_locations(), [LocationKey(10, 20), PARIS, LONDON])
        self.store.insert_batch(LONDON, _batch(LONDON, "a.jpg"))
        self.store.delete_all(LONDON)
        self.assertIn(LONDON, self.store.list_locations())

    def test_delete_location_removes_its_entries(self):
        self.store.add_location(LONDON)
        self.store.add_location(PARIS)
        batch = _batch(LONDON, "a.jpg", "b.jpg")
        self.store.insert_batch(LONDON, batch)
        self.store.insert_batch(PARIS, _batch(PARIS, "p.jpg"))
        self.assertTrue(self.store.delete_location(LONDON))
        self.assertEqual(self.store.list_locations(), [PARIS])
        self.assertEqual(self.store.query(LONDON), [])
        self.assertIsNone(self.store.get(batch[0].id))
        self.assertEqual(len(self.store.query(PARIS)), 1)
        self.assertFalse(self.store.delete_location(LONDON))

    def test_clear(self):
        self.store.insert_batch(LONDON, _batch(LONDON, "a.jpg"))
        self.store.clear()
        self.assertEqual(self.store.query(LONDON), [])
        self.store.add_location(LONDON)
        self.store.clear()
        self.assertEqual(self.store.list_locations(), [])


class TestInMemoryEntryStore(EntryStoreContract, unittest.TestCase):
    def make_store(self):
        return InMemoryEntryStore()

    def test_returned_entries_are_copies(self):
        batch = _batch(LONDON, "a.jpg")
        self.store.insert_batch(LONDON, batch)
        self.store.query(LONDON)[0].payload = b"mutated"
        batch[0].payload = b"mutated"
        self.assertIsNone(self.store.get(batch[0].id).payload)

    def test_duplicate_id_leaves_nothing_behind(self):
        first = _batch(PARIS, "p.jpg")
        self.store.insert_batch(PARIS, first)
        batch = _batch(LONDON, "a.jpg", "b.jpg")
        batch[1].id = first[0].id
        with self.assertRaises(StoreError):
            self.store.insert_batch(LONDON, batch)
        self.assertEqual(self.store.query(LONDON), [])
        self.assertIsNone(self.store.get(batch[0].id))


class TestSqlEntryStore(EntryStoreContract, unittest.TestCase):
    def make_store(self):
        return SqlEntryStore.from_url("sqlite://")

    def test_failed_batch_rolls_back(self):
        batch = _batch(LONDON, "a.jpg", "b.jpg", "c.jpg")
        # Violates the (location, position) constraint on the third row.
        batch[2].position = 0
        with self.assertRaises(StoreError):
            self.store.insert_batch(LONDON, batch)
        self.assertEqual(self.store.query(LONDON), [])
        self.assertIsNone(self.store.get(batch[0].id))

    def test_payload_survives_new_store_on_same_engine(self):
        batch = _batch(LONDON, "a.jpg")
        self.store.insert_batch(LONDON, batch)
        self.store.update_payload(batch[0].id, b"\x00\x01")
        reopened = SqlEntryStore(self.store.engine)
        self.assertEqual(reopened.get(batch[0].id).payload, b"\x00\x01")


class TestRedisEntryStore(EntryStoreContract, unittest.TestCase):
    def make_store(self):
        self.client = FakeRedis()
        return RedisEntryStore(self.client, prefix="test:")

    def test_keys_use_prefix(self):
        batch = _batch(LONDON, "a.jpg")
        self.store.insert_batch(LONDON, batch)
        self.assertIn(f"test:entry:{batch[0].id}", self.client.hashes)
        self.assertIn("test:location:51.500000,-0.120000", self.client.lists)

    def test_aborted_transaction_leaves_nothing_behind(self):
        self.client.fail_next_execute = True
        with self.assertRaises(StoreError):
            self.store.insert_batch(LONDON, _batch(LONDON, "a.jpg", "b.jpg"))
        self.assertEqual(self.store.query(LONDON), [])
        self.assertEqual(self.client.hashes, {})

    def test_locations_kept_in_prefixed_set(self):
        self.store.add_location(LONDON)
        self.assertEqual(self.client.sets["test:locations"], {b"51.500000,-0.120000"})

    def test_payload_write_does_not_recreate_entry_deleted_concurrently(self):
        batch = _batch(LONDON, "a.jpg")
        self.store.insert_batch(LONDON, batch)
        entry_key = f"test:entry:{batch[0].id}"
        self.client.before_exec = lambda: self.client.delete(entry_key)
        self.assertFalse(self.store.update_payload(batch[0].id, b"\xff\xd8"))
        self.assertNotIn(entry_key, self.client.hashes)
        self.assertIsNone(self.store.get(batch[0].id))


if __name__ == "__main__":
    unittest.main()
