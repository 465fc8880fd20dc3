"""SQLAlchemy-backed entry store.

Entries live in a ``cache_entries`` table keyed by entry id, with the owning
location stored in its canonical ``"lat,lon"`` form. Saved pins live in a
``locations`` table keyed by the same form. Every mutation runs
inside its own transaction so a failed batch insert leaves nothing behind.
"""

from __future__ import annotations

import datetime as dt
from typing import List, Optional, Sequence

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from photocache.errors import StoreError
from photocache.models import CacheEntry, LocationKey
from photocache.store.base import EntryStore, check_batch
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="store/sql_entry_store")

metadata = MetaData()

cache_entries = Table(
    "cache_entries",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("location", String(64), nullable=False, index=True),
    Column("position", Integer, nullable=False),
    Column("locator", Text, nullable=False),
    Column("payload", LargeBinary, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("location", "position", name="uq_cache_entries_location_position"),
)

locations = Table(
    "locations",
    metadata,
    Column("location", String(64), primary_key=True),
    Column("latitude", Float, nullable=False),
    Column("longitude", Float, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


class SqlEntryStore(EntryStore):
    """Persist cache entries in any database SQLAlchemy can reach."""

    def __init__(self, engine: Engine, *, create_schema: bool = True) -> None:
        """Bind to an engine, creating the tables unless told otherwise."""
        self.engine = engine
        if create_schema:
            try:
                metadata.create_all(engine)
            except SQLAlchemyError as exc:
                raise StoreError(f"Could not create cache schema: {exc}") from exc

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "SqlEntryStore":
        """Create an engine from a URL and build the store."""
        engine_kwargs = {"future": True}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, or each checkout would see an empty database.
            engine_kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
        logger.info("Opening SQL entry store", extra={"db_url": mask_url(database_url)})
        engine = create_engine(database_url, **engine_kwargs)
        return cls(engine, **kwargs)

    @staticmethod
    def _row_to_entry(row) -> CacheEntry:
        """Convert a table row into a CacheEntry."""
        return CacheEntry(
            id=row.id,
            location_key=LocationKey.parse(row.location),
            locator=row.locator,
            position=row.position,
            payload=bytes(row.payload) if row.payload is not None else None,
        )

    def query(self, location_key: LocationKey) -> List[CacheEntry]:
        stmt = (
            select(cache_entries)
            .where(cache_entries.c.location == location_key.token)
            .order_by(cache_entries.c.position)
        )
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).all()
        except SQLAlchemyError as exc:
            logger.error("Failed to query entries: %s", exc)
            raise StoreError(f"Could not read entries for {location_key}") from exc
        return [self._row_to_entry(row) for row in rows]

    def get(self, entry_id: str) -> Optional[CacheEntry]:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(cache_entries).where(cache_entries.c.id == entry_id)).first()
        except SQLAlchemyError as exc:
            logger.error("Failed to read entry: %s", exc)
            raise StoreError(f"Could not read entry {entry_id}") from exc
        return self._row_to_entry(row) if row is not None else None

    def insert_batch(self, location_key: LocationKey, entries: Sequence[CacheEntry]) -> None:
        check_batch(location_key, entries)
        if not entries:
            return
        now = dt.datetime.now(dt.timezone.utc)
        rows = [
            {
                "id": entry.id,
                "location": location_key.token,
                "position": entry.position,
                "locator": entry.locator,
                "payload": entry.payload,
                "created_at": now,
            }
            for entry in entries
        ]
        count_stmt = (
            select(func.count())
            .select_from(cache_entries)
            .where(cache_entries.c.location == location_key.token)
        )
        try:
            with self.engine.begin() as conn:
                if conn.execute(count_stmt).scalar_one():
                    raise StoreError(f"Entries already exist for {location_key}")
                conn.execute(insert(cache_entries), rows)
        except SQLAlchemyError as exc:
            logger.error("Failed to insert entry batch: %s", exc)
            raise StoreError(f"Could not store {len(rows)} entries for {location_key}") from exc

    def update_payload(self, entry_id: str, payload: bytes) -> bool:
        try:
            with self.engine.begin() as conn:
                exists = conn.execute(
                    select(cache_entries.c.id).where(cache_entries.c.id == entry_id)
                ).first()
                if exists is None:
                    return False
                conn.execute(
                    update(cache_entries)
                    .where(cache_entries.c.id == entry_id)
                    .where(cache_entries.c.payload.is_(None))
                    .values(payload=bytes(payload))
                )
        except SQLAlchemyError as exc:
            logger.error("Failed to store payload: %s", exc)
            raise StoreError(f"Could not store payload for {entry_id}") from exc
        return True

    def delete_entry(self, entry_id: str) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(cache_entries).where(cache_entries.c.id == entry_id))
        except SQLAlchemyError as exc:
            logger.error("Failed to delete entry: %s", exc)
            raise StoreError(f"Could not delete entry {entry_id}") from exc

    def delete_all(self, location_key: LocationKey) -> int:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(delete(cache_entries).where(cache_entries.c.location == location_key.token))
        except SQLAlchemyError as exc:
            logger.error("Failed to delete entries: %s", exc)
            raise StoreError(f"Could not delete entries for {location_key}") from exc
        return result.rowcount or 0

    def add_location(self, location_key: LocationKey) -> bool:
        try:
            with self.engine.begin() as conn:
                known = conn.execute(
                    select(locations.c.location).where(locations.c.location == location_key.token)
                ).first()
                if known is not None:
                    return False
                conn.execute(
                    insert(locations).values(
                        location=location_key.token,
                        latitude=location_key.latitude,
                        longitude=location_key.longitude,
                        created_at=dt.datetime.now(dt.timezone.utc),
                    )
                )
        except SQLAlchemyError as exc:
            logger.error("Failed to save location: %s", exc)
            raise StoreError(f"Could not save location {location_key}") from exc
        return True

    def list_locations(self) -> List[LocationKey]:
        stmt = select(locations.c.latitude, locations.c.longitude).order_by(
            locations.c.latitude, locations.c.longitude
        )
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).all()
        except SQLAlchemyError as exc:
            logger.error("Failed to list locations: %s", exc)
            raise StoreError("Could not read saved locations") from exc
        return [LocationKey(row.latitude, row.longitude) for row in rows]

    def delete_location(self, location_key: LocationKey) -> bool:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(cache_entries).where(cache_entries.c.location == location_key.token))
                result = conn.execute(delete(locations).where(locations.c.location == location_key.token))
        except SQLAlchemyError as exc:
            logger.error("Failed to delete location: %s", exc)
            raise StoreError(f"Could not delete location {location_key}") from exc
        return bool(result.rowcount)

    def clear(self) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(cache_entries))
                conn.execute(delete(locations))
        except SQLAlchemyError as exc:
            logger.error("Failed to clear entries: %s", exc)
            raise StoreError("Could not clear entries") from exc
