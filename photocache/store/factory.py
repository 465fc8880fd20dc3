"""Factory helpers for choosing an entry store at startup."""

from __future__ import annotations

from photocache import config
from photocache.store.base import EntryStore
from photocache.store.memory import InMemoryEntryStore
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="store/factory")


DEFAULT_BACKEND_NAME = "memory"


def build_entry_store(settings: config.Settings | None = None) -> EntryStore:
    """Instantiate the configured entry store."""
    settings = settings or config.settings
    backend = (settings.store_backend or DEFAULT_BACKEND_NAME).lower()

    if backend == "memory":
        logger.info("Using in-memory entry store")
        return InMemoryEntryStore()

    if backend == "sql":
        from .sql import SqlEntryStore

        db_url = settings.store_database_url
        if not db_url:
            raise ValueError("store_database_url must be set for the SQL entry store")
        logger.info("Using SQL entry store", extra={"db_url": mask_url(db_url)})
        return SqlEntryStore.from_url(db_url)

    if backend == "redis":
        from .redis import RedisEntryStore

        redis_url = settings.store_redis_url
        if not redis_url:
            raise ValueError("store_redis_url must be set for the Redis entry store")
        logger.info("Using Redis entry store", extra={"redis_url": mask_url(redis_url)})
        return RedisEntryStore.from_url(redis_url, prefix=settings.redis_prefix)

    raise ValueError(f"Unknown store backend '{backend}'")
