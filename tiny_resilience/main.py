from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Optional

from tiny_resilience.application.cache import BoundedKeyValueCache
from tiny_resilience.application.fetcher import ResilientFetcher, RetryPolicy
from tiny_resilience.application.ports import BackingStorePort, TransportPort
from tiny_resilience.infrastructure.config import Settings, load_settings
from tiny_resilience.infrastructure.stores.file_store import FileBackingStore
from tiny_resilience.infrastructure.stores.memory_store import MemoryBackingStore
from tiny_resilience.infrastructure.stores.sqlite_store import SqliteBackingStore
from tiny_resilience.transport.http.client import AiohttpTransport

logger = logging.getLogger(__name__)

SQLITE_FILENAME = "cache.sqlite3"


def build_backing_store(settings: Settings) -> BackingStorePort:
    if settings.backend == "memory":
        return MemoryBackingStore()
    if settings.backend == "sqlite":
        return SqliteBackingStore(Path(settings.storage_path).expanduser() / SQLITE_FILENAME)
    return FileBackingStore(settings.storage_path)


def build_cache(settings: Optional[Settings] = None, store: Optional[BackingStorePort] = None) -> BoundedKeyValueCache:
    settings = settings or load_settings()
    store = store if store is not None else build_backing_store(settings)
    cache = BoundedKeyValueCache(store, max_storage_bytes=settings.max_storage_bytes)
    logger.debug(
        "Cache ready (backend=%s, budget=%d bytes, %d entries)",
        settings.backend,
        settings.max_storage_bytes,
        len(cache.index),
    )
    return cache


def build_fetcher(
    settings: Optional[Settings] = None,
    transport: Optional[TransportPort] = None,
    rng: Optional[random.Random] = None,
) -> ResilientFetcher:
    settings = settings or load_settings()
    if transport is None:
        transport = AiohttpTransport(timeout_seconds=settings.timeout_seconds, log_requests=settings.log_requests)
    policy = RetryPolicy(
        max_retries=settings.max_retries,
        base_delay_ms=settings.base_delay_ms,
        max_delay_ms=settings.max_delay_ms,
    )
    return ResilientFetcher(transport, policy, rng=rng, base_url=settings.base_url)

