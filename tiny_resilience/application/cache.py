from __future__ import annotations

import json
import logging
import math
import time
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from tiny_resilience.domain.constraints import DEFAULT_MAX_STORAGE_BYTES, METADATA_KEY
from tiny_resilience.domain.entries import CacheEntry, CacheIndex, StorageInfo
from tiny_resilience.domain.errors import BackingStoreError, CorruptEntryError, QuotaExceededError
from tiny_resilience.domain.validation import validate_key

from .ports import BackingStorePort

logger = logging.getLogger(__name__)

STORE_ERRORS = (BackingStoreError, OSError)


class BoundedKeyValueCache:
    """Persistent key/value cache with a global byte budget and LRU eviction.

    Values are stored as UTF-8 JSON in the backing store; the index of sizes
    and access times is persisted beside them under ``METADATA_KEY``. Internal
    failures never reach the caller: a failed write turns ``set`` into a
    no-op returning ``False`` and an unreadable entry reads as a miss.
    """

    def __init__(
        self,
        store: BackingStorePort,
        max_storage_bytes: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        resolved_max = DEFAULT_MAX_STORAGE_BYTES if max_storage_bytes is None else max_storage_bytes
        if resolved_max < 1:
            raise ValueError(f"max_storage_bytes must be >= 1, got {resolved_max}")

        self.store = store
        self.max_storage_bytes = resolved_max
        self.lock = Lock()
        self._clock = clock or time.time

        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.corrupt_removals = 0
        self.forced_cleanups = 0

        self.index = self._load_index()
        self._last_stamp = self.index.newest_timestamp()

        if self.index.current_size > self.max_storage_bytes:
            logger.info(
                "Persisted cache holds %d bytes over a %d byte budget; evicting",
                self.index.current_size,
                self.max_storage_bytes,
            )
            self._evict_to_fit(0)
            self._persist_index()

    def _load_index(self) -> CacheIndex:
        try:
            raw = self.store.read(METADATA_KEY)
        except STORE_ERRORS as exc:
            logger.warning("Could not read cache index, starting empty: %s", exc)
            return CacheIndex()
        return CacheIndex.from_json(raw)

    def _persist_index(self) -> None:
        try:
            self.store.write(METADATA_KEY, self.index.to_json().encode("utf-8"))
        except STORE_ERRORS as exc:
            logger.warning("Failed to persist cache index: %s", exc)

    def _next_stamp(self) -> float:
        now = self._clock()
        if now <= self._last_stamp:
            now = math.nextafter(self._last_stamp, math.inf)
        self._last_stamp = now
        return now

    @staticmethod
    def _serialize(value: Any) -> bytes:
        return json.dumps(value, ensure_ascii=False).encode("utf-8")

    @staticmethod
    def _deserialize(key: str, raw: bytes) -> Any:
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise CorruptEntryError(key, str(exc)) from exc

    def _delete_payload(self, key: str) -> None:
        try:
            self.store.delete(key)
        except STORE_ERRORS as exc:
            logger.warning("Failed to delete payload for %r: %s", key, exc)

    def _drop(self, key: str) -> Optional[CacheEntry]:
        entry = self.index.pop(key)
        self._delete_payload(key)
        return entry

    def _evict_to_fit(self, required_bytes: int, exclude: Optional[str] = None) -> bool:
        """Evict least recently used entries until ``required_bytes`` more fit."""
        for entry in self.index.oldest_first():
            if self.index.current_size + required_bytes <= self.max_storage_bytes:
                break
            if entry.key == exclude:
                continue
            self._drop(entry.key)
            self.evictions += 1
            logger.debug(
                "Evicted %r (%d bytes)", entry.key, entry.size_bytes, extra={"cache_key": entry.key}
            )
        return self.index.current_size + required_bytes <= self.max_storage_bytes

    def _force_cleanup(self) -> None:
        victims = self.index.oldest_first()
        victims = victims[: len(victims) // 2]
        for entry in victims:
            self._drop(entry.key)
        self.forced_cleanups += 1
        self._persist_index()
        logger.warning("Forced cleanup removed %d oldest entries", len(victims))

    def _write_entry(self, key: str, payload: bytes) -> None:
        existing = self.index.get(key)
        size = len(payload)
        growth = size - (existing.size_bytes if existing is not None else 0)

        if not self._evict_to_fit(growth, exclude=key):
            raise QuotaExceededError(
                f"{size} bytes for {key!r} do not fit in a {self.max_storage_bytes} byte budget"
            )

        self.store.write(key, payload)
        self.index.put(CacheEntry(key=key, size_bytes=size, last_access=self._next_stamp()))
        self._persist_index()

    def set(self, key: str, value: Any) -> bool:
        validate_key(key)
        try:
            payload = self._serialize(value)
        except (TypeError, ValueError) as exc:
            logger.warning("Value for %r is not serializable: %s", key, exc)
            return False
        if json.loads(payload.decode("utf-8")) != value:
            logger.warning("Value for %r does not survive a JSON round trip", key, extra={"cache_key": key})
            return False

        with self.lock:
            try:
                self._write_entry(key, payload)
            except STORE_ERRORS as exc:
                logger.warning("Storing %r failed: %s", key, exc)
                self._force_cleanup()
                return False
            return True

    def get(self, key: str, default: Any = None) -> Any:
        validate_key(key)
        with self.lock:
            entry = self.index.get(key)
            if entry is None:
                self.misses += 1
                return default

            try:
                raw = self.store.read(key)
                if raw is None:
                    raise CorruptEntryError(key, "payload missing from backing store")
                value = self._deserialize(key, raw)
            except (CorruptEntryError, *STORE_ERRORS) as exc:
                logger.warning("Dropping unreadable entry %r: %s", key, exc, extra={"cache_key": key})
                self._drop(key)
                self._persist_index()
                self.corrupt_removals += 1
                self.misses += 1
                return default

            entry.last_access = self._next_stamp()
            self._persist_index()
            self.hits += 1
            return value

    def remove(self, key: str) -> None:
        validate_key(key)
        with self.lock:
            entry = self._drop(key)
            if entry is not None:
                self._persist_index()

    def clear(self) -> None:
        with self.lock:
            for key in list(self.index):
                self._delete_payload(key)
            self.index.clear()
            self._delete_payload(METADATA_KEY)
            self.hits = 0
            self.misses = 0
            self.evictions = 0
            self.corrupt_removals = 0
            self.forced_cleanups = 0

    def contains(self, key: str) -> bool:
        validate_key(key)
        with self.lock:
            return key in self.index

    def keys(self) -> List[str]:
        """Tracked keys, least recently used first. Does not touch timestamps."""
        with self.lock:
            return [e.key for e in self.index.oldest_first()]

    def get_storage_info(self) -> StorageInfo:
        with self.lock:
            return StorageInfo(
                current_size=self.index.current_size,
                max_size=self.max_storage_bytes,
                usage_percentage=(self.index.current_size / self.max_storage_bytes) * 100,
                item_count=len(self.index),
            )

    def stats(self) -> Dict[str, Any]:
        info = self.get_storage_info()
        with self.lock:
            return {
                "size": info.item_count,
                "current_size_bytes": info.current_size,
                "max_size_bytes": info.max_size,
                "usage_percentage": round(info.usage_percentage, 2),
                "hits": self.hits,
                "misses": self.misses,
                "hit_rate": self.hits / (self.hits + self.misses) if (self.hits + self.misses) > 0 else 0,
                "evictions": self.evictions,
                "corrupt_removals": self.corrupt_removals,
                "forced_cleanups": self.forced_cleanups,
            }
