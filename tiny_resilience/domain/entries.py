from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    size_bytes: int
    last_access: float


def _entry_from_record(key: str, item: Dict[str, Any]) -> CacheEntry:
    size = item["size"]
    timestamp = item["timestamp"]
    if isinstance(size, bool) or not isinstance(size, int) or size < 0:
        raise ValueError(f"bad size {size!r} for {key!r}")
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)) or not math.isfinite(timestamp):
        raise ValueError(f"bad timestamp {timestamp!r} for {key!r}")
    return CacheEntry(key=key, size_bytes=size, last_access=float(timestamp))


class CacheIndex:
    """Key to entry metadata, kept apart from the payloads themselves.

    Eviction runs entirely off the index so it never has to read payloads
    from the backing store.
    """

    def __init__(self, entries: Optional[Dict[str, CacheEntry]] = None):
        self._entries: Dict[str, CacheEntry] = dict(entries or {})
        self.current_size = sum(e.size_bytes for e in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def put(self, entry: CacheEntry) -> Optional[CacheEntry]:
        old = self._entries.get(entry.key)
        if old is not None:
            self.current_size -= old.size_bytes
        self._entries[entry.key] = entry
        self.current_size += entry.size_bytes
        return old

    def pop(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self.current_size -= entry.size_bytes
        return entry

    def clear(self) -> None:
        self._entries.clear()
        self.current_size = 0

    def oldest_first(self) -> List[CacheEntry]:
        return sorted(self._entries.values(), key=lambda e: e.last_access)

    def newest_timestamp(self) -> float:
        return max((e.last_access for e in self._entries.values()), default=0.0)

    def to_json(self) -> str:
        payload = {
            "currentSize": self.current_size,
            "cacheItems": {
                key: {"size": e.size_bytes, "timestamp": e.last_access}
                for key, e in self._entries.items()
            },
        }
        return json.dumps(payload, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: Optional[bytes]) -> "CacheIndex":
        """Rebuild an index from its persisted record.

        Anything unreadable yields an empty index. The stored ``currentSize``
        is ignored in favour of the sum over the surviving entries.
        """
        if raw is None:
            return cls()
        try:
            payload = json.loads(raw.decode("utf-8"))
            items = payload["cacheItems"]
            entries = {str(key): _entry_from_record(str(key), item) for key, item in items.items()}
        except (UnicodeDecodeError, ValueError, TypeError, KeyError, AttributeError) as exc:
            logger.warning("Discarding unreadable cache index: %s", exc)
            return cls()
        return cls(entries)


@dataclass(frozen=True)
class StorageInfo:
    current_size: int
    max_size: int
    usage_percentage: float
    item_count: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "currentSize": self.current_size,
            "maxSize": self.max_size,
            "usagePercentage": self.usage_percentage,
            "itemCount": self.item_count,
        }


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable-failure"
    TERMINAL_FAILURE = "terminal-failure"


class FetchState(str, Enum):
    ATTEMPTING = "attempting"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    FAILED_TERMINAL = "failed-terminal"
    FAILED_EXHAUSTED = "failed-exhausted"


ALLOWED_TRANSITIONS: Dict[FetchState, Tuple[FetchState, ...]] = {
    FetchState.ATTEMPTING: (
        FetchState.SUCCEEDED,
        FetchState.FAILED_TERMINAL,
        FetchState.WAITING,
        FetchState.FAILED_EXHAUSTED,
    ),
    FetchState.WAITING: (FetchState.ATTEMPTING,),
}


@dataclass(frozen=True)
class RetryAttempt:
    attempt_number: int
    delay_ms: float
    outcome: AttemptOutcome
    status: Optional[int] = None


@dataclass(frozen=True)
class HttpRequest:
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    params: Dict[str, str] = field(default_factory=dict)
    json_body: Any = None
    data: Optional[bytes] = None
    response_type: str = "json"

    def __post_init__(self) -> None:
        if self.response_type not in ("json", "text", "bytes"):
            raise ValueError(f"response_type must be json, text or bytes, got {self.response_type!r}")


@dataclass(frozen=True)
class HttpResponse:
    status: int
    reason: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300
