from __future__ import annotations

from threading import Lock
from typing import Dict, Optional

from tiny_resilience.domain.errors import QuotaExceededError


class MemoryBackingStore:
    """Dict-backed store.

    ``quota_bytes`` emulates a host storage quota (as browsers impose on
    local storage): a write that would push the total stored bytes past it
    raises ``QuotaExceededError`` and leaves the previous value untouched.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        if quota_bytes is not None and quota_bytes < 0:
            raise ValueError(f"quota_bytes must be >= 0, got {quota_bytes}")
        self.quota_bytes = quota_bytes
        self.records: Dict[str, bytes] = {}
        self._lock = Lock()

    @property
    def used_bytes(self) -> int:
        with self._lock:
            return sum(len(v) for v in self.records.values())

    def read(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self.records.get(key)

    def write(self, key: str, data: bytes) -> None:
        with self._lock:
            if self.quota_bytes is not None:
                used = sum(len(v) for k, v in self.records.items() if k != key)
                if used + len(data) > self.quota_bytes:
                    raise QuotaExceededError(
                        f"writing {len(data)} bytes to {key!r} exceeds quota of {self.quota_bytes} bytes"
                    )
            self.records[key] = bytes(data)

    def delete(self, key: str) -> None:
        with self._lock:
            self.records.pop(key, None)
