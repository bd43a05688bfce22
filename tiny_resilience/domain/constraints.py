from __future__ import annotations

MAX_KEY_LENGTH = 256
METADATA_KEY = "__tiny_resilience_lru_metadata"

DEFAULT_MAX_STORAGE_BYTES = 5 * 1024 * 1024

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 10000

JITTER_MIN = 0.8
JITTER_MAX = 1.2

# Retrying cannot change the outcome for these.
TERMINAL_STATUS_CODES = frozenset({400, 401, 403, 404, 405, 422})
