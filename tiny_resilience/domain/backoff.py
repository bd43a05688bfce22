from __future__ import annotations

import random

from .constraints import JITTER_MAX, JITTER_MIN

# Past this many doublings the delay is taken to be capped.
MAX_DOUBLINGS = 64


def exponential_delay_ms(attempt: int, base_delay_ms: float, max_delay_ms: float) -> float:
    """Un-jittered delay after failed attempt ``attempt`` (0-based)."""
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")
    if attempt >= MAX_DOUBLINGS:
        return max_delay_ms
    return min(base_delay_ms * (2 ** attempt), max_delay_ms)


def backoff_delay_ms(
    attempt: int,
    base_delay_ms: float,
    max_delay_ms: float,
    rng: random.Random,
) -> float:
    return exponential_delay_ms(attempt, base_delay_ms, max_delay_ms) * rng.uniform(JITTER_MIN, JITTER_MAX)
