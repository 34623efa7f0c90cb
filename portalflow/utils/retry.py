from __future__ import annotations

import random


def compute_backoff(
    attempt: int,
    initial_delay: float = 0.5,
    multiplier: float = 2.0,
    max_delay: float = 30.0,
    jitter: float = 0.1,
) -> float:
    """Compute exponential backoff with jitter for a 1-based attempt number.

    Jitter comes from a generator seeded with the attempt number, so equal
    inputs always produce the same delay.
    """
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    delay = min(max_delay, initial_delay * multiplier ** (attempt - 1))
    if jitter > 0:
        delay += random.Random(attempt).uniform(0, jitter)
    return delay
