"""Binary exponential backoff with full jitter for polling waiters.

The delay window doubles with every collision and is capped at ten times the
initial wait:

    max_delay  = min(2 ** collision_count * initial, initial * 10)
    next_delay = floor(random() * max_delay)        # [0, max_delay)
"""

import random
from typing import Optional

BACKOFF_CAP_FACTOR = 10


def max_backoff_delay(collision_count: int, initial_retry_wait_ms: int) -> int:
    """Upper bound (exclusive) of the delay after ``collision_count`` collisions."""
    if collision_count < 0:
        raise ValueError("collision_count must not be negative")
    cap = initial_retry_wait_ms * BACKOFF_CAP_FACTOR
    # Past the cap the power only grows, so skip computing it.
    if collision_count >= cap.bit_length():
        return cap
    return min((2 ** collision_count) * initial_retry_wait_ms, cap)


def compute_backoff_delay(
    collision_count: int,
    initial_retry_wait_ms: int,
    rng: Optional[random.Random] = None,
) -> int:
    """Pick the next polling delay in milliseconds."""
    rng = rng or random
    max_delay = max_backoff_delay(collision_count, initial_retry_wait_ms)
    return int(rng.random() * max_delay)
