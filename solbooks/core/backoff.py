"""Exponential backoff with jitter, shared by every retrying component."""

import random


def calculate_backoff_delay(attempt: int, base: float, cap: float, jitter: float = 1.0) -> float:
    """
    Compute a retry delay.

    Args:
        attempt: Zero-based retry attempt (negative values count as 0)
        base: Delay for the first attempt in seconds
        cap: Upper bound for the exponential part in seconds
        jitter: Maximum random addition in seconds

    Returns:
        min(base * 2**attempt, cap) plus a uniform jitter in [0, jitter]
    """
    attempt = max(0, int(attempt))
    # Exponent clamped to avoid float overflow; the cap wins long before
    delay = min(base * (2 ** min(attempt, 64)), cap)
    return delay + random.uniform(0, max(0.0, jitter))
