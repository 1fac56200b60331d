"""
Helpers shared by the native and token fetchers.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional


def cache_key(signature: str, mint: str) -> str:
    """Signature cache key, scoped by asset so native and token passes stay independent."""
    return f"{signature}:{mint}"


def block_timestamp(block_time: Optional[int]) -> datetime:
    """Block time as an aware datetime, or now when the node omitted it."""
    if block_time is None:
        return datetime.now(timezone.utc)
    return datetime.fromtimestamp(block_time, tz=timezone.utc)


def batched(items: List[Any], size: int) -> List[List[Any]]:
    """Split items into consecutive chunks of at most ``size`` (minimum 1)."""
    size = max(1, int(size))
    return [items[i:i + size] for i in range(0, len(items), size)]
