"""
Signature dedup cache.

Tracks which transaction signatures have already been processed so repeat
refreshes skip them. The cache is bounded; when full, entries are evicted in
bulk by an importance score instead of strict LRU. A false miss only costs a
redundant fetch because the reconciler deduplicates records again.
"""

import logging
import time
from typing import Callable, Dict, Optional

from .models import CacheEntry

logger = logging.getLogger(__name__)

EVICTION_FRACTION = 0.25


class SignatureCache:
    """Bounded map from signature key to processing bookkeeping."""

    def __init__(self, max_size: int = 10000, clock: Callable[[], float] = time.time):
        """
        Initialize the cache.

        Args:
            max_size: Entry count that triggers eviction on the next insert
            clock: Time source returning seconds (injectable for tests)
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get_entry(self, signature: str) -> Optional[CacheEntry]:
        """Read an entry without touching it."""
        return self._entries.get(signature)

    def has(self, signature: str) -> bool:
        """
        Check membership, updating access bookkeeping on a hit.

        Args:
            signature: Signature key

        Returns:
            True if the signature was processed before
        """
        entry = self._entries.get(signature)
        if entry is None:
            return False
        entry.access_count += 1
        entry.last_access = self._clock()
        return True

    def record(self, signature: str, timestamp: Optional[float] = None):
        """
        Insert or refresh an entry.

        Args:
            signature: Signature key
            timestamp: First-seen time for new entries (defaults to now)
        """
        now = self._clock()
        entry = self._entries.get(signature)
        if entry is not None:
            entry.access_count += 1
            entry.last_access = now
            return

        if len(self._entries) >= self.max_size:
            self.evict()

        first_seen = timestamp if timestamp is not None else now
        self._entries[signature] = CacheEntry(
            signature=signature,
            first_seen=first_seen,
            access_count=1,
            last_access=now,
        )

    def evict(self) -> int:
        """
        Drop the least important quarter of the cache.

        Importance is access_count * (now - last_access). Entries are ranked
        descending and the lowest-scoring tail is removed.

        Returns:
            Number of entries removed
        """
        if not self._entries:
            return 0

        now = self._clock()
        ranked = sorted(
            self._entries.values(),
            key=lambda e: e.importance(now),
            reverse=True,
        )
        drop_count = max(1, int(len(ranked) * EVICTION_FRACTION))
        for entry in ranked[-drop_count:]:
            del self._entries[entry.signature]

        self.evictions += drop_count
        logger.debug(f"Evicted {drop_count} signatures, {len(self._entries)} remain")
        return drop_count

    def clear(self):
        """Forget every tracked signature."""
        self._entries.clear()
