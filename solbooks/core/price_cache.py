"""
Time- and size-boxed cache of unit prices.

The whole map is replaced on every refresh; it is never patched per symbol.
"""

import logging
import time
from decimal import Decimal
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

# USD unit prices used when the oracle is unreachable or returns junk.
STATIC_FALLBACK_RATES: Dict[str, Decimal] = {
    "SOL": Decimal("100"),
    "USDC": Decimal("1"),
    "USDT": Decimal("1"),
    "mSOL": Decimal("98"),
    "ETH": Decimal("2500"),
    "BTC": Decimal("45000"),
    "BONK": Decimal("0.000025"),
    "JUP": Decimal("0.75"),
}


class PriceCache:
    """Holds the latest symbol -> USD price map and its refresh time."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_size: int = 100,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._rates: Dict[str, Decimal] = {}
        self.last_refresh: Optional[float] = None
        self.entry_count = 0

    def _reset_if_oversized(self):
        if self.entry_count > self.max_size:
            logger.warning(
                f"Price cache holds {self.entry_count} entries (max {self.max_size}), clearing"
            )
            self._rates = {}
            self.entry_count = 0
            self.last_refresh = None

    def is_fresh(self) -> bool:
        """True if the cache is non-empty and younger than the TTL."""
        self._reset_if_oversized()
        if not self._rates or self.last_refresh is None:
            return False
        return (self._clock() - self.last_refresh) < self.ttl_seconds

    def get(self) -> Dict[str, Decimal]:
        """Return a copy of the cached rates (empty if reset)."""
        self._reset_if_oversized()
        return dict(self._rates)

    def replace(self, rates: Dict[str, Decimal]):
        """Swap in a new rate map wholesale and stamp the refresh time."""
        self._rates = dict(rates)
        self.entry_count = len(self._rates)
        self.last_refresh = self._clock()

    def clear(self):
        self._rates = {}
        self.entry_count = 0
        self.last_refresh = None
