"""
Serial address queue.

Wallet fetches are funnelled through a single FIFO drained one entry at a
time, paced by a depth-aware delay so bursts of wallets do not trip RPC rate
limits. Failed entries are retried with exponential backoff and dropped once
their retries run out.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Deque, List, Optional
from collections import deque

from .backoff import calculate_backoff_delay
from .log_redaction import redact
from .metrics import LedgerMetrics
from .models import QueueEntry, Record

logger = logging.getLogger(__name__)


class AddressQueue:
    """FIFO of per-address fetch tasks drained by a single worker."""

    def __init__(
        self,
        settings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        metrics: Optional[LedgerMetrics] = None,
    ):
        """
        Initialize the queue.

        Args:
            settings: RefreshSettings with queue delays, retries and size bound
            sleep: Awaitable sleep (injectable for tests)
            metrics: Optional metrics sink
        """
        self.settings = settings
        self.metrics = metrics
        self._sleep = sleep
        self._entries: Deque[QueueEntry] = deque()
        self._draining = False
        self.processed = 0
        self.failed = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def is_draining(self) -> bool:
        return self._draining

    def enqueue(self, address: str, task: Callable[[], Awaitable[List[Record]]], label: str = "") -> bool:
        """
        Append a task for an address.

        Returns:
            False if the same (address, label) is already queued or the queue is full
        """
        if any(e.address == address and e.label == label for e in self._entries):
            logger.debug(f"{label or 'task'} for {address[:8]}... already queued")
            return False
        if len(self._entries) >= self.settings.queue_max_size:
            logger.warning(f"Address queue full ({len(self._entries)}), dropping {address[:8]}...")
            return False
        self._entries.append(QueueEntry(address=address, task=task, label=label))
        return True

    def _pacing_delay(self) -> float:
        depth = len(self._entries)
        return min(
            self.settings.queue_base_delay + depth * self.settings.queue_depth_penalty,
            self.settings.queue_max_delay,
        )

    async def drain(self) -> List[Record]:
        """
        Process every queued entry serially.

        Returns:
            Records produced by successful tasks, in processing order. A call
            made while another drain is running returns an empty list.
        """
        if self._draining:
            logger.debug("Address queue already draining")
            return []

        self._draining = True
        results: List[Record] = []
        try:
            while self._entries:
                entry = self._entries.popleft()
                try:
                    records = await entry.task()
                except Exception as e:
                    entry.attempts += 1
                    entry.last_error = e
                    # Unknown exception types are treated as transient
                    retryable = getattr(e, "retryable", True)
                    if retryable and entry.attempts <= self.settings.queue_max_retries:
                        delay = calculate_backoff_delay(
                            entry.attempts - 1,
                            self.settings.queue_base_delay,
                            self.settings.queue_max_delay,
                            self.settings.backoff_jitter,
                        )
                        retry_after = getattr(e, "retry_after", None)
                        if retry_after:
                            delay = max(delay, min(retry_after, self.settings.queue_max_delay))
                        logger.info(
                            f"{entry.label or 'task'} for {entry.address[:8]}... failed "
                            f"(attempt {entry.attempts}/{self.settings.queue_max_retries}), "
                            f"retrying in {delay:.1f}s: {redact(str(e))}"
                        )
                        await self._sleep(delay)
                        self._entries.appendleft(entry)
                    else:
                        self.failed += 1
                        logger.error(
                            f"Giving up on {entry.label or 'task'} for {entry.address[:8]}... "
                            f"after {entry.attempts} attempts: {redact(str(e))}"
                        )
                        if self.metrics:
                            self.metrics.record_wallet("failed")
                    continue

                results.extend(records)
                self.processed += 1
                if self.metrics:
                    self.metrics.record_wallet("processed")
                if self._entries:
                    await self._sleep(self._pacing_delay())
        finally:
            self._draining = False

        return results
