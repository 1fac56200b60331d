"""
Ledger refresh service.

LedgerService is the trigger surface of the ledger core. ``refresh()`` pulls
prices, pushes every monitored wallet through the address queue (native pass
then token pass), reconciles the candidates against the stored set and
persists the result. It never raises; partial coverage only shows up in logs,
metrics and ``last_stats``.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .address_queue import AddressQueue
from .context import RefreshContext
from .currency import format_amount_with_currency
from .log_redaction import redact
from .models import Record, RefreshStats, TokenFilter, WalletConfig
from .native_fetcher import NativeFetcher, lamports_to_sol
from .price_cache import STATIC_FALLBACK_RATES
from .reconciler import reconcile
from .rpc_client import ensure_valid_address, is_valid_address
from .token_fetcher import TokenFetcher

logger = logging.getLogger(__name__)

NOTES_MAX_LENGTH = 1000
CATEGORY_MAX_LENGTH = 50
WALLET_NAME_MAX_LENGTH = 100
CONNECTED_WALLET_NAME = "Connected Wallet"


def sanitize_input(value: str) -> str:
    """Trim whitespace and strip angle brackets."""
    return value.strip().replace("<", "").replace(">", "")


class LedgerService:
    """Refresh, classification and wallet operations over one RefreshContext."""

    def __init__(
        self,
        ctx: RefreshContext,
        connected_address: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the service.

        Args:
            ctx: Refresh context owning clients, caches, store and metrics
            connected_address: Optional wallet that is always monitored
            sleep: Awaitable sleep used for queue pacing and batch delays
        """
        self.ctx = ctx
        self.connected_address = connected_address
        self._sleep = sleep
        self.native_fetcher = NativeFetcher(ctx, sleep=sleep)
        self.token_fetcher = TokenFetcher(ctx, sleep=sleep)
        self._refreshing = False
        self._loop_task: Optional[asyncio.Task] = None
        self.last_stats: Optional[RefreshStats] = None

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def wallets_to_fetch(self) -> List[WalletConfig]:
        """Connected wallet first, then active configured wallets, deduplicated by address."""
        wallets: List[WalletConfig] = []
        if self.connected_address:
            wallets.append(WalletConfig(address=self.connected_address, name=CONNECTED_WALLET_NAME))

        for config in self.ctx.store.load_wallet_list():
            if not config.is_active:
                continue
            if any(w.address == config.address for w in wallets):
                continue
            wallets.append(config)
        return wallets

    async def refresh(self) -> List[Record]:
        """
        Run one refresh cycle.

        Returns:
            The canonical record set. A call made while another refresh is
            running returns the currently stored set without fetching.
        """
        if self._refreshing:
            logger.info("Refresh already in progress, skipping")
            return self.ctx.store.load_records()

        self._refreshing = True
        stats = RefreshStats()
        start_time = time.monotonic()
        try:
            records = await self._refresh(stats)
            stats.time_taken_seconds = time.monotonic() - start_time
            self.ctx.metrics.record_refresh("success", stats.time_taken_seconds)
            logger.info(
                f"Refresh complete: {stats.wallets_queued} wallets, "
                f"{stats.tasks_processed} tasks ok, {stats.tasks_failed} failed, "
                f"{stats.candidates} candidates, {stats.records_total} records "
                f"({stats.time_taken_seconds:.1f}s)"
            )
            return records
        except Exception as e:
            stats.time_taken_seconds = time.monotonic() - start_time
            self.ctx.metrics.record_refresh("error", stats.time_taken_seconds)
            logger.error(f"Refresh failed: {redact(str(e))}", exc_info=True)
            return self.ctx.store.load_records()
        finally:
            self.last_stats = stats
            self._refreshing = False

    async def _refresh(self, stats: RefreshStats) -> List[Record]:
        await self._refresh_prices(stats)

        wallets = self.wallets_to_fetch()
        if not wallets:
            logger.info("No wallets to fetch transactions for")
            return self.ctx.store.load_records()

        queue = AddressQueue(self.ctx.settings, sleep=self._sleep, metrics=self.ctx.metrics)
        for wallet in wallets:
            if not is_valid_address(wallet.address):
                logger.warning(f"Skipping invalid wallet address {wallet.address!r} ({wallet.name})")
                stats.wallets_skipped += 1
                continue
            # Both passes for one wallet sit next to each other in the FIFO
            queued = queue.enqueue(wallet.address, lambda w=wallet: self.native_fetcher.fetch(w), "native")
            queued = queue.enqueue(wallet.address, lambda w=wallet: self.token_fetcher.fetch(w), "token") and queued
            if queued:
                stats.wallets_queued += 1
            else:
                stats.wallets_skipped += 1

        candidates = await queue.drain()
        stats.tasks_processed = queue.processed
        stats.tasks_failed = queue.failed
        stats.candidates = len(candidates)

        merged = reconcile(candidates, self.ctx.store.load_records())
        self.ctx.store.save_records(merged)
        stats.records_total = len(merged)

        cache = self.ctx.signature_cache
        self.ctx.metrics.update_records(len(merged))
        self.ctx.metrics.update_signature_cache(len(cache), cache.evictions)
        return merged

    async def _refresh_prices(self, stats: RefreshStats):
        rates = await self.ctx.price_fetcher.get_rates()
        stats.price_fallback = self.ctx.price_fetcher.last_used_fallback
        if stats.price_fallback:
            self.ctx.metrics.record_price_fallback()

        preference = self.ctx.store.load_currency_preference()
        preference.exchange_rates = rates
        preference.last_updated = datetime.now(timezone.utc)
        self.ctx.store.save_currency_preference(preference)

    # ------------------------------------------------------------------
    # Record operations
    # ------------------------------------------------------------------

    def records(self, token_filter: Optional[TokenFilter] = None) -> List[Record]:
        """Stored records, optionally restricted by a token filter (stored filter by default)."""
        token_filter = token_filter or self.ctx.store.load_token_filter()
        return [r for r in self.ctx.store.load_records() if token_filter.matches(r)]

    def classify(self, record_id: str, label: str, note: Optional[str] = None) -> Optional[Record]:
        """
        Set the user-owned fields of one record.

        Args:
            record_id: Record id (``<signature>-<mint>``)
            label: Category label, sanitized and at most 50 characters
            note: Optional free text, sanitized and at most 1000 characters

        Returns:
            The updated record, or None if no record has that id

        Raises:
            ValueError: if the label is empty or either field is too long
        """
        label = sanitize_input(label or "")
        if not label:
            raise ValueError("Category must not be empty")
        if len(label) > CATEGORY_MAX_LENGTH:
            raise ValueError(f"Category exceeds {CATEGORY_MAX_LENGTH} characters")
        if note is not None:
            note = sanitize_input(note)
            if len(note) > NOTES_MAX_LENGTH:
                raise ValueError(f"Notes exceed {NOTES_MAX_LENGTH} characters")

        records = self.ctx.store.load_records()
        for index, record in enumerate(records):
            if record.id != record_id:
                continue
            record.category = label
            record.notes = note or None
            record.classified = True
            records[index] = record
            self.ctx.store.save_records(records)
            return record

        logger.warning(f"No record with id {record_id}")
        return None

    def display_amount(self, record: Record, show_original: bool = False) -> str:
        """Record amount in the preferred base currency, using the latest known rates."""
        preference = self.ctx.store.load_currency_preference()
        rates = self.ctx.price_cache.get() or preference.exchange_rates or dict(STATIC_FALLBACK_RATES)
        return format_amount_with_currency(record.amount, record.asset, preference, rates, show_original)

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    def add_wallet(self, address: str, name: str, is_active: bool = True) -> WalletConfig:
        """
        Add (or replace) a monitored wallet.

        Raises:
            InvalidAddressError: for a malformed address
            ValueError: for an empty or overlong name
        """
        ensure_valid_address(address)
        name = sanitize_input(name)
        if not 1 <= len(name) <= WALLET_NAME_MAX_LENGTH:
            raise ValueError(f"Wallet name must be 1-{WALLET_NAME_MAX_LENGTH} characters")

        wallets = [w for w in self.ctx.store.load_wallet_list() if w.address != address]
        wallet = WalletConfig(address=address, name=name, is_active=is_active)
        wallets.append(wallet)
        self.ctx.store.save_wallet_list(wallets)
        return wallet

    def remove_wallet(self, address: str) -> bool:
        wallets = self.ctx.store.load_wallet_list()
        remaining = [w for w in wallets if w.address != address]
        if len(remaining) == len(wallets):
            return False
        self.ctx.store.save_wallet_list(remaining)
        return True

    async def fetch_balances(self) -> Dict[str, Decimal]:
        """
        Fetch SOL balances for the connected and active configured wallets.

        Balances are written back to the stored wallet configs. A wallet whose
        balance cannot be read reports zero.
        """
        balances: Dict[str, Decimal] = {}
        for wallet in self.wallets_to_fetch():
            try:
                lamports = await asyncio.wait_for(
                    self.ctx.rpc.get_balance(wallet.address),
                    timeout=self.ctx.settings.request_timeout,
                )
                balances[wallet.address] = lamports_to_sol(lamports)
            except Exception as e:
                logger.warning(f"Failed to fetch balance for {wallet.name}: {redact(str(e))}")
                balances[wallet.address] = Decimal("0")

        configs = self.ctx.store.load_wallet_list()
        for config in configs:
            if config.address in balances:
                config.balance = balances[config.address]
        self.ctx.store.save_wallet_list(configs)
        return balances

    # ------------------------------------------------------------------
    # Auto refresh
    # ------------------------------------------------------------------

    def start(self, interval: Optional[float] = None) -> asyncio.Task:
        """
        Start the background refresh loop on the running event loop.

        Each tick refreshes only while the stored auto-refresh flag is set.
        """
        if self._loop_task is not None and not self._loop_task.done():
            return self._loop_task
        interval = interval if interval is not None else self.ctx.settings.auto_refresh_interval
        self._loop_task = asyncio.ensure_future(self._run_loop(interval))
        return self._loop_task

    async def stop(self):
        """Cancel the background loop and wait for it to finish."""
        task, self._loop_task = self._loop_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run_loop(self, interval: float):
        logger.info(f"Auto refresh loop started (every {interval:.0f}s)")
        while True:
            if self.ctx.store.load_auto_refresh_flag():
                await self.refresh()
            else:
                logger.debug("Auto refresh disabled, skipping tick")
            await self._sleep(interval)
