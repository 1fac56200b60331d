"""
SPL token movement fetcher.

For each token account a wallet owns, walks the account's recent signatures
and extracts the account's net token delta per transaction. Extraction runs
an ordered list of strategies; the first one that recognizes the
transaction wins.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .context import RefreshContext
from .decimal_utils import parse_finite_decimal, scale_raw_amount
from .errors import RpcError
from .fetch_utils import batched, block_timestamp, cache_key
from .log_redaction import redact
from .models import AssetDescriptor, Direction, Record, RecordStatus, WalletConfig, make_record_id
from .rpc_client import LedgerTransaction, SignatureInfo, TokenAccount
from .tokens import resolve_descriptor

logger = logging.getLogger(__name__)

TRANSFER_TYPES = ("transfer", "transferChecked")


class InstructionTransferStrategy:
    """Sum parsed SPL transfer instructions touching the token account."""

    name = "instruction"

    def extract(self, tx: LedgerTransaction, account: TokenAccount, owner: str,
                asset: AssetDescriptor) -> Optional[Decimal]:
        delta = Decimal("0")
        matched = False
        for ix in tx.parsed_instructions:
            parsed = ix.get("parsed")
            if not isinstance(parsed, dict) or parsed.get("type") not in TRANSFER_TYPES:
                continue
            info = parsed.get("info") or {}
            source, destination = info.get("source"), info.get("destination")
            if account.account_id not in (source, destination):
                continue

            amount = self._amount(info, asset)
            if amount is None:
                continue
            matched = True
            if destination == account.account_id:
                delta += amount
            if source == account.account_id:
                delta -= amount

        return delta if matched else None

    @staticmethod
    def _amount(info: Dict[str, Any], asset: AssetDescriptor) -> Optional[Decimal]:
        token_amount = info.get("tokenAmount")
        if isinstance(token_amount, dict):
            ui = parse_finite_decimal(token_amount.get("uiAmountString"))
            if ui is not None:
                return ui
            raw = token_amount.get("amount")
            decimals = token_amount.get("decimals", asset.decimals)
        else:
            raw = info.get("amount")
            decimals = asset.decimals
        try:
            return scale_raw_amount(raw, decimals)
        except (TypeError, ValueError):
            return None


class BalanceSnapshotStrategy:
    """Diff pre/post token balances for the account; a missing side counts as zero."""

    name = "balance"

    def extract(self, tx: LedgerTransaction, account: TokenAccount, owner: str,
                asset: AssetDescriptor) -> Optional[Decimal]:
        try:
            account_index = tx.accounts.index(account.account_id)
        except ValueError:
            account_index = None

        pre = self._find(tx.pre_token_balances, account_index, account.mint, owner)
        post = self._find(tx.post_token_balances, account_index, account.mint, owner)
        if pre is None and post is None:
            return None
        return self._ui_amount(post, asset) - self._ui_amount(pre, asset)

    @staticmethod
    def _find(balances: List[Dict[str, Any]], account_index: Optional[int], mint: str,
              owner: str) -> Optional[Dict[str, Any]]:
        for entry in balances:
            if account_index is not None and entry.get("accountIndex") == account_index:
                return entry
        for entry in balances:
            if entry.get("mint") == mint and entry.get("owner") == owner:
                return entry
        return None

    @staticmethod
    def _ui_amount(entry: Optional[Dict[str, Any]], asset: AssetDescriptor) -> Decimal:
        if entry is None:
            return Decimal("0")
        token_amount = entry.get("uiTokenAmount") or {}
        ui = parse_finite_decimal(token_amount.get("uiAmountString"))
        if ui is not None:
            return ui
        try:
            return scale_raw_amount(token_amount.get("amount", 0), token_amount.get("decimals", asset.decimals))
        except (TypeError, ValueError):
            return Decimal("0")


DEFAULT_STRATEGIES = (InstructionTransferStrategy(), BalanceSnapshotStrategy())


class TokenFetcher:
    """Produces SPL token candidate records for one wallet."""

    def __init__(
        self,
        ctx: RefreshContext,
        strategies=DEFAULT_STRATEGIES,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.ctx = ctx
        self.settings = ctx.settings
        self.strategies = list(strategies)
        self._sleep = sleep

    async def fetch(self, wallet: WalletConfig) -> List[Record]:
        """
        Fetch token candidates for a wallet.

        A token account whose signatures cannot be listed is skipped and its
        transactions stay unmarked; the other accounts are still scanned.

        Raises:
            RpcError: if token accounts cannot be listed, or if every account
                failed (the queue retries)
        """
        accounts = await self.ctx.rpc.list_token_accounts(wallet.address)
        if len(accounts) > self.settings.token_accounts_max:
            logger.debug(
                f"{wallet.address[:8]}... owns {len(accounts)} token accounts, "
                f"scanning first {self.settings.token_accounts_max}"
            )
        accounts = accounts[:self.settings.token_accounts_max]

        records: List[Record] = []
        seen: List[str] = []
        last_error: Optional[RpcError] = None
        failures = 0
        for account in accounts:
            account_seen: List[str] = []
            try:
                records.extend(await self._fetch_account(wallet, account, account_seen))
            except RpcError as e:
                failures += 1
                last_error = e
                logger.warning(
                    f"Skipping token account {account.account_id[:8]}... of {wallet.address[:8]}...: "
                    f"{redact(str(e))}"
                )
                continue
            seen.extend(account_seen)

        if accounts and failures == len(accounts):
            raise last_error

        # Marked only once the pass finished so a queue retry refetches
        for key in seen:
            self.ctx.signature_cache.record(key)

        self.ctx.metrics.record_candidates("token", len(records))
        return records

    async def _fetch_account(self, wallet: WalletConfig, account: TokenAccount, seen: List[str]) -> List[Record]:
        asset = resolve_descriptor(account.mint, account.decimals, self.settings.max_token_decimals)
        signatures = await self.ctx.rpc.list_signatures(
            account.account_id, limit=self.settings.token_signatures_max
        )
        cache = self.ctx.signature_cache
        pending = [s for s in signatures if not cache.has(cache_key(s.signature, account.mint))]

        records: List[Record] = []
        batches = batched(pending, self.settings.token_batch_size)
        for index, batch in enumerate(batches):
            results = await asyncio.gather(*(self._process(wallet, account, asset, info, seen) for info in batch))
            records.extend(r for r in results if r is not None)
            if index < len(batches) - 1:
                await self._sleep(self.settings.token_batch_delay)
        return records

    async def _process(self, wallet: WalletConfig, account: TokenAccount, asset: AssetDescriptor,
                       info: SignatureInfo, seen: List[str]) -> Optional[Record]:
        try:
            tx = await asyncio.wait_for(
                self.ctx.rpc.get_transaction(info.signature),
                timeout=self.settings.request_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Timed out fetching token transaction {info.signature[:16]}...")
            return None
        except Exception as e:
            logger.warning(f"Failed to fetch token transaction {info.signature[:16]}...: {redact(str(e))}")
            return None

        if tx is None:
            return None

        seen.append(cache_key(info.signature, account.mint))
        delta = self._extract(tx, account, wallet.address, asset)
        if delta is None:
            return None

        magnitude = abs(delta)
        if magnitude > self.settings.max_token_amount:
            logger.warning(
                f"Rejecting implausible {asset.symbol} amount {delta} in {info.signature[:16]}..."
            )
            return None
        if magnitude < self.settings.token_dust_threshold:
            return None

        failed = tx.err is not None or info.err is not None
        return Record(
            id=make_record_id(info.signature, account.mint),
            signature=info.signature,
            direction=Direction.INFLOW if delta > 0 else Direction.OUTFLOW,
            amount=magnitude,
            asset=asset,
            timestamp=block_timestamp(tx.block_time if tx.block_time is not None else info.block_time),
            address=wallet.address,
            description=f"{asset.symbol} {'Received' if delta > 0 else 'Sent'} - {wallet.name}",
            status=RecordStatus.FAILED if failed else RecordStatus.CONFIRMED,
        )

    def _extract(self, tx: LedgerTransaction, account: TokenAccount, owner: str,
                 asset: AssetDescriptor) -> Optional[Decimal]:
        for strategy in self.strategies:
            try:
                delta = strategy.extract(tx, account, owner, asset)
            except (KeyError, TypeError, ValueError, ArithmeticError) as e:
                logger.debug(f"{strategy.name} extraction failed for {tx.signature[:16]}...: {e}")
                continue
            if delta is not None:
                return delta
        return None
