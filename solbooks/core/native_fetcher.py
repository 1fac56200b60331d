"""
Native SOL movement fetcher.

Turns an address's recent signatures into candidate records by diffing the
address's lamport balance before and after each transaction.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Optional

from .context import RefreshContext
from .decimal_utils import scale_raw_amount
from .fetch_utils import batched, block_timestamp, cache_key
from .log_redaction import redact
from .models import Direction, NATIVE_MINT, Record, RecordStatus, WalletConfig, make_record_id
from .rpc_client import LedgerTransaction, SignatureInfo
from .tokens import SOL_TOKEN

logger = logging.getLogger(__name__)


class NativeFetcher:
    """Produces native SOL candidate records for one wallet."""

    def __init__(self, ctx: RefreshContext, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.ctx = ctx
        self.settings = ctx.settings
        self._sleep = sleep

    async def fetch(self, wallet: WalletConfig) -> List[Record]:
        """
        Fetch native candidates for a wallet.

        Raises:
            RpcError: if signatures cannot be listed (the queue retries)
        """
        address = wallet.address
        signatures = await self.ctx.rpc.list_signatures(address, limit=self.settings.native_signature_limit)
        cache = self.ctx.signature_cache
        pending = [s for s in signatures if not cache.has(cache_key(s.signature, NATIVE_MINT))]
        logger.debug(f"{address[:8]}...: {len(pending)}/{len(signatures)} unseen native signatures")

        records: List[Record] = []
        seen: List[str] = []
        batches = batched(pending, self.settings.native_batch_size)
        for index, batch in enumerate(batches):
            results = await asyncio.gather(*(self._process(wallet, info, seen) for info in batch))
            records.extend(r for r in results if r is not None)
            if index < len(batches) - 1:
                await self._sleep(self.settings.native_batch_delay)

        # Marked only once the whole pass succeeded so a queue retry refetches
        for key in seen:
            cache.record(key)
        self.ctx.metrics.record_candidates("native", len(records))
        return records

    async def _process(self, wallet: WalletConfig, info: SignatureInfo, seen: List[str]) -> Optional[Record]:
        """Fetch and convert one transaction; errors are logged and yield None."""
        try:
            tx = await asyncio.wait_for(
                self.ctx.rpc.get_transaction(info.signature),
                timeout=self.settings.request_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Timed out fetching transaction {info.signature[:16]}...")
            return None
        except Exception as e:
            logger.warning(f"Failed to fetch transaction {info.signature[:16]}...: {redact(str(e))}")
            return None

        if tx is None:
            logger.debug(f"Transaction {info.signature[:16]}... not found")
            return None

        seen.append(cache_key(info.signature, NATIVE_MINT))
        return self._to_record(wallet, info, tx)

    def _to_record(self, wallet: WalletConfig, info: SignatureInfo, tx: LedgerTransaction) -> Optional[Record]:
        try:
            index = tx.accounts.index(wallet.address)
            delta = int(tx.post_balances[index]) - int(tx.pre_balances[index])
        except (ValueError, IndexError, TypeError):
            logger.debug(f"{wallet.address[:8]}... has no balance entry in {info.signature[:16]}...")
            return None

        if abs(delta) < self.settings.native_dust_lamports:
            return None

        direction = Direction.INFLOW if delta > 0 else Direction.OUTFLOW
        failed = tx.err is not None or info.err is not None
        return Record(
            id=make_record_id(info.signature, NATIVE_MINT),
            signature=info.signature,
            direction=direction,
            amount=scale_raw_amount(abs(delta), SOL_TOKEN.decimals),
            asset=SOL_TOKEN,
            timestamp=block_timestamp(tx.block_time if tx.block_time is not None else info.block_time),
            address=wallet.address,
            description=f"SOL {'Received' if delta > 0 else 'Sent'} - {wallet.name}",
            status=RecordStatus.FAILED if failed else RecordStatus.CONFIRMED,
        )


def lamports_to_sol(lamports: int) -> Decimal:
    return scale_raw_amount(lamports, SOL_TOKEN.decimals)
