"""
Pytest configuration and fixtures for SolBooks tests.
"""

from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from solbooks.core.context import RefreshContext, RefreshSettings
from solbooks.core.errors import RpcError
from solbooks.core.metrics import LedgerMetrics
from solbooks.core.price_cache import STATIC_FALLBACK_RATES
from solbooks.core.rpc_client import LedgerTransaction, SignatureInfo, TokenAccount
from solbooks.core.store import KeyValueStore, LedgerStore

WALLET_A = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
WALLET_B = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
TOKEN_ACCOUNT = "8sLbNZoA1cfnvMJLPfp98ZLAnFSYCFApfJKMbiXNLwxj"
BLOCK_TIME = 1700000000


class FakeRpc:
    """In-memory stand-in for SolanaRpcClient."""

    def __init__(self):
        self.signatures: Dict[str, List[SignatureInfo]] = {}
        self.transactions: Dict[str, object] = {}
        self.token_accounts: Dict[str, List[TokenAccount]] = {}
        self.balances: Dict[str, int] = {}
        self.signature_failures: Dict[str, int] = {}
        self.calls: List[tuple] = []

    async def list_signatures(self, address: str, limit: int = 50, before: Optional[str] = None):
        self.calls.append(("list_signatures", address))
        remaining = self.signature_failures.get(address, 0)
        if remaining:
            self.signature_failures[address] = remaining - 1
            raise RpcError("getSignaturesForAddress failed", method="getSignaturesForAddress")
        return list(self.signatures.get(address, []))[:limit]

    async def get_transaction(self, signature: str):
        self.calls.append(("get_transaction", signature))
        value = self.transactions.get(signature)
        if isinstance(value, Exception):
            raise value
        return value

    async def list_token_accounts(self, owner: str, program_id: Optional[str] = None):
        self.calls.append(("list_token_accounts", owner))
        return list(self.token_accounts.get(owner, []))

    async def get_balance(self, address: str) -> int:
        self.calls.append(("get_balance", address))
        value = self.balances.get(address, 0)
        if isinstance(value, Exception):
            raise value
        return value

    async def close(self):
        pass

    def add_native(self, address: str, signature: str, pre: int, post: int,
                   block_time: int = BLOCK_TIME, err=None):
        """Register a transaction moving ``post - pre`` lamports for ``address``."""
        self.signatures.setdefault(address, []).append(SignatureInfo(signature, block_time=block_time))
        self.transactions[signature] = LedgerTransaction(
            signature=signature,
            accounts=[address, "11111111111111111111111111111111"],
            pre_balances=[pre, 0],
            post_balances=[post, 0],
            block_time=block_time,
            err=err,
        )

    def count(self, method: str, arg: Optional[str] = None) -> int:
        return sum(1 for call in self.calls if call[0] == method and (arg is None or call[1] == arg))


class StubPriceFetcher:
    """Price fetcher returning a fixed table."""

    def __init__(self, rates=None, fallback: bool = False):
        self.rates = dict(rates or STATIC_FALLBACK_RATES)
        self.last_used_fallback = fallback
        self.calls = 0

    async def get_rates(self) -> Dict[str, Decimal]:
        self.calls += 1
        return dict(self.rates)

    async def close(self):
        pass


class SleepRecorder:
    """Awaitable sleep that records delays instead of waiting."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, delay: float):
        self.calls.append(delay)


def fast_settings(**overrides) -> RefreshSettings:
    """RefreshSettings with every delay and jitter zeroed."""
    values = dict(
        native_batch_delay=0,
        token_batch_delay=0,
        queue_base_delay=0,
        queue_max_delay=0,
        queue_depth_penalty=0,
        backoff_jitter=0,
        price_retry_base_delay=0,
        price_retry_max_delay=0,
        request_timeout=5,
    )
    values.update(overrides)
    return RefreshSettings(**values)


def make_context(rpc=None, settings=None, price_fetcher=None) -> RefreshContext:
    return RefreshContext(
        rpc=rpc or FakeRpc(),
        store=LedgerStore(KeyValueStore(enabled=False)),
        settings=settings or fast_settings(),
        price_fetcher=price_fetcher or StubPriceFetcher(),
        metrics=LedgerMetrics(),
    )


@pytest.fixture
def rpc():
    return FakeRpc()


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def ctx(rpc):
    return make_context(rpc)
