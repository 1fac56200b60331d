"""
Explicit refresh context.

Everything a refresh touches (clients, caches, store, metrics and tunables)
hangs off one RefreshContext owned by whoever calls ``refresh()``. Separate
contexts share no state, so tests and multiple wallet sets can run side by
side.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from ..config import LedgerConfig
from .metrics import LedgerMetrics
from .price_cache import PriceCache
from .price_client import PriceFetcher
from .rpc_client import SolanaRpcClient
from .signature_cache import SignatureCache
from .store import KeyValueStore, LedgerStore


@dataclass
class RefreshSettings:
    """Tunables for fetchers, queue and price refresh (seconds unless noted)."""
    # Native fetch
    native_signature_limit: int = 50
    native_batch_size: int = 10
    native_batch_delay: float = 0.5
    native_dust_lamports: int = 1000
    # Token fetch
    token_accounts_max: int = 5
    token_signatures_max: int = 20
    token_batch_size: int = 5
    token_batch_delay: float = 0.3
    token_dust_threshold: Decimal = Decimal("0.000001")
    max_token_amount: Decimal = Decimal("1000000000")
    max_token_decimals: int = 18
    # Shared
    request_timeout: float = 15.0
    # Address queue
    queue_base_delay: float = 1.0
    queue_max_delay: float = 30.0
    queue_depth_penalty: float = 0.1
    queue_max_retries: int = 3
    queue_max_size: int = 50
    backoff_jitter: float = 1.0
    # Caches
    signature_cache_max_size: int = 10000
    price_cache_ttl: float = 300.0
    price_cache_max_size: int = 100
    # Price oracle
    price_api_url: str = "https://api.jup.ag/price/v2"
    price_timeout: float = 10.0
    price_max_retries: int = 3
    price_retry_base_delay: float = 1.0
    price_retry_max_delay: float = 30.0
    min_price: Decimal = Decimal("0.0000001")
    max_price: Decimal = Decimal("1000000")
    # Loop
    auto_refresh_interval: float = 300.0

    @classmethod
    def from_env(cls) -> "RefreshSettings":
        """Snapshot the current environment configuration."""
        return cls(
            native_signature_limit=LedgerConfig.get_native_signature_limit(),
            native_batch_size=LedgerConfig.get_transaction_batch_size(),
            native_batch_delay=LedgerConfig.get_transaction_batch_delay(),
            native_dust_lamports=LedgerConfig.get_native_dust_lamports(),
            token_accounts_max=LedgerConfig.get_token_accounts_max(),
            token_signatures_max=LedgerConfig.get_token_signatures_max(),
            token_batch_size=LedgerConfig.get_token_batch_size(),
            token_batch_delay=LedgerConfig.get_token_batch_delay(),
            token_dust_threshold=Decimal(LedgerConfig.get_token_dust_threshold()),
            max_token_amount=Decimal(LedgerConfig.get_max_token_amount()),
            max_token_decimals=LedgerConfig.get_max_token_decimals(),
            request_timeout=LedgerConfig.get_rpc_timeout_seconds(),
            queue_base_delay=LedgerConfig.get_queue_base_delay(),
            queue_max_delay=LedgerConfig.get_queue_max_delay(),
            queue_depth_penalty=LedgerConfig.get_queue_depth_penalty(),
            queue_max_retries=LedgerConfig.get_queue_max_retries(),
            queue_max_size=LedgerConfig.get_queue_max_size(),
            backoff_jitter=LedgerConfig.get_backoff_jitter(),
            signature_cache_max_size=LedgerConfig.get_signature_cache_max_size(),
            price_cache_ttl=LedgerConfig.get_price_cache_ttl(),
            price_cache_max_size=LedgerConfig.get_price_cache_max_size(),
            price_api_url=LedgerConfig.get_price_api_url(),
            price_timeout=LedgerConfig.get_price_timeout_seconds(),
            price_max_retries=LedgerConfig.get_price_max_retries(),
            price_retry_base_delay=LedgerConfig.get_price_retry_base_delay(),
            price_retry_max_delay=LedgerConfig.get_price_retry_max_delay(),
            min_price=Decimal(LedgerConfig.get_min_price()),
            max_price=Decimal(LedgerConfig.get_max_price()),
            auto_refresh_interval=LedgerConfig.get_auto_refresh_interval(),
        )


@dataclass
class RefreshContext:
    """Process-owned state shared by the scheduler and fetchers of one ledger."""
    rpc: SolanaRpcClient
    store: LedgerStore
    settings: RefreshSettings = field(default_factory=RefreshSettings)
    signature_cache: Optional[SignatureCache] = None
    price_cache: Optional[PriceCache] = None
    price_fetcher: Optional[PriceFetcher] = None
    metrics: Optional[LedgerMetrics] = None

    def __post_init__(self):
        if self.signature_cache is None:
            self.signature_cache = SignatureCache(max_size=self.settings.signature_cache_max_size)
        if self.price_cache is None:
            self.price_cache = PriceCache(
                ttl_seconds=self.settings.price_cache_ttl,
                max_size=self.settings.price_cache_max_size,
            )
        if self.price_fetcher is None:
            self.price_fetcher = PriceFetcher(self.price_cache, settings=self.settings)
        if self.metrics is None:
            self.metrics = LedgerMetrics()

    @classmethod
    def from_env(cls, start_metrics: bool = False) -> "RefreshContext":
        """
        Build a context wired from environment configuration.

        Args:
            start_metrics: Start the Prometheus exporter if metrics are enabled
        """
        settings = RefreshSettings.from_env()
        metrics = LedgerMetrics(port=LedgerConfig.get_metrics_port())
        if start_metrics and LedgerConfig.get_metrics_enabled():
            metrics.start_server()
        return cls(
            rpc=SolanaRpcClient(timeout_seconds=settings.request_timeout),
            store=LedgerStore(KeyValueStore(), namespace=LedgerConfig.get_store_namespace()),
            settings=settings,
            metrics=metrics,
        )

    async def close(self):
        await self.rpc.close()
        await self.price_fetcher.close()
