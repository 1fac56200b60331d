"""
SolBooks Core Module

Provides the refresh pipeline (fetchers, address queue, reconciler), price
handling, persistence and metrics.
"""

from .address_queue import AddressQueue
from .backoff import calculate_backoff_delay
from .context import RefreshContext, RefreshSettings
from .currency import convert_to_base_currency, format_amount_with_currency, format_currency_amount
from .errors import InvalidAddressError, LedgerError, PriceOracleError, RateLimitedError, RpcError
from .metrics import LedgerMetrics
from .models import (
    AssetDescriptor,
    CurrencyPreference,
    Direction,
    Record,
    RecordStatus,
    RefreshStats,
    TokenFilter,
    WalletConfig,
)
from .native_fetcher import NativeFetcher
from .price_cache import PriceCache
from .price_client import PriceFetcher
from .reconciler import reconcile
from .refresh import LedgerService
from .rpc_client import SolanaRpcClient
from .signature_cache import SignatureCache
from .store import KeyValueStore, LedgerStore
from .token_fetcher import BalanceSnapshotStrategy, InstructionTransferStrategy, TokenFetcher
