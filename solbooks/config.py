"""
SolBooks Configuration Module

Centralized configuration management for the ledger core.
Loads from environment variables with sensible defaults.
"""

import os
from typing import Optional
from urllib.parse import urlparse, parse_qs


class LedgerConfig:
    """Centralized ledger configuration."""

    # ========================================================================
    # RPC
    # ========================================================================

    @staticmethod
    def get_rpc_url() -> str:
        """Get Solana JSON-RPC endpoint."""
        return os.getenv("SOLBOOKS_RPC_URL") or os.getenv("SOLANA_RPC_URL", "https://api.devnet.solana.com")

    @staticmethod
    def get_rpc_api_key() -> Optional[str]:
        """Get RPC API key from environment or from the RPC URL query string."""
        key = os.getenv("SOLBOOKS_RPC_API_KEY")
        if not key:
            rpc_url = LedgerConfig.get_rpc_url()
            query_params = parse_qs(urlparse(rpc_url).query)
            if "api-key" in query_params:
                key = query_params["api-key"][0]
        return key

    @staticmethod
    def get_rpc_timeout_seconds() -> float:
        """Get per-request RPC timeout in seconds."""
        return float(os.getenv("SOLBOOKS_RPC_TIMEOUT_SECONDS", "15"))

    @staticmethod
    def get_rpc_rate_limit_delay() -> float:
        """Get minimum spacing between RPC requests in seconds."""
        return float(os.getenv("SOLBOOKS_RPC_RATE_LIMIT_DELAY", "0.05"))

    # ========================================================================
    # Fetch Limits
    # ========================================================================

    @staticmethod
    def get_native_signature_limit() -> int:
        """Get maximum signatures fetched per address for native transfers."""
        return int(os.getenv("SOLBOOKS_NATIVE_SIGNATURE_LIMIT", "50"))

    @staticmethod
    def get_transaction_batch_size() -> int:
        """Get number of transactions requested concurrently per batch."""
        return int(os.getenv("SOLBOOKS_TX_BATCH_SIZE", "10"))

    @staticmethod
    def get_transaction_batch_delay() -> float:
        """Get delay between transaction batches in seconds."""
        return float(os.getenv("SOLBOOKS_TX_BATCH_DELAY_SECONDS", "0.5"))

    @staticmethod
    def get_token_batch_size() -> int:
        """Get token-account transaction batch size."""
        return int(os.getenv("SOLBOOKS_TOKEN_BATCH_SIZE", "5"))

    @staticmethod
    def get_token_batch_delay() -> float:
        """Get delay between token transaction batches in seconds."""
        return float(os.getenv("SOLBOOKS_TOKEN_BATCH_DELAY_SECONDS", "0.3"))

    @staticmethod
    def get_token_accounts_max() -> int:
        """Get maximum SPL token accounts processed per wallet."""
        return int(os.getenv("SOLBOOKS_TOKEN_ACCOUNTS_MAX", "5"))

    @staticmethod
    def get_token_signatures_max() -> int:
        """Get maximum signatures fetched per token account."""
        return int(os.getenv("SOLBOOKS_TOKEN_SIGNATURES_MAX", "20"))

    @staticmethod
    def get_native_dust_lamports() -> int:
        """Get native dust threshold in lamports (fee-only noise below this)."""
        return int(os.getenv("SOLBOOKS_NATIVE_DUST_LAMPORTS", "1000"))

    @staticmethod
    def get_token_dust_threshold() -> str:
        """Get token dust threshold in UI units (kept as string for Decimal)."""
        return os.getenv("SOLBOOKS_TOKEN_DUST_THRESHOLD", "0.000001")

    @staticmethod
    def get_max_token_amount() -> str:
        """Get maximum plausible token amount in UI units."""
        return os.getenv("SOLBOOKS_MAX_TOKEN_AMOUNT", "1000000000")

    @staticmethod
    def get_max_token_decimals() -> int:
        """Get clamp for on-chain decimal precision of unknown tokens."""
        return int(os.getenv("SOLBOOKS_MAX_TOKEN_DECIMALS", "18"))

    # ========================================================================
    # Address Queue
    # ========================================================================

    @staticmethod
    def get_queue_base_delay() -> float:
        """Get base delay between wallets in seconds."""
        return float(os.getenv("SOLBOOKS_QUEUE_DELAY_BASE_SECONDS", "1.0"))

    @staticmethod
    def get_queue_max_delay() -> float:
        """Get maximum queue delay (and backoff cap) in seconds."""
        return float(os.getenv("SOLBOOKS_QUEUE_DELAY_MAX_SECONDS", "30.0"))

    @staticmethod
    def get_queue_depth_penalty() -> float:
        """Get extra delay per wallet still waiting in the queue."""
        return float(os.getenv("SOLBOOKS_QUEUE_DEPTH_PENALTY_SECONDS", "0.1"))

    @staticmethod
    def get_queue_max_retries() -> int:
        """Get retry count per wallet before it is skipped for this refresh."""
        return int(os.getenv("SOLBOOKS_QUEUE_MAX_RETRIES", "3"))

    @staticmethod
    def get_queue_max_size() -> int:
        """Get maximum number of wallets that may be queued at once."""
        return int(os.getenv("SOLBOOKS_QUEUE_MAX_SIZE", "50"))

    @staticmethod
    def get_backoff_jitter() -> float:
        """Get maximum random jitter added to retry delays in seconds."""
        return float(os.getenv("SOLBOOKS_BACKOFF_JITTER_SECONDS", "1.0"))

    # ========================================================================
    # Caches
    # ========================================================================

    @staticmethod
    def get_signature_cache_max_size() -> int:
        """Get maximum tracked signatures before eviction."""
        return int(os.getenv("SOLBOOKS_SIGNATURE_CACHE_MAX_SIZE", "10000"))

    @staticmethod
    def get_price_cache_ttl() -> float:
        """Get price cache TTL in seconds."""
        return float(os.getenv("SOLBOOKS_PRICE_CACHE_TTL_SECONDS", "300"))

    @staticmethod
    def get_price_cache_max_size() -> int:
        """Get maximum number of cached prices."""
        return int(os.getenv("SOLBOOKS_PRICE_CACHE_MAX_SIZE", "100"))

    # ========================================================================
    # Price Oracle
    # ========================================================================

    @staticmethod
    def get_price_api_url() -> str:
        """Get price oracle endpoint."""
        return os.getenv("SOLBOOKS_PRICE_API_URL", "https://api.jup.ag/price/v2")

    @staticmethod
    def get_price_timeout_seconds() -> float:
        """Get price oracle request timeout in seconds."""
        return float(os.getenv("SOLBOOKS_PRICE_TIMEOUT_SECONDS", "10"))

    @staticmethod
    def get_price_max_retries() -> int:
        """Get maximum price oracle attempts per refresh."""
        return int(os.getenv("SOLBOOKS_PRICE_MAX_RETRIES", "3"))

    @staticmethod
    def get_price_retry_base_delay() -> float:
        """Get base retry delay for the price oracle in seconds."""
        return float(os.getenv("SOLBOOKS_PRICE_RETRY_BASE_SECONDS", "1.0"))

    @staticmethod
    def get_price_retry_max_delay() -> float:
        """Get retry delay cap for the price oracle in seconds."""
        return float(os.getenv("SOLBOOKS_PRICE_RETRY_MAX_SECONDS", "30.0"))

    @staticmethod
    def get_min_price() -> str:
        """Get minimum plausible unit price in USD."""
        return os.getenv("SOLBOOKS_MIN_PRICE", "0.0000001")

    @staticmethod
    def get_max_price() -> str:
        """Get maximum plausible unit price in USD."""
        return os.getenv("SOLBOOKS_MAX_PRICE", "1000000")

    # ========================================================================
    # Store / Redis
    # ========================================================================

    @staticmethod
    def get_redis_enabled() -> bool:
        """Get whether the Redis-backed store is enabled."""
        return os.getenv("REDIS_ENABLED", "false").lower() == "true"

    @staticmethod
    def get_redis_url() -> str:
        """Get Redis connection URL."""
        return os.getenv("REDIS_URL", "redis://localhost:6379")

    @staticmethod
    def get_store_namespace() -> str:
        """Get key prefix for persisted data."""
        return os.getenv("SOLBOOKS_STORE_NAMESPACE", "solbooks")

    # ========================================================================
    # Metrics, Logging, Auto Refresh
    # ========================================================================

    @staticmethod
    def get_metrics_enabled() -> bool:
        """Get whether the Prometheus exporter should be started."""
        return os.getenv("SOLBOOKS_METRICS_ENABLED", "false").lower() == "true"

    @staticmethod
    def get_metrics_port() -> int:
        """Get Prometheus exporter port."""
        return int(os.getenv("SOLBOOKS_METRICS_PORT", "8082"))

    @staticmethod
    def get_log_level() -> str:
        """Get log level name."""
        return os.getenv("SOLBOOKS_LOG_LEVEL", "WARNING").upper()

    @staticmethod
    def get_auto_refresh_interval() -> float:
        """Get auto-refresh loop interval in seconds."""
        return float(os.getenv("SOLBOOKS_AUTO_REFRESH_INTERVAL_SECONDS", "300"))

    @staticmethod
    def get_connected_address() -> Optional[str]:
        """Get the connected wallet address, if one is configured."""
        return os.getenv("SOLBOOKS_CONNECTED_ADDRESS") or None

    @staticmethod
    def validate_config() -> tuple[bool, list[str]]:
        """
        Validate the current configuration.

        Returns:
            Tuple of (is_valid, list_of_warnings)
        """
        warnings = []
        is_valid = True

        rpc_url = LedgerConfig.get_rpc_url()
        if not rpc_url.startswith(("http://", "https://")):
            warnings.append(f"RPC URL is not an HTTP(S) endpoint: {rpc_url}")
            is_valid = False
        elif "devnet" in rpc_url:
            warnings.append("Using Solana devnet RPC. Set SOLBOOKS_RPC_URL for mainnet data.")

        if LedgerConfig.get_transaction_batch_size() < 1 or LedgerConfig.get_token_batch_size() < 1:
            warnings.append("Batch sizes must be at least 1")
            is_valid = False

        if LedgerConfig.get_queue_max_retries() < 0 or LedgerConfig.get_price_max_retries() < 1:
            warnings.append("Retry counts are out of range")
            is_valid = False

        if LedgerConfig.get_max_token_decimals() > 255:
            warnings.append("SOLBOOKS_MAX_TOKEN_DECIMALS above 255 has no effect on Solana mints")

        if LedgerConfig.get_redis_enabled() and not LedgerConfig.get_redis_url().startswith("redis://"):
            warnings.append(f"Invalid Redis URL format: {LedgerConfig.get_redis_url()}")

        if not LedgerConfig.get_redis_enabled():
            warnings.append("REDIS_ENABLED is false. Records are kept in memory only.")

        return is_valid, warnings

    @staticmethod
    def print_config_summary():
        """Print a summary of current configuration."""
        print("=" * 70)
        print("SolBooks Configuration Summary")
        print("=" * 70)
        print(f"RPC URL: {LedgerConfig.get_rpc_url().split('?')[0]}")
        print(f"RPC API Key: {'Set' if LedgerConfig.get_rpc_api_key() else 'Not set'}")
        print(f"RPC Timeout: {LedgerConfig.get_rpc_timeout_seconds()}s")
        print(f"Native Signatures/Wallet: {LedgerConfig.get_native_signature_limit()}")
        print(f"Token Accounts/Wallet: {LedgerConfig.get_token_accounts_max()}")
        print(f"Queue Retries: {LedgerConfig.get_queue_max_retries()}")
        print(f"Price API: {LedgerConfig.get_price_api_url()}")
        print(f"Price Cache TTL: {LedgerConfig.get_price_cache_ttl():.0f}s")
        print(f"Redis: {'Enabled' if LedgerConfig.get_redis_enabled() else 'Disabled'}")
        print("=" * 70)

        is_valid, warnings = LedgerConfig.validate_config()
        if warnings:
            print("\nConfiguration Warnings:")
            for warning in warnings:
                print(f"  ⚠️  {warning}")
        else:
            print("\n✓ Configuration looks good!")
