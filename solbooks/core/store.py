"""
Key-value persistence for records, wallets and preferences.

KeyValueStore is a Redis client with an in-memory fallback. If Redis is
disabled or unreachable, data lives in process memory, so the ledger keeps
working (without persistence across restarts). LedgerStore layers JSON
serialization and the ``solbooks_*`` key layout on top.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import redis

from ..config import LedgerConfig
from .models import CurrencyPreference, Record, TokenFilter, WalletConfig

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0.0"


class KeyValueStore:
    """
    Redis client wrapper with in-memory fallback.

    Values are plain strings; callers handle serialization.
    """

    def __init__(self, redis_url: Optional[str] = None, enabled: Optional[bool] = None):
        """
        Initialize the store.

        Args:
            redis_url: Redis connection URL (defaults to config)
            enabled: Whether Redis is enabled (defaults to config)
        """
        if enabled is None:
            enabled = LedgerConfig.get_redis_enabled()
        self.enabled = enabled

        self.redis_url = redis_url or LedgerConfig.get_redis_url()
        self.redis_client: Optional[redis.Redis] = None
        self._fallback: Dict[str, str] = {}

        if self.enabled:
            try:
                if not self.redis_url.startswith(("redis://", "rediss://", "unix://")):
                    raise ValueError(f"Invalid Redis URL format: {self.redis_url}")
                self.redis_client = redis.Redis.from_url(
                    self.redis_url,
                    decode_responses=True,
                    socket_connect_timeout=2,
                    socket_timeout=2,
                )
                self.redis_client.ping()
                logger.info("Redis store initialized successfully")
            except (redis.RedisError, ValueError) as e:
                logger.warning(f"Failed to connect to Redis: {e}. Using in-memory store.")
                self.enabled = False
                self.redis_client = None
        else:
            logger.debug("Redis disabled, using in-memory store")

    def get(self, key: str) -> Optional[str]:
        """Get a value, or None if absent."""
        if self.enabled and self.redis_client:
            try:
                return self.redis_client.get(key)
            except redis.RedisError as e:
                logger.warning(f"Redis get failed for key {key}: {e}, using in-memory store")
        return self._fallback.get(key)

    def set(self, key: str, value: str):
        """Set a value."""
        if self.enabled and self.redis_client:
            try:
                self.redis_client.set(key, value)
                return
            except redis.RedisError as e:
                logger.warning(f"Redis set failed for key {key}: {e}, using in-memory store")
        self._fallback[key] = value

    def delete(self, key: str):
        """Delete a key if present."""
        if self.enabled and self.redis_client:
            try:
                self.redis_client.delete(key)
                return
            except redis.RedisError as e:
                logger.warning(f"Redis delete failed for key {key}: {e}")
        self._fallback.pop(key, None)

    def is_available(self) -> bool:
        """Check if Redis is available and working."""
        if not self.enabled or not self.redis_client:
            return False
        try:
            self.redis_client.ping()
            return True
        except redis.RedisError:
            return False


class LedgerStore:
    """
    Typed persistence for the ledger.

    Loaders never raise on corrupt data: they log and return the empty
    default, mirroring how a browser-local store degrades.
    """

    def __init__(self, kv: Optional[KeyValueStore] = None, namespace: str = "solbooks"):
        self.kv = kv if kv is not None else KeyValueStore()
        self.namespace = namespace

    def _key(self, name: str) -> str:
        return f"{self.namespace}_{name}"

    def _load_json(self, name: str) -> Any:
        raw = self.kv.get(self._key(name))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.error(f"Failed to decode {self._key(name)}: {e}")
            return None

    def _save_json(self, name: str, value: Any):
        self.kv.set(self._key(name), json.dumps(value))

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def load_records(self) -> List[Record]:
        data = self._load_json("transactions") or []
        records: List[Record] = []
        for item in data:
            try:
                records.append(Record.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Skipping unreadable stored record: {e}")
        return records

    def save_records(self, records: List[Record]):
        self._save_json("transactions", [r.to_dict() for r in records])

    # ------------------------------------------------------------------
    # Wallets and settings
    # ------------------------------------------------------------------

    def load_wallet_list(self) -> List[WalletConfig]:
        data = self._load_json("wallet_configs") or []
        wallets = []
        for item in data:
            try:
                wallets.append(WalletConfig.from_dict(item))
            except (KeyError, TypeError) as e:
                logger.error(f"Skipping unreadable wallet config: {e}")
        return wallets

    def save_wallet_list(self, wallets: List[WalletConfig]):
        self._save_json("wallet_configs", [w.to_dict() for w in wallets])

    def load_auto_refresh_flag(self) -> bool:
        """Auto refresh defaults to disabled."""
        return bool(self._load_json("auto_refresh") or False)

    def save_auto_refresh_flag(self, enabled: bool):
        self._save_json("auto_refresh", bool(enabled))

    def load_currency_preference(self) -> CurrencyPreference:
        data = self._load_json("currency_preference")
        if not isinstance(data, dict):
            return CurrencyPreference()
        try:
            return CurrencyPreference.from_dict(data)
        except ValueError as e:
            logger.error(f"Failed to load currency preference: {e}")
            return CurrencyPreference()

    def save_currency_preference(self, preference: CurrencyPreference):
        self._save_json("currency_preference", preference.to_dict())

    def load_token_filter(self) -> TokenFilter:
        data = self._load_json("token_filter")
        return TokenFilter.from_dict(data) if isinstance(data, dict) else TokenFilter()

    def save_token_filter(self, token_filter: TokenFilter):
        self._save_json("token_filter", token_filter.to_dict())

    # ------------------------------------------------------------------
    # Export / import / reset
    # ------------------------------------------------------------------

    def export_data(self) -> str:
        """Serialize everything the ledger persists into one JSON document."""
        data = {
            "transactions": [r.to_dict() for r in self.load_records()],
            "walletConfigs": [w.to_dict() for w in self.load_wallet_list()],
            "currencyPreference": self.load_currency_preference().to_dict(),
            "autoRefresh": self.load_auto_refresh_flag(),
            "version": EXPORT_VERSION,
            "exportDate": datetime.now(timezone.utc).isoformat(),
        }
        return json.dumps(data, indent=2)

    def import_data(self, json_data: str) -> Dict[str, Any]:
        """
        Replace persisted data with an exported document.

        Returns:
            {"success": bool, "error": optional message}
        """
        try:
            data = json.loads(json_data)
        except ValueError:
            return {"success": False, "error": "Failed to parse JSON data"}

        if not isinstance(data, dict) or "transactions" not in data or "walletConfigs" not in data:
            return {"success": False, "error": "Invalid data format"}

        try:
            records = [Record.from_dict(item) for item in data["transactions"]]
            wallets = [WalletConfig.from_dict(item) for item in data["walletConfigs"]]
            preference = (
                CurrencyPreference.from_dict(data["currencyPreference"])
                if data.get("currencyPreference") else None
            )
        except (KeyError, TypeError, ValueError) as e:
            return {"success": False, "error": f"Invalid data format: {e}"}

        self.save_records(records)
        self.save_wallet_list(wallets)
        if preference is not None:
            self.save_currency_preference(preference)
        if "autoRefresh" in data:
            self.save_auto_refresh_flag(bool(data["autoRefresh"]))
        return {"success": True}

    def clear_all_data(self):
        """Wholesale reset; the only path that removes records."""
        for name in ("transactions", "wallet_configs", "auto_refresh", "currency_preference", "token_filter"):
            self.kv.delete(self._key(name))
