"""
Data models for the ledger core.

This module defines the records produced by the ledger fetchers, the
bookkeeping entries owned by the address queue and signature cache, and the
user preferences persisted alongside them.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .decimal_utils import float_to_decimal


NATIVE_MINT = "native"
DEFAULT_CATEGORY = "Uncategorized"


class Direction(Enum):
    """Signed direction of an asset movement relative to the monitored address."""
    INFLOW = "income"
    OUTFLOW = "expense"


class RecordStatus(Enum):
    """Processing status of the underlying transaction."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class AssetDescriptor:
    """Display metadata for a native or SPL asset."""
    mint: str
    symbol: str
    name: str
    decimals: int
    logo_uri: Optional[str] = None

    @property
    def is_native(self) -> bool:
        return self.mint == NATIVE_MINT

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "mint": self.mint,
            "symbol": self.symbol,
            "name": self.name,
            "decimals": self.decimals,
        }
        if self.logo_uri:
            data["logoURI"] = self.logo_uri
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssetDescriptor":
        return cls(
            mint=data["mint"],
            symbol=data.get("symbol", ""),
            name=data.get("name", ""),
            decimals=int(data.get("decimals", 0)),
            logo_uri=data.get("logoURI"),
        )


def make_record_id(signature: str, mint: str) -> str:
    """Derive the record identifier from a signature and asset mint."""
    return f"{signature}-{mint}"


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class Record:
    """
    A canonical, user-classifiable ledger entry.

    One record describes one asset movement within one transaction. The pair
    (signature, asset.mint) is unique within the canonical set, so the native
    and token movements of a single transaction are distinct records.
    """
    id: str
    signature: str
    direction: Direction
    amount: Decimal
    asset: AssetDescriptor
    timestamp: datetime
    address: str
    category: str = DEFAULT_CATEGORY
    description: str = ""
    notes: Optional[str] = None
    status: RecordStatus = RecordStatus.CONFIRMED
    classified: bool = False

    def __post_init__(self):
        """Coerce loosely typed fields coming from storage."""
        if isinstance(self.direction, str):
            self.direction = Direction(self.direction)
        if isinstance(self.status, str):
            self.status = RecordStatus(self.status)
        if not isinstance(self.amount, Decimal):
            self.amount = float_to_decimal(self.amount)
        if self.amount < 0:
            raise ValueError(f"Record amount must be non-negative, got {self.amount}")
        self.timestamp = _parse_timestamp(self.timestamp)

    @property
    def key(self) -> Tuple[str, str]:
        """Reconciliation key: (transaction signature, asset identifier)."""
        return (self.signature, self.asset.mint)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.direction == Direction.INFLOW else -self.amount

    def with_user_fields(self, other: "Record") -> "Record":
        """Return a copy carrying the user-owned fields of ``other``."""
        return replace(
            self,
            category=other.category,
            notes=other.notes,
            classified=other.classified,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the storage key names of the original data format."""
        data: Dict[str, Any] = {
            "id": self.id,
            "signature": self.signature,
            "amount": str(self.amount),
            "type": self.direction.value,
            "category": self.category,
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "fromAddress": self.address,
            "classified": self.classified,
            "token": self.asset.to_dict(),
        }
        if self.notes is not None:
            data["notes"] = self.notes
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Record":
        """
        Build a record from stored data.

        Records written before token support carry no ``token`` entry and are
        treated as native SOL movements.
        """
        from .tokens import SOL_TOKEN

        token = data.get("token")
        asset = AssetDescriptor.from_dict(token) if token else SOL_TOKEN
        signature = data["signature"]
        return cls(
            id=data.get("id") or make_record_id(signature, asset.mint),
            signature=signature,
            direction=Direction(data.get("type", Direction.INFLOW.value)),
            amount=float_to_decimal(data.get("amount")),
            asset=asset,
            timestamp=data["timestamp"],
            address=data.get("fromAddress", ""),
            category=data.get("category", DEFAULT_CATEGORY),
            description=data.get("description", ""),
            notes=data.get("notes"),
            status=RecordStatus(data.get("status", RecordStatus.CONFIRMED.value)),
            classified=bool(data.get("classified", False)),
        )


@dataclass
class WalletConfig:
    """A monitored wallet as configured by the user."""
    address: str
    name: str
    is_active: bool = True
    balance: Decimal = Decimal("0")
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = self.address
        if not isinstance(self.balance, Decimal):
            self.balance = float_to_decimal(self.balance)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "address": self.address,
            "name": self.name,
            "isActive": self.is_active,
            "balance": str(self.balance),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WalletConfig":
        return cls(
            id=data.get("id", ""),
            address=data["address"],
            name=data.get("name", data["address"][:8]),
            is_active=bool(data.get("isActive", True)),
            balance=float_to_decimal(data.get("balance")),
        )


@dataclass
class QueueEntry:
    """
    One unit of work in the address queue.

    Owned exclusively by the queue; ``attempts`` and ``last_error`` are mutated
    on failure, and the entry is dropped on success or after retries run out.
    """
    address: str
    task: Callable[[], Awaitable[List[Record]]]
    label: str = ""
    attempts: int = 0
    last_error: Optional[BaseException] = None


@dataclass
class CacheEntry:
    """Bookkeeping for one processed signature."""
    signature: str
    first_seen: float
    access_count: int = 1
    last_access: float = 0.0

    def __post_init__(self):
        if not self.last_access:
            self.last_access = self.first_seen

    def importance(self, now: float) -> float:
        """Eviction score: access count weighted by time since last access."""
        return self.access_count * (now - self.last_access)


@dataclass
class CurrencyPreference:
    """Reference currency used to display record amounts."""
    base_currency: str = "SOL"  # SOL or USD
    exchange_rates: Dict[str, Decimal] = field(default_factory=dict)
    last_updated: Optional[datetime] = None

    def __post_init__(self):
        if self.base_currency not in ("SOL", "USD"):
            raise ValueError(f"Unsupported base currency: {self.base_currency}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "baseCurrency": self.base_currency,
            "exchangeRates": {k: str(v) for k, v in self.exchange_rates.items()},
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CurrencyPreference":
        last_updated = data.get("lastUpdated")
        return cls(
            base_currency=data.get("baseCurrency", "SOL"),
            exchange_rates={
                k: float_to_decimal(v) for k, v in (data.get("exchangeRates") or {}).items()
            },
            last_updated=_parse_timestamp(last_updated) if last_updated else None,
        )


@dataclass
class TokenFilter:
    """Restricts the visible record set to selected asset mints."""
    enabled: bool = False
    selected_tokens: List[str] = field(default_factory=lambda: [NATIVE_MINT])

    def matches(self, record: Record) -> bool:
        return not self.enabled or record.asset.mint in self.selected_tokens

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "selectedTokens": list(self.selected_tokens)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenFilter":
        return cls(
            enabled=bool(data.get("enabled", False)),
            selected_tokens=list(data.get("selectedTokens") or [NATIVE_MINT]),
        )


@dataclass
class RefreshStats:
    """Statistics for one refresh run."""
    wallets_queued: int = 0
    wallets_skipped: int = 0
    tasks_processed: int = 0
    tasks_failed: int = 0
    candidates: int = 0
    records_total: int = 0
    price_fallback: bool = False
    time_taken_seconds: float = 0.0
