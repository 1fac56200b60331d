"""
Solana JSON-RPC client for signature listing and transaction fetching.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp

from ..config import LedgerConfig
from .errors import InvalidAddressError, RateLimitedError, RpcError
from .log_redaction import redact
from .tokens import TOKEN_PROGRAM_ID

logger = logging.getLogger(__name__)

_BASE58_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


@dataclass
class SignatureInfo:
    """One entry of getSignaturesForAddress."""
    signature: str
    block_time: Optional[int] = None
    slot: Optional[int] = None
    err: Any = None

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "SignatureInfo":
        return cls(
            signature=data["signature"],
            block_time=data.get("blockTime"),
            slot=data.get("slot"),
            err=data.get("err"),
        )


@dataclass
class TokenAccount:
    """An SPL token account owned by a monitored wallet."""
    account_id: str
    mint: str
    decimals: Optional[int] = None


@dataclass
class LedgerTransaction:
    """
    Normalized view of a jsonParsed getTransaction result.

    ``parsed_instructions`` holds top-level instructions followed by inner
    instructions, since SPL transfers routed through other programs only show
    up as inner instructions.
    """
    signature: str
    accounts: List[str] = field(default_factory=list)
    pre_balances: List[int] = field(default_factory=list)
    post_balances: List[int] = field(default_factory=list)
    parsed_instructions: List[Dict[str, Any]] = field(default_factory=list)
    pre_token_balances: List[Dict[str, Any]] = field(default_factory=list)
    post_token_balances: List[Dict[str, Any]] = field(default_factory=list)
    block_time: Optional[int] = None
    err: Any = None

    @classmethod
    def from_rpc(cls, signature: str, data: Dict[str, Any]) -> "LedgerTransaction":
        meta = data.get("meta") or {}
        message = (data.get("transaction") or {}).get("message") or {}

        accounts: List[str] = []
        for key in message.get("accountKeys") or []:
            if isinstance(key, dict):
                accounts.append(key.get("pubkey", ""))
            else:
                accounts.append(str(key))

        # Non-parsed encodings list lookup-table addresses separately
        raw_keys = message.get("accountKeys") or []
        if raw_keys and not isinstance(raw_keys[0], dict):
            loaded = meta.get("loadedAddresses") or {}
            accounts.extend(loaded.get("writable") or [])
            accounts.extend(loaded.get("readonly") or [])

        instructions = [ix for ix in message.get("instructions") or [] if isinstance(ix, dict)]
        for inner in meta.get("innerInstructions") or []:
            instructions.extend(ix for ix in inner.get("instructions") or [] if isinstance(ix, dict))

        return cls(
            signature=signature,
            accounts=accounts,
            pre_balances=list(meta.get("preBalances") or []),
            post_balances=list(meta.get("postBalances") or []),
            parsed_instructions=instructions,
            pre_token_balances=list(meta.get("preTokenBalances") or []),
            post_token_balances=list(meta.get("postTokenBalances") or []),
            block_time=data.get("blockTime"),
            err=meta.get("err"),
        )


def is_valid_address(address: Any) -> bool:
    """Check that a value looks like a base58 Solana public key."""
    return isinstance(address, str) and bool(_BASE58_ADDRESS.match(address))


def ensure_valid_address(address: Any) -> str:
    """Return the address or raise InvalidAddressError."""
    if not is_valid_address(address):
        raise InvalidAddressError(address)
    return address


class SolanaRpcClient:
    """Client for the Solana JSON-RPC API."""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout_seconds: Optional[float] = None,
        rate_limit_delay: Optional[float] = None,
    ):
        """
        Initialize the RPC client.

        Args:
            rpc_url: JSON-RPC endpoint (falls back to config)
            session: Optional aiohttp session (for connection pooling)
            timeout_seconds: Total timeout per request
            rate_limit_delay: Minimum spacing between requests in seconds
        """
        self.rpc_url = rpc_url or LedgerConfig.get_rpc_url()
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else LedgerConfig.get_rpc_timeout_seconds()
        self.rate_limit_delay = (
            rate_limit_delay if rate_limit_delay is not None else LedgerConfig.get_rpc_rate_limit_delay()
        )
        self.last_request_time = 0.0
        self._lock: Optional[asyncio.Lock] = None
        self._request_id = 0
        self.api_calls_made = 0

        self._session = session
        self._own_session = False

    async def __aenter__(self) -> "SolanaRpcClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._own_session = True
        return self._session

    async def close(self):
        """Close session if we own it."""
        if self._own_session and self._session:
            await self._session.close()
            self._session = None
            self._own_session = False

    async def _rate_limit_async(self):
        """Space requests at least ``rate_limit_delay`` apart."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            time_since_last = time.monotonic() - self.last_request_time
            if time_since_last < self.rate_limit_delay:
                await asyncio.sleep(self.rate_limit_delay - time_since_last)
            self.last_request_time = time.monotonic()

    async def _call(self, method: str, params: List[Any]) -> Any:
        """
        Execute a JSON-RPC call and return its ``result`` field.

        Raises:
            RateLimitedError: HTTP 429
            RpcError: transport failure, non-200 status or JSON-RPC error
        """
        await self._rate_limit_async()
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        session = await self._get_session()
        try:
            async with session.post(
                self.rpc_url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                self.api_calls_made += 1
                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RateLimitedError(
                        f"{method} rate limited",
                        method=method,
                        retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                    )
                if response.status != 200:
                    raise RpcError(f"{method} returned HTTP {response.status}", method=method, status=response.status)
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            message = redact(f"{method} request failed: {e!r}")
            logger.debug(message)
            raise RpcError(message, method=method) from e

        if not isinstance(data, dict):
            raise RpcError(f"{method} returned a non-object response", method=method)
        if "error" in data and data["error"]:
            error = data["error"]
            msg = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise RpcError(f"Solana RPC error ({method}): {msg}", method=method)
        return data.get("result")

    async def list_signatures(
        self,
        address: str,
        limit: int = 50,
        before: Optional[str] = None,
    ) -> List[SignatureInfo]:
        """
        Fetch recent signatures for an address, newest first.

        Args:
            address: Wallet or token account address
            limit: Maximum signatures to return (RPC caps this at 1000)
            before: Optional pagination cursor

        Returns:
            List of SignatureInfo
        """
        ensure_valid_address(address)
        opts: Dict[str, Any] = {"limit": max(1, min(int(limit), 1000))}
        if before:
            opts["before"] = before
        result = await self._call("getSignaturesForAddress", [address, opts])
        if not result:
            return []
        return [SignatureInfo.from_rpc(item) for item in result if isinstance(item, dict) and item.get("signature")]

    async def get_transaction(self, signature: str) -> Optional[LedgerTransaction]:
        """
        Fetch a parsed transaction by signature.

        Returns:
            LedgerTransaction, or None if the node does not know the signature
        """
        opts = {
            "encoding": "jsonParsed",
            "maxSupportedTransactionVersion": 0,
            "commitment": "confirmed",
        }
        result = await self._call("getTransaction", [signature, opts])
        if not result:
            return None
        return LedgerTransaction.from_rpc(signature, result)

    async def list_token_accounts(self, owner: str, program_id: str = TOKEN_PROGRAM_ID) -> List[TokenAccount]:
        """
        Enumerate SPL token accounts owned by a wallet.

        Args:
            owner: Wallet address
            program_id: Token program to query

        Returns:
            List of TokenAccount with mint and on-chain decimals
        """
        ensure_valid_address(owner)
        result = await self._call(
            "getTokenAccountsByOwner",
            [owner, {"programId": program_id}, {"encoding": "jsonParsed"}],
        )
        accounts: List[TokenAccount] = []
        for item in (result or {}).get("value") or []:
            try:
                info = item["account"]["data"]["parsed"]["info"]
                decimals = (info.get("tokenAmount") or {}).get("decimals")
                accounts.append(
                    TokenAccount(
                        account_id=item["pubkey"],
                        mint=info["mint"],
                        decimals=int(decimals) if decimals is not None else None,
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed token account for {owner[:8]}...: {e}")
        return accounts

    async def get_balance(self, address: str) -> int:
        """Return the lamport balance of an address."""
        ensure_valid_address(address)
        result = await self._call("getBalance", [address])
        if isinstance(result, dict):
            result = result.get("value", 0)
        return int(result or 0)
