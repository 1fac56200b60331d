"""
Error taxonomy for the ledger core.

Errors whose ``retryable`` flag is set (RpcError, RateLimitedError and
transient PriceOracleError) are retried by the address queue or price
fetcher. Precondition failures (InvalidAddressError) are not retried and skip
only the offending address. None of them escape
``LedgerService.refresh``.
"""

from typing import Optional


class LedgerError(Exception):
    """Base class for ledger core errors."""

    retryable = False


class RpcError(LedgerError):
    """Blockchain RPC call failed (transport error, HTTP error or JSON-RPC error)."""

    retryable = True

    def __init__(self, message: str, method: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.method = method
        self.status = status


class RateLimitedError(RpcError):
    """Upstream answered HTTP 429."""

    def __init__(self, message: str, method: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(message, method=method, status=429)
        self.retry_after = retry_after


class InvalidAddressError(LedgerError):
    """Address is not a plausible base58 Solana public key."""

    def __init__(self, address: str):
        super().__init__(f"Invalid Solana address: {address!r}")
        self.address = address


class PriceOracleError(LedgerError):
    """
    Price oracle request failed or returned an unusable payload.

    Only rate limits, 5xx answers and transport failures are retryable; other
    4xx statuses and malformed bodies are not.
    """

    def __init__(self, message: str, status: Optional[int] = None, retryable: Optional[bool] = None):
        super().__init__(message)
        self.status = status
        if retryable is None:
            retryable = status is not None and (status == 429 or status >= 500)
        self.retryable = retryable

    @property
    def rate_limited(self) -> bool:
        return self.status == 429
