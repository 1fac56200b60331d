"""
Price oracle client with caching, validation and static fallback.

``PriceFetcher.get_rates`` always answers: a fresh cache is returned as is,
otherwise the oracle is asked once per attempt (retrying rate limits and
transient failures with backoff), implausible quotes are replaced per asset
with static rates, and total failure yields the full static table.
"""

import asyncio
import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

import aiohttp

from .backoff import calculate_backoff_delay
from .decimal_utils import parse_finite_decimal
from .errors import PriceOracleError
from .log_redaction import redact
from .price_cache import PriceCache, STATIC_FALLBACK_RATES
from .tokens import PRICE_BASKET

if TYPE_CHECKING:
    from .context import RefreshSettings

logger = logging.getLogger(__name__)


class PriceFetcher:
    """Fetches USD unit prices for a fixed asset basket through a PriceCache."""

    def __init__(
        self,
        cache: PriceCache,
        settings: Optional["RefreshSettings"] = None,
        session: Optional[aiohttp.ClientSession] = None,
        basket: Optional[Dict[str, str]] = None,
        fallback_rates: Optional[Dict[str, Decimal]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the fetcher.

        Args:
            cache: Price cache to read and replace
            settings: RefreshSettings providing URL, timeout, retries and bounds
            session: Optional aiohttp session (for connection pooling)
            basket: Symbol -> oracle id map (defaults to PRICE_BASKET)
            fallback_rates: Static symbol -> USD table
            sleep: Awaitable sleep (injectable for tests)
        """
        if settings is None:
            from .context import RefreshSettings
            settings = RefreshSettings()
        self.cache = cache
        self.settings = settings
        self.basket = dict(basket or PRICE_BASKET)
        self.fallback_rates = dict(fallback_rates or STATIC_FALLBACK_RATES)
        self._sleep = sleep
        self._session = session
        self._own_session = False
        self.last_used_fallback = False

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

    async def get_rates(self) -> Dict[str, Decimal]:
        """
        Return symbol -> USD price, refreshing the cache when stale.

        Never raises: oracle failures degrade to the static fallback table.
        """
        if self.cache.is_fresh():
            return self.cache.get()

        try:
            payload = await self._fetch_with_retry()
        except PriceOracleError as e:
            logger.warning(f"Price oracle unavailable, using static rates: {redact(str(e))}")
            payload = None

        if payload is None:
            rates = dict(self.fallback_rates)
            self.last_used_fallback = True
        else:
            rates = self._validate(payload)
            self.last_used_fallback = False

        self.cache.replace(rates)
        return dict(rates)

    async def _fetch_with_retry(self) -> Dict[str, Any]:
        """
        Query the oracle, retrying up to ``price_max_retries`` attempts.

        Raises:
            PriceOracleError: when every attempt failed, or at once for a
                non-retryable failure
        """
        attempts = max(1, self.settings.price_max_retries)
        last_error: Optional[PriceOracleError] = None
        for attempt in range(attempts):
            try:
                return await self._fetch_once()
            except PriceOracleError as e:
                if not e.retryable:
                    raise
                last_error = e
                if attempt == attempts - 1:
                    break
                delay = calculate_backoff_delay(
                    attempt,
                    self.settings.price_retry_base_delay,
                    self.settings.price_retry_max_delay,
                    self.settings.backoff_jitter,
                )
                reason = "rate limited" if e.rate_limited else "failed"
                logger.info(f"Price oracle {reason} (attempt {attempt + 1}/{attempts}), retrying in {delay:.1f}s")
                await self._sleep(delay)
        raise PriceOracleError(f"Price oracle failed after {attempts} attempts: {last_error}")

    async def _fetch_once(self) -> Dict[str, Any]:
        """
        One GET against the oracle for the whole basket.

        Raises:
            PriceOracleError: on non-2xx status, timeout, transport error or malformed JSON.
                Only 429, 5xx, timeouts and transport errors are retryable.
        """
        session = await self._get_session()
        params = {"ids": ",".join(self.basket.values())}
        try:
            async with session.get(
                self.settings.price_api_url,
                params=params,
                timeout=aiohttp.ClientTimeout(total=self.settings.price_timeout),
            ) as response:
                if response.status == 429:
                    raise PriceOracleError("rate limited", status=429)
                if not 200 <= response.status < 300:
                    raise PriceOracleError(f"HTTP {response.status}", status=response.status)
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PriceOracleError(f"request failed: {e!r}", retryable=True) from e
        except ValueError as e:
            raise PriceOracleError(f"malformed JSON: {e}") from e

        if not isinstance(data, dict):
            raise PriceOracleError("malformed response body")
        body = data.get("data", data)
        if not isinstance(body, dict):
            raise PriceOracleError("malformed response body")
        return body

    def _validate(self, payload: Dict[str, Any]) -> Dict[str, Decimal]:
        """
        Keep each quote that is a finite number within bounds.

        Bad or missing quotes fall back per asset, so one junk entry does not
        discard the rest of the response.
        """
        rates: Dict[str, Decimal] = {}
        for symbol, oracle_id in self.basket.items():
            entry = payload.get(oracle_id)
            price = parse_finite_decimal(entry.get("price")) if isinstance(entry, dict) else None
            if price is None or not (self.settings.min_price <= price <= self.settings.max_price):
                fallback = self.fallback_rates.get(symbol)
                if fallback is None:
                    logger.warning(f"Dropping {symbol}: invalid quote {entry!r} and no static rate")
                    continue
                logger.warning(f"Invalid price for {symbol} ({entry!r}), using static rate {fallback}")
                rates[symbol] = fallback
            else:
                rates[symbol] = price

        # Fallback-table symbols outside the basket keep their static value
        for symbol, fallback in self.fallback_rates.items():
            rates.setdefault(symbol, fallback)
        return rates
