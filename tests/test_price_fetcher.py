"""
Tests for price caching, validation and static fallback.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from solbooks.core.errors import PriceOracleError
from solbooks.core.price_cache import PriceCache, STATIC_FALLBACK_RATES
from solbooks.core.price_client import PriceFetcher
from solbooks.core.tokens import PRICE_BASKET, USDC_MINT, WSOL_MINT

from tests.conftest import SleepRecorder, fast_settings


def quote_payload(**overrides):
    """Oracle body quoting every basket asset at its static rate."""
    body = {mint: {"id": mint, "price": str(STATIC_FALLBACK_RATES[symbol])} for symbol, mint in PRICE_BASKET.items()}
    body.update(overrides)
    return body


def make_fetcher(cache=None, **settings):
    sleep = SleepRecorder()
    fetcher = PriceFetcher(cache or PriceCache(), settings=fast_settings(**settings), sleep=sleep)
    return fetcher, sleep


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestPriceCache:

    def test_fresh_within_ttl(self):
        clock = FakeClock()
        cache = PriceCache(ttl_seconds=300, clock=clock)
        assert not cache.is_fresh()
        cache.replace({"SOL": Decimal("100")})
        clock.now = 299
        assert cache.is_fresh()
        clock.now = 300
        assert not cache.is_fresh()

    def test_empty_map_is_never_fresh(self):
        cache = PriceCache()
        cache.replace({})
        assert not cache.is_fresh()

    def test_oversized_map_resets_on_next_access(self):
        cache = PriceCache(max_size=2)
        cache.replace({"A": Decimal(1), "B": Decimal(2), "C": Decimal(3)})
        assert cache.entry_count == 3
        assert cache.get() == {}
        assert cache.entry_count == 0
        assert cache.last_refresh is None


class TestPriceFetcher:

    def test_valid_quotes_are_used(self):
        fetcher, _ = make_fetcher()
        payload = quote_payload(**{WSOL_MINT: {"price": "150.25"}})
        with patch.object(PriceFetcher, "_fetch_once", AsyncMock(return_value=payload)):
            rates = asyncio.run(fetcher.get_rates())

        assert rates["SOL"] == Decimal("150.25")
        assert rates["USDC"] == Decimal("1")
        assert not fetcher.last_used_fallback

    def test_fresh_cache_skips_network(self):
        cache = PriceCache()
        cache.replace({"SOL": Decimal("123")})
        fetcher, _ = make_fetcher(cache)
        with patch.object(PriceFetcher, "_fetch_once", AsyncMock()) as fetch:
            rates = asyncio.run(fetcher.get_rates())
        fetch.assert_not_called()
        assert rates == {"SOL": Decimal("123")}

    def test_three_timeouts_fall_back_to_static_table(self):
        """Three consecutive oracle timeouts with max_retries=3 yield the full static table."""
        fetcher, sleep = make_fetcher(price_max_retries=3)
        failing = AsyncMock(side_effect=PriceOracleError("request failed: TimeoutError()", retryable=True))
        with patch.object(PriceFetcher, "_fetch_once", failing):
            rates = asyncio.run(fetcher.get_rates())

        assert failing.await_count == 3
        assert len(sleep.calls) == 2
        assert rates == STATIC_FALLBACK_RATES
        assert fetcher.last_used_fallback
        assert fetcher.cache.get() == STATIC_FALLBACK_RATES

    def test_rate_limit_then_success(self):
        fetcher, sleep = make_fetcher(price_max_retries=3)
        flaky = AsyncMock(side_effect=[PriceOracleError("rate limited", status=429), quote_payload()])
        with patch.object(PriceFetcher, "_fetch_once", flaky):
            rates = asyncio.run(fetcher.get_rates())

        assert flaky.await_count == 2
        assert len(sleep.calls) == 1
        assert not fetcher.last_used_fallback
        assert rates["BTC"] == STATIC_FALLBACK_RATES["BTC"]

    def test_bad_quotes_fall_back_per_asset(self):
        fetcher, _ = make_fetcher()
        payload = quote_payload(**{
            WSOL_MINT: {"price": "1e12"},      # above max price
            USDC_MINT: {"price": "NaN"},
        })
        del payload[PRICE_BASKET["JUP"]]
        payload[PRICE_BASKET["ETH"]] = {"price": "3100"}

        with patch.object(PriceFetcher, "_fetch_once", AsyncMock(return_value=payload)):
            rates = asyncio.run(fetcher.get_rates())

        assert rates["SOL"] == STATIC_FALLBACK_RATES["SOL"]
        assert rates["USDC"] == STATIC_FALLBACK_RATES["USDC"]
        assert rates["JUP"] == STATIC_FALLBACK_RATES["JUP"]
        assert rates["ETH"] == Decimal("3100")
        assert not fetcher.last_used_fallback

    def test_below_min_price_is_rejected(self):
        fetcher, _ = make_fetcher()
        payload = quote_payload(**{PRICE_BASKET["BONK"]: {"price": "0.00000001"}})
        with patch.object(PriceFetcher, "_fetch_once", AsyncMock(return_value=payload)):
            rates = asyncio.run(fetcher.get_rates())
        assert rates["BONK"] == STATIC_FALLBACK_RATES["BONK"]

    def test_result_always_covers_fallback_symbols(self):
        fetcher, _ = make_fetcher()
        with patch.object(PriceFetcher, "_fetch_once", AsyncMock(return_value={})):
            rates = asyncio.run(fetcher.get_rates())
        assert set(STATIC_FALLBACK_RATES) <= set(rates)


def mock_session(status=200, payload=None, json_error=None, get_error=None):
    """Build a session whose ``get`` yields the same canned response every time."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload, side_effect=json_error)

    session = MagicMock()
    if get_error is not None:
        session.get.side_effect = get_error
    else:
        session.get.return_value.__aenter__.return_value = response
        session.get.return_value.__aexit__.return_value = False
    return session


def make_http_fetcher(session, **settings):
    sleep = SleepRecorder()
    fetcher = PriceFetcher(PriceCache(), settings=fast_settings(**settings), session=session, sleep=sleep)
    return fetcher, sleep


class TestPriceFetcherHttp:

    def test_data_envelope_is_unwrapped(self):
        session = mock_session(payload={"data": quote_payload(**{WSOL_MINT: {"price": "150"}})})
        fetcher, _ = make_http_fetcher(session)

        rates = asyncio.run(fetcher.get_rates())

        assert rates["SOL"] == Decimal("150")
        assert not fetcher.last_used_fallback
        params = session.get.call_args.kwargs["params"]
        assert WSOL_MINT in params["ids"].split(",")

    def test_bare_body_is_accepted(self):
        fetcher, _ = make_http_fetcher(mock_session(payload=quote_payload(**{WSOL_MINT: {"price": "99"}})))
        assert asyncio.run(fetcher.get_rates())["SOL"] == Decimal("99")

    @pytest.mark.parametrize("status", [400, 401, 404])
    def test_client_errors_are_not_retried(self, status):
        session = mock_session(status=status)
        fetcher, sleep = make_http_fetcher(session, price_max_retries=3)

        rates = asyncio.run(fetcher.get_rates())

        assert session.get.call_count == 1
        assert sleep.calls == []
        assert rates == STATIC_FALLBACK_RATES
        assert fetcher.last_used_fallback

    @pytest.mark.parametrize("status", [429, 503])
    def test_rate_limits_and_server_errors_are_retried(self, status):
        session = mock_session(status=status)
        fetcher, sleep = make_http_fetcher(session, price_max_retries=3)

        rates = asyncio.run(fetcher.get_rates())

        assert session.get.call_count == 3
        assert len(sleep.calls) == 2
        assert rates == STATIC_FALLBACK_RATES

    def test_timeout_is_retried(self):
        session = mock_session(get_error=asyncio.TimeoutError())
        fetcher, sleep = make_http_fetcher(session, price_max_retries=3)
        rates = asyncio.run(fetcher.get_rates())
        assert session.get.call_count == 3
        assert len(sleep.calls) == 2
        assert fetcher.last_used_fallback
        assert rates == STATIC_FALLBACK_RATES

    def test_transport_error_is_retried(self):
        session = mock_session(get_error=aiohttp.ClientConnectionError("reset"))
        fetcher, _ = make_http_fetcher(session, price_max_retries=2)
        asyncio.run(fetcher.get_rates())
        assert session.get.call_count == 2

    def test_malformed_json_falls_back_without_retry(self):
        session = mock_session(json_error=ValueError("Expecting value"))
        fetcher, sleep = make_http_fetcher(session, price_max_retries=3)
        assert asyncio.run(fetcher.get_rates()) == STATIC_FALLBACK_RATES
        assert session.get.call_count == 1
        assert sleep.calls == []

    @pytest.mark.parametrize("payload", [[1, 2], "prices", {"data": ["not", "a", "map"]}])
    def test_non_object_body_falls_back_without_retry(self, payload):
        session = mock_session(payload=payload)
        fetcher, _ = make_http_fetcher(session, price_max_retries=3)
        assert asyncio.run(fetcher.get_rates()) == STATIC_FALLBACK_RATES
        assert session.get.call_count == 1

    def test_status_mapping_on_single_fetch(self):
        fetcher, _ = make_http_fetcher(mock_session(status=429))
        with pytest.raises(PriceOracleError) as exc_info:
            asyncio.run(fetcher._fetch_once())
        assert exc_info.value.rate_limited
        assert exc_info.value.retryable

        fetcher, _ = make_http_fetcher(mock_session(status=404))
        with pytest.raises(PriceOracleError) as exc_info:
            asyncio.run(fetcher._fetch_once())
        assert exc_info.value.status == 404
        assert not exc_info.value.retryable

    def test_timeout_becomes_oracle_error(self):
        fetcher, _ = make_http_fetcher(mock_session(get_error=asyncio.TimeoutError()))
        with pytest.raises(PriceOracleError) as exc_info:
            asyncio.run(fetcher._fetch_once())
        assert exc_info.value.retryable
        assert isinstance(exc_info.value.__cause__, asyncio.TimeoutError)
