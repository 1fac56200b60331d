"""
Currency conversion and display formatting.

Amounts are converted to the user's base currency (SOL or USD) through USD
unit prices keyed by asset symbol, as returned by ``PriceFetcher.get_rates``.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional

from .decimal_utils import safe_decimal_divide
from .models import AssetDescriptor, CurrencyPreference
from .price_cache import STATIC_FALLBACK_RATES


def get_exchange_rate(symbol: str, rates: Optional[Dict[str, Decimal]] = None) -> Decimal:
    """USD price of one unit of ``symbol``, or 0 if unknown."""
    rates = rates if rates is not None else STATIC_FALLBACK_RATES
    return rates.get(symbol, Decimal("0"))


def convert_to_base_currency(
    amount: Decimal,
    asset: AssetDescriptor,
    preference: CurrencyPreference,
    rates: Optional[Dict[str, Decimal]] = None,
) -> Decimal:
    """
    Convert an asset amount to the preferred base currency.

    Args:
        amount: Amount in asset units
        asset: Asset the amount is denominated in
        preference: Holds the base currency (SOL or USD)
        rates: Symbol -> USD price (static table when omitted)

    Returns:
        Converted amount; unknown assets convert to 0
    """
    usd_value = amount * get_exchange_rate(asset.symbol, rates)
    if preference.base_currency == "USD":
        return usd_value
    if asset.symbol == "SOL":
        return amount
    sol_rate = get_exchange_rate("SOL", rates) or STATIC_FALLBACK_RATES["SOL"]
    return safe_decimal_divide(usd_value, sol_rate)


def format_currency_amount(amount: Decimal, base_currency: str) -> str:
    """Render an amount as ``$1,234.50`` (USD, 2 to 6 decimals) or ``1.500000 SOL``."""
    if base_currency == "USD":
        quantized = amount.quantize(Decimal("0.000001"), rounding=ROUND_HALF_UP).normalize()
        exponent = -quantized.as_tuple().exponent if quantized.as_tuple().exponent < 0 else 0
        places = min(max(exponent, 2), 6)
        sign = "-" if quantized < 0 else ""
        return f"{sign}${abs(quantized):,.{places}f}"
    return f"{amount:.6f} SOL"


def format_amount_with_currency(
    amount: Decimal,
    asset: AssetDescriptor,
    preference: CurrencyPreference,
    rates: Optional[Dict[str, Decimal]] = None,
    show_original: bool = False,
) -> str:
    """Converted amount followed by the original, e.g. ``$150.00 (1.500000 SOL)``."""
    original = f"{amount:.{min(asset.decimals, 6)}f} {asset.symbol}"
    if show_original or (preference.base_currency == "SOL" and asset.symbol == "SOL"):
        return original
    converted = convert_to_base_currency(amount, asset, preference, rates)
    return f"{format_currency_amount(converted, preference.base_currency)} ({original})"
