"""
Known token registry.

Maps SPL mint addresses to display metadata. Unknown mints get a synthesized
placeholder descriptor built from the mint and its on-chain precision.
"""

from typing import Dict, Optional

from .models import AssetDescriptor, NATIVE_MINT

_LOGO_BASE = "https://raw.githubusercontent.com/solana-labs/token-list/main/assets/mainnet"

WSOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
MSOL_MINT = "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So"
BONK_MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
JUP_MINT = "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN"
WETH_MINT = "7vfCXTUXx5WJV5JADk17DUJ4ksgau7utNKj4b963voxs"
WBTC_MINT = "3NZ9JMVBmGAqocybic2c7LQCJScmgsAZ6vQqTDzcqmJh"

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

SOL_TOKEN = AssetDescriptor(
    mint=NATIVE_MINT,
    symbol="SOL",
    name="Solana",
    decimals=9,
    logo_uri=f"{_LOGO_BASE}/{WSOL_MINT}/logo.png",
)

KNOWN_TOKENS: Dict[str, AssetDescriptor] = {
    WSOL_MINT: AssetDescriptor(WSOL_MINT, "SOL", "Wrapped SOL", 9, f"{_LOGO_BASE}/{WSOL_MINT}/logo.png"),
    USDC_MINT: AssetDescriptor(USDC_MINT, "USDC", "USD Coin", 6, f"{_LOGO_BASE}/{USDC_MINT}/logo.png"),
    USDT_MINT: AssetDescriptor(USDT_MINT, "USDT", "USDT", 6, f"{_LOGO_BASE}/{USDT_MINT}/logo.svg"),
    MSOL_MINT: AssetDescriptor(MSOL_MINT, "mSOL", "Marinade staked SOL", 9, f"{_LOGO_BASE}/{MSOL_MINT}/logo.png"),
    BONK_MINT: AssetDescriptor(BONK_MINT, "BONK", "Bonk", 5),
    JUP_MINT: AssetDescriptor(JUP_MINT, "JUP", "Jupiter", 6),
    WETH_MINT: AssetDescriptor(WETH_MINT, "ETH", "Ether (Portal)", 8),
    WBTC_MINT: AssetDescriptor(WBTC_MINT, "BTC", "Wrapped BTC (Portal)", 8),
}

# Price oracle ids per display symbol. SOL is quoted through the wrapped mint.
PRICE_BASKET: Dict[str, str] = {
    "SOL": WSOL_MINT,
    "USDC": USDC_MINT,
    "USDT": USDT_MINT,
    "mSOL": MSOL_MINT,
    "ETH": WETH_MINT,
    "BTC": WBTC_MINT,
    "BONK": BONK_MINT,
    "JUP": JUP_MINT,
}

DEFAULT_UNKNOWN_DECIMALS = 6


def get_token_by_mint(mint: str) -> Optional[AssetDescriptor]:
    """Look up a known token; the native pseudo-mint resolves to SOL."""
    if mint == NATIVE_MINT:
        return SOL_TOKEN
    return KNOWN_TOKENS.get(mint)


def placeholder_descriptor(mint: str, decimals: Optional[int], max_decimals: int) -> AssetDescriptor:
    """
    Synthesize a descriptor for a mint missing from the registry.

    Args:
        mint: Raw mint address
        decimals: On-chain decimal precision (None/0 falls back to 6)
        max_decimals: Upper clamp for the precision

    Returns:
        AssetDescriptor with a short symbol derived from the mint
    """
    precision = decimals or DEFAULT_UNKNOWN_DECIMALS
    precision = max(0, min(int(precision), max_decimals))
    return AssetDescriptor(
        mint=mint,
        symbol=mint[:4].upper(),
        name=f"Unknown Token ({mint[:8]}...)",
        decimals=precision,
    )


def resolve_descriptor(mint: str, decimals: Optional[int], max_decimals: int) -> AssetDescriptor:
    """Known-asset lookup with placeholder fallback."""
    return get_token_by_mint(mint) or placeholder_descriptor(mint, decimals, max_decimals)
