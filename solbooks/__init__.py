"""
SolBooks ledger core.

Fetches native SOL and SPL token movements for monitored wallets, merges them
into a persisted, user-classifiable record set and converts amounts with live
or fallback prices.
"""

__version__ = "1.0.0"
