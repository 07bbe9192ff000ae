"""Mint pricing.

The paid-tier price is a flat protocol constant; it does not follow supply or
demand.
"""
from __future__ import annotations

from decimal import Decimal

from web3 import Web3


def format_native(amount_wei: int, symbol: str) -> str:
    """Render a wei amount as e.g. ``"5 0G"``."""
    value = Decimal(amount_wei) / Decimal(10**18)
    text = format(value.normalize(), "f") if value else "0"
    return f"{text} {symbol}"


class FeePolicy:
    """Maps whitelist eligibility to the value sent with the mint."""

    def __init__(self, mint_price: Decimal, native_token: str = "0G"):
        self._price_wei = int(Web3.to_wei(mint_price, "ether"))
        self._symbol = native_token

    @property
    def flat_fee_wei(self) -> int:
        return self._price_wei

    def price_for(self, is_whitelisted: bool) -> int:
        """Required value in wei: zero when whitelisted, the flat fee otherwise."""
        return 0 if is_whitelisted else self._price_wei

    def describe(self, amount_wei: int) -> str:
        return format_native(amount_wei, self._symbol)
