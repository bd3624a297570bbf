"""Conversion between smallest ledger units and whole coins."""

from __future__ import annotations

from decimal import Decimal, ROUND_FLOOR, localcontext


BASE_UNITS_PER_COIN = 10**18
_COIN_DECIMALS = 18
_COIN_QUANT = Decimal(1).scaleb(-_COIN_DECIMALS)
# Enough digits for any uint256 amount at full precision.
_PRECISION = 96


def base_units_to_coin(value: int) -> Decimal:
    """Convert an integer smallest-unit amount to an exact Decimal coin amount."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return (Decimal(value) / Decimal(BASE_UNITS_PER_COIN)).quantize(_COIN_QUANT)


def coin_to_base_units(value: Decimal | float | int | str) -> int:
    """Convert a coin amount to smallest units, truncating any sub-unit remainder."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        dec = Decimal(str(value)).quantize(_COIN_QUANT, rounding=ROUND_FLOOR)
        return int(dec * BASE_UNITS_PER_COIN)


def format_coin(value: int, symbol: str = "ETH") -> str:
    """Format a smallest-unit amount for display."""
    coin = base_units_to_coin(value).normalize()
    return f"{coin:f} {symbol}"
