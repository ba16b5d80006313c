"""
Precision constants and helpers for StakeFlow.

All token amounts are unsigned integers in base units.  The default
token uses 18 decimal places:

    1 token = 10**18 base units

Multipliers and fractions are fixed-point integers:

    BONUS_SCALE = 1_000_000   (1.0× bonus)
    BPS_SCALE   = 10_000      (100 % penalty)

Python integers are arbitrary precision, so ``amount * rate * bonus``
never overflows before the final division.
"""

from __future__ import annotations

from decimal import Decimal

# Number of decimal places of the default staking token.
TOKEN_DECIMALS: int = 18

# Base units per whole token.
UNITS_PER_TOKEN: int = 10 ** TOKEN_DECIMALS

# Fixed-point scale of the bonus multiplier (1_000_000 == 1.0×).
BONUS_SCALE: int = 1_000_000

# Basis points: 10_000 == 100 %.
BPS_SCALE: int = 10_000

SECONDS_PER_DAY: int = 86_400
DAYS_PER_YEAR: int = 365
SECONDS_PER_YEAR: int = DAYS_PER_YEAR * SECONDS_PER_DAY


def tokens(value: int | str | Decimal, decimals: int = TOKEN_DECIMALS) -> int:
    """Convert a whole-token value into base units.

    >>> tokens(100_000)
    100000000000000000000000
    >>> tokens("0.5", decimals=2)
    50
    """
    scaled = Decimal(value) * (Decimal(10) ** decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{value} has more than {decimals} decimal places")
    return int(scaled)


def from_units(amount: int, decimals: int = TOKEN_DECIMALS) -> Decimal:
    """Convert base units into a ``Decimal`` token value."""
    return Decimal(amount) / (Decimal(10) ** decimals)


def format_amount(amount: int, symbol: str = "STK", decimals: int = TOKEN_DECIMALS) -> str:
    """Return a human-readable amount with the full token precision."""
    return f"{from_units(amount, decimals):.{decimals}f} {symbol}"


def format_multiplier(multiplier: int) -> str:
    """``1_100_000`` → ``"1.10x"``."""
    return f"{multiplier / BONUS_SCALE:.2f}x"


def format_bps(bps: int) -> str:
    """``2_100`` → ``"21.00%"``."""
    return f"{bps * 100 / BPS_SCALE:.2f}%"
