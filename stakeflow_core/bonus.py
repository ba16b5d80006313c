"""
Amount-tiered bonus multiplier.

The multiplier depends on the staked principal only — never on time or
lock tier — and is a nondecreasing step function over ascending
thresholds:

    principal <  100 000 tokens  →  1_000_000   (1.0×)
    principal >= 100 000 tokens  →  1_100_000   (1.1×)
    principal >= 500 000 tokens  →  1_200_000   (1.2×)

The multiplier uses fixed-point ``BONUS_SCALE`` (1e6 == 1.0×).
"""

from __future__ import annotations

from bisect import bisect_right
from typing import Iterable

from stakeflow_core.errors import InvalidAmount
from stakeflow_core.precision import BONUS_SCALE, UNITS_PER_TOKEN

# (minimum principal in base units, multiplier), ascending
DEFAULT_BONUS_THRESHOLDS: tuple[tuple[int, int], ...] = (
    (100_000 * UNITS_PER_TOKEN, 1_100_000),
    (500_000 * UNITS_PER_TOKEN, 1_200_000),
)


class BonusCalculator:
    """Pure mapping from principal to bonus multiplier."""

    __slots__ = ("_bounds", "_multipliers", "baseline")

    def __init__(
        self,
        thresholds: Iterable[tuple[int, int]] = DEFAULT_BONUS_THRESHOLDS,
        baseline: int = BONUS_SCALE,
    ):
        table = [(int(a), int(m)) for a, m in thresholds]
        if baseline < BONUS_SCALE:
            raise ValueError("Baseline multiplier must be at least 1.0x")
        prev_amount, prev_mult = -1, baseline
        for amount, mult in table:
            if amount <= prev_amount or amount < 0:
                raise ValueError("Bonus thresholds must be strictly ascending")
            if mult < prev_mult:
                raise ValueError("Bonus multipliers must be nondecreasing")
            prev_amount, prev_mult = amount, mult
        self.baseline = baseline
        self._bounds = [a for a, _ in table]
        self._multipliers = [m for _, m in table]

    def calculate_bonus(self, amount: int) -> int:
        if amount < 0:
            raise InvalidAmount(f"Negative amount: {amount}")
        idx = bisect_right(self._bounds, amount)
        if idx == 0:
            return self.baseline
        return self._multipliers[idx - 1]

    __call__ = calculate_bonus

    @property
    def thresholds(self) -> list[tuple[int, int]]:
        return list(zip(self._bounds, self._multipliers))

    def to_dict(self) -> dict:
        return {
            "baseline": self.baseline,
            "scale": BONUS_SCALE,
            "thresholds": [
                {"min_amount": str(a), "multiplier": m}
                for a, m in self.thresholds
            ],
        }
