"""
Reward accrual.

    units   = floor((now − checkpoint) × accrual_resolution / accrual_period)
    reward  = floor(principal × rate × bonus × units
                    / (accrual_resolution × BONUS_SCALE))

``rate`` is the exact fraction ``rate_numerator / rate_denominator`` per
accrual period from the position's ``LockTerms``.  With a resolution of 1
only whole periods count; a resolution of 1e9 lets a partial day earn
its share.  Truncation happens once, on the final product, so a long
accrual does not lose a unit per period.

A closed position accrues nothing.  When the terms define a horizon,
time past ``start_time + horizon`` does not count, and a checkpoint at
or beyond the horizon yields zero.
"""

from __future__ import annotations

from stakeflow_core.bonus import BonusCalculator
from stakeflow_core.positions import Position
from stakeflow_core.precision import BONUS_SCALE
from stakeflow_core.schedule import LockTerms, RewardSchedule


def reward_for(
    principal: int,
    terms: LockTerms,
    bonus: int,
    units: int,
    resolution: int = 1,
) -> int:
    """Reward for *units* accrual units (``resolution`` units per period)."""
    if units <= 0 or principal <= 0:
        return 0
    return (
        principal * terms.rate_numerator * bonus * units
        // (terms.rate_denominator * resolution * BONUS_SCALE)
    )


class RewardAccrual:
    """Pending-reward projection for any position shape."""

    def __init__(self, schedule: RewardSchedule, bonus: BonusCalculator):
        self.schedule = schedule
        self.bonus = bonus

    def _accrual_end(self, position: Position, terms: LockTerms, now: int) -> int:
        if terms.horizon_seconds is None:
            return now
        return min(now, position.start_time + terms.horizon_seconds)

    def elapsed_units(self, position: Position, now: int) -> int:
        terms = self.schedule.terms(position.selector)
        end = self._accrual_end(position, terms, now)
        if end <= position.checkpoint:
            return 0
        return (
            (end - position.checkpoint) * self.schedule.accrual_resolution
            // self.schedule.accrual_period
        )

    def pending_reward(self, position: Position, now: int) -> int:
        if not position.is_active:
            return 0
        units = self.elapsed_units(position, now)
        if units == 0:
            return 0
        terms = self.schedule.terms(position.selector)
        bonus = self.bonus.calculate_bonus(position.principal)
        return reward_for(
            position.principal, terms, bonus, units, self.schedule.accrual_resolution,
        )

    def settled_checkpoint(self, position: Position, now: int) -> int:
        """
        Checkpoint after settling every counted unit up to *now*.

        Rounded up to the next second, so no fraction of time is paid
        twice; an unfinished unit keeps accruing from where it started.
        """
        units = self.elapsed_units(position, now)
        settled = -(-units * self.schedule.accrual_period // self.schedule.accrual_resolution)
        return min(position.checkpoint + settled, max(now, position.checkpoint))
