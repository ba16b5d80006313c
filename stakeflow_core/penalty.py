"""
Early-withdrawal penalty.

A position closed before ``start_time + lock_seconds`` pays a fee on

    base = principal + pending reward + reward already paid on the position

Counting claimed reward keeps a claim followed by an early unstake from
costing less than the same unstake on its own.

Penalty curves (tier-scaled via ``max_penalty_bps``):

    linear  fee = base × max_bps × remaining_periods / lock_periods
    flat    fee = base × max_bps                      (until maturity)

Periods are whole ``penalty_period`` units (one day by default), so a
same-day exit pays the full maximum and the fee is exactly zero from
maturity on.  The fee never exceeds ``principal + pending reward``.
"""

from __future__ import annotations

from stakeflow_core.positions import Position
from stakeflow_core.precision import BPS_SCALE
from stakeflow_core.schedule import LockTerms, RewardSchedule


class PenaltyCalculator:
    def __init__(self, schedule: RewardSchedule):
        self.schedule = schedule

    def maturity_time(self, position: Position) -> int:
        terms = self.schedule.terms(position.selector)
        return position.start_time + terms.lock_seconds

    def is_mature(self, position: Position, now: int) -> bool:
        return now >= self.maturity_time(position)

    def _lock_periods(self, terms: LockTerms) -> int:
        return max(1, -(-terms.lock_seconds // self.schedule.penalty_period))

    def penalty_bps(self, position: Position, now: int) -> int:
        """Effective penalty rate right now, in basis points (truncated)."""
        if self.is_mature(position, now):
            return 0
        terms = self.schedule.terms(position.selector)
        if self.schedule.penalty_curve == "flat":
            return terms.max_penalty_bps
        lock_periods = self._lock_periods(terms)
        return terms.max_penalty_bps * self._remaining(position, terms, now) // lock_periods

    def _remaining(self, position: Position, terms: LockTerms, now: int) -> int:
        elapsed = max(0, now - position.start_time) // self.schedule.penalty_period
        return max(0, self._lock_periods(terms) - elapsed)

    def penalty(self, position: Position, now: int, pending_reward: int) -> int:
        """Fee charged if *position* were closed at *now*."""
        if not position.is_active or self.is_mature(position, now):
            return 0
        terms = self.schedule.terms(position.selector)
        base = position.principal + pending_reward + position.reward_paid
        if self.schedule.penalty_curve == "flat":
            fee = base * terms.max_penalty_bps // BPS_SCALE
        else:
            lock_periods = self._lock_periods(terms)
            fee = (
                base * terms.max_penalty_bps * self._remaining(position, terms, now)
                // (lock_periods * BPS_SCALE)
            )
        return min(fee, position.principal + pending_reward)
