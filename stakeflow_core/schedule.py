"""
Reward schedules: lock selectors and their rate / penalty constants.

A schedule resolves a caller-chosen *selector* into ``LockTerms``:

  - lock duration (seconds)
  - per-period accrual rate as an exact fraction
  - maximum early-withdrawal penalty (basis points)
  - optional accrual horizon

Two schedules are shipped.

Tiered (aggregate accounts)
───────────────────────────
  tier   lock      daily rate     max penalty
  0      30 days   1 / 350        10 %
  1      90 days   1 / 280        15 %
  2     180 days   2 / 280        21 %
  3     365 days   3 / 280        26 %

Rewards settle per whole day.  Early exit requires the administrator's
force-unstake flag.

Lock days (per-deposit stakes)
──────────────────────────────
Any lock of 1…365 days.  The annual rate scales linearly with the lock:

    apr          = 120 % × lock_days / 365
    max_penalty  =  75 % × lock_days / 365

Rewards accrue per day in billionths of a day, so a part-day still
earns, and early exit is always permitted (the penalty applies instead).

The constants changed between contract revisions, so every number here
can be overridden from configuration (see ``build_schedule``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Optional

from stakeflow_core.errors import InvalidTier
from stakeflow_core.precision import (
    BPS_SCALE,
    DAYS_PER_YEAR,
    SECONDS_PER_DAY,
    SECONDS_PER_YEAR,
)

PENALTY_CURVES = ("linear", "flat")

# Lock-days rewards count elapsed time in billionths of a day.
DAY_FRACTIONS = 1_000_000_000


# ── Tier definitions ────────────────────────────────────────────────────

class StakeTier(IntEnum):
    DAYS_30  = 0
    DAYS_90  = 1
    DAYS_180 = 2
    DAYS_365 = 3


TIER_NAMES: dict[StakeTier, str] = {
    StakeTier.DAYS_30:  "30 Days",
    StakeTier.DAYS_90:  "90 Days",
    StakeTier.DAYS_180: "180 Days",
    StakeTier.DAYS_365: "365 Days",
}


@dataclass(frozen=True)
class LockTerms:
    """Rate and penalty constants for one lock selector."""
    selector: int
    lock_seconds: int
    rate_numerator: int         # reward per accrual period =
    rate_denominator: int       #   principal × numerator / denominator
    max_penalty_bps: int
    horizon_seconds: Optional[int] = None   # None = accrue forever
    name: str = ""

    def __post_init__(self) -> None:
        if self.lock_seconds < 0:
            raise ValueError("lock_seconds must be non-negative")
        if self.rate_numerator < 0 or self.rate_denominator <= 0:
            raise ValueError("rate must be a non-negative fraction")
        if not 0 <= self.max_penalty_bps <= BPS_SCALE:
            raise ValueError("max_penalty_bps must be within 0..10000")
        if self.horizon_seconds is not None and self.horizon_seconds < 0:
            raise ValueError("horizon_seconds must be non-negative")

    @property
    def lock_days(self) -> int:
        return self.lock_seconds // SECONDS_PER_DAY

    def to_dict(self) -> dict:
        return {
            "selector": self.selector,
            "name": self.name,
            "lock_days": self.lock_days,
            "lock_seconds": self.lock_seconds,
            "rate_numerator": self.rate_numerator,
            "rate_denominator": self.rate_denominator,
            "max_penalty_bps": self.max_penalty_bps,
            "horizon_seconds": self.horizon_seconds,
        }


# ── Schedules ───────────────────────────────────────────────────────────

@dataclass
class RewardSchedule:
    """Base schedule — subclasses decide how selectors map to terms."""
    name: str
    accrual_period: int = SECONDS_PER_DAY
    accrual_resolution: int = 1         # accrual units per period
    penalty_period: int = SECONDS_PER_DAY
    penalty_curve: str = "linear"
    requires_force_flag: bool = True

    def __post_init__(self) -> None:
        if self.accrual_period <= 0 or self.penalty_period <= 0:
            raise ValueError("Accrual and penalty periods must be positive")
        if self.accrual_resolution <= 0:
            raise ValueError("accrual_resolution must be positive")
        if self.penalty_curve not in PENALTY_CURVES:
            raise ValueError(f"Unknown penalty curve: {self.penalty_curve}")

    def terms(self, selector: int) -> LockTerms:
        raise NotImplementedError

    def listed_terms(self) -> list[LockTerms]:
        """Representative selectors for tier listings."""
        raise NotImplementedError

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "accrual_period": self.accrual_period,
            "accrual_resolution": self.accrual_resolution,
            "penalty_period": self.penalty_period,
            "penalty_curve": self.penalty_curve,
            "requires_force_flag": self.requires_force_flag,
            "tiers": [t.to_dict() for t in self.listed_terms()],
        }


@dataclass
class TieredSchedule(RewardSchedule):
    """Fixed table of tier codes."""
    tiers: dict[int, LockTerms] = field(default_factory=dict)

    def terms(self, selector: int) -> LockTerms:
        try:
            return self.tiers[int(selector)]
        except (KeyError, TypeError, ValueError):
            raise InvalidTier(f"Unknown tier: {selector}") from None

    def listed_terms(self) -> list[LockTerms]:
        return [self.tiers[k] for k in sorted(self.tiers)]


@dataclass
class LockDaysSchedule(RewardSchedule):
    """Selector is the lock length in days; rate and penalty scale with it."""
    min_days: int = 1
    max_days: int = DAYS_PER_YEAR
    max_apr_bps: int = 12_000
    max_penalty_bps: int = 7_500

    def terms(self, selector: int) -> LockTerms:
        try:
            days = int(selector)
        except (TypeError, ValueError):
            raise InvalidTier(f"Lock days must be an integer: {selector!r}") from None
        if not self.min_days <= days <= self.max_days:
            raise InvalidTier(
                f"Lock of {days} days outside {self.min_days}..{self.max_days}"
            )
        periods_per_year = SECONDS_PER_YEAR // self.accrual_period
        return LockTerms(
            selector=days,
            lock_seconds=days * SECONDS_PER_DAY,
            rate_numerator=self.max_apr_bps * days,
            rate_denominator=BPS_SCALE * self.max_days * periods_per_year,
            max_penalty_bps=self.max_penalty_bps * days // self.max_days,
            name=f"{days} Days",
        )

    def listed_terms(self) -> list[LockTerms]:
        samples = {self.min_days, 30, 90, 180, self.max_days}
        return [
            self.terms(d) for d in sorted(samples)
            if self.min_days <= d <= self.max_days
        ]


# ── Defaults ────────────────────────────────────────────────────────────

# tier → (lock days, daily rate numerator, daily rate denominator, max penalty bps)
TIER_CONFIG: dict[StakeTier, tuple[int, int, int, int]] = {
    StakeTier.DAYS_30:  (30,  1, 350, 1_000),
    StakeTier.DAYS_90:  (90,  1, 280, 1_500),
    StakeTier.DAYS_180: (180, 2, 280, 2_100),
    StakeTier.DAYS_365: (365, 3, 280, 2_600),
}


def default_tiered_schedule() -> TieredSchedule:
    return TieredSchedule(
        name="tiered",
        tiers={
            int(tier): LockTerms(
                selector=int(tier),
                lock_seconds=days * SECONDS_PER_DAY,
                rate_numerator=num,
                rate_denominator=den,
                max_penalty_bps=pen,
                name=TIER_NAMES[tier],
            )
            for tier, (days, num, den, pen) in TIER_CONFIG.items()
        },
    )


def default_lock_days_schedule() -> LockDaysSchedule:
    return LockDaysSchedule(
        name="lock_days",
        accrual_period=SECONDS_PER_DAY,
        accrual_resolution=DAY_FRACTIONS,
        requires_force_flag=False,
    )


SCHEDULES = {
    "tiered": default_tiered_schedule,
    "lock_days": default_lock_days_schedule,
}


def build_schedule(name: str, overrides: Optional[dict[str, Any]] = None) -> RewardSchedule:
    """
    Build a named schedule and apply overrides from configuration.

    Recognised override keys: ``accrual_period``, ``penalty_period``,
    ``penalty_curve``, ``requires_force_flag``; for ``lock_days`` also
    ``min_days``, ``max_days``, ``max_apr_bps``, ``max_penalty_bps``; for
    ``tiered`` a ``tiers`` mapping of tier code → ``{lock_days,
    rate_numerator, rate_denominator, max_penalty_bps, horizon_days,
    name}``.
    """
    factory = SCHEDULES.get(name)
    if factory is None:
        raise ValueError(f"Unknown schedule: {name}")
    schedule = factory()
    if not overrides:
        return schedule

    for key, value in overrides.items():
        key = key.replace("-", "_")
        if key == "tiers":
            if not isinstance(schedule, TieredSchedule):
                raise ValueError("'tiers' override only applies to a tiered schedule")
            schedule.tiers = _parse_tiers(value, schedule.tiers)
        elif hasattr(schedule, key) and key != "name":
            setattr(schedule, key, value)
        else:
            raise ValueError(f"Unknown schedule option: {key}")
    schedule.__post_init__()
    return schedule


def _parse_tiers(
    raw: dict[str, Any], base: dict[int, LockTerms],
) -> dict[int, LockTerms]:
    tiers = dict(base)
    for code, spec in raw.items():
        selector = int(code)
        current = tiers.get(selector)
        lock_days = spec.get(
            "lock_days", current.lock_days if current else None,
        )
        if lock_days is None:
            raise ValueError(f"Tier {selector} needs lock_days")
        horizon_days = spec.get("horizon_days")
        tiers[selector] = LockTerms(
            selector=selector,
            lock_seconds=int(lock_days) * SECONDS_PER_DAY,
            rate_numerator=int(spec.get(
                "rate_numerator", current.rate_numerator if current else 0)),
            rate_denominator=int(spec.get(
                "rate_denominator", current.rate_denominator if current else 1)),
            max_penalty_bps=int(spec.get(
                "max_penalty_bps", current.max_penalty_bps if current else 0)),
            horizon_seconds=(
                int(horizon_days) * SECONDS_PER_DAY if horizon_days is not None
                else (current.horizon_seconds if current else None)
            ),
            name=spec.get("name", current.name if current else f"Tier {selector}"),
        )
    return tiers
