"""
Staking engine — orchestrates stake / claim / unstake.

Every mutating call is one serialized transaction:

  1. take the engine lock
  2. snapshot positions, token balances and flags
  3. validate, then update internal state
  4. move tokens (pull the deposit, or push the payout)
  5. verify invariants — on any failure restore the snapshot and re-raise

Internal state is always updated before the payout transfer, so the
token collaborator never observes a position that still looks open
while its funds are leaving custody.

Position models
───────────────
``aggregate``    one ``UserAccount`` per owner; a second stake under the
                 same tier merges into it (see ``MERGE_POLICIES``).
``per_deposit``  one ``StakePosition`` per stake call, addressed by the
                 owner's deposit index.

Merge policies (aggregate model)
────────────────────────────────
``settle``    pay out the pending reward, then reset the checkpoint
``compound``  add the pending reward to the principal, reset checkpoint
``discard``   reset the checkpoint; the pending reward is forfeited

Every merge restarts the lock at the time of the new deposit, so added
principal is always locked for the full tier duration.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from typing import Callable, Iterator, Optional, Union

from stakeflow_core.bonus import BonusCalculator
from stakeflow_core.errors import (
    AlreadyUnstaked,
    BadSequence,
    InsufficientAllowanceOrBalance,
    InvalidAmount,
    InvalidTier,
    InvariantViolation,
    LockNotExpired,
    PositionNotFound,
    Unauthorized,
)
from stakeflow_core.invariants import InvariantChecker
from stakeflow_core.penalty import PenaltyCalculator
from stakeflow_core.positions import (
    Position,
    PositionStatus,
    PositionStore,
    StakePosition,
    UserAccount,
)
from stakeflow_core.rewards import RewardAccrual
from stakeflow_core.schedule import (
    RewardSchedule,
    default_lock_days_schedule,
    default_tiered_schedule,
)
from stakeflow_core.token import TokenLedger

logger = logging.getLogger("stakeflow_engine")

MODES = ("aggregate", "per_deposit")
MERGE_POLICIES = ("settle", "compound", "discard")
CUSTODY_ADDRESS = "sfStakingCustody"


def _require_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"Amount must be an integer: {amount!r}")
    if amount <= 0:
        raise InvalidAmount(f"Amount must be positive: {amount}")
    return amount


class StakingEngine:
    """Owns the position store and drives every staking operation."""

    def __init__(
        self,
        token: TokenLedger,
        owner: str,
        *,
        mode: str = "aggregate",
        schedule: Optional[RewardSchedule] = None,
        bonus: Optional[BonusCalculator] = None,
        merge_policy: str = "settle",
        custody_address: str = CUSTODY_ADDRESS,
        force_unstake_allowed: bool = False,
        check_invariants: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        if mode not in MODES:
            raise ValueError(f"Unknown mode: {mode}")
        if merge_policy not in MERGE_POLICIES:
            raise ValueError(f"Unknown merge policy: {merge_policy}")
        if not owner:
            raise ValueError("An administrator address is required")

        if schedule is None:
            schedule = (
                default_tiered_schedule() if mode == "aggregate"
                else default_lock_days_schedule()
            )
        self.token = token
        self.mode = mode
        self.schedule = schedule
        self.bonus = bonus or BonusCalculator()
        self.merge_policy = merge_policy
        self.custody_address = custody_address
        self.check_invariants = check_invariants
        self.clock = clock

        self.accrual = RewardAccrual(self.schedule, self.bonus)
        self.penalties = PenaltyCalculator(self.schedule)
        self.store = PositionStore()

        self._owner = owner
        self._force_unstake_allowed = force_unstake_allowed
        self._lock = threading.RLock()
        self._checker = InvariantChecker()
        # address -> last sequence number accepted from it
        self.sequences: dict[str, int] = {}

    # ── administration ──────────────────────────────────────────────

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def force_unstake_allowed(self) -> bool:
        return self._force_unstake_allowed

    def _require_owner(self, caller: str) -> None:
        if caller != self._owner:
            raise Unauthorized(f"{caller} is not the administrator")

    def update_force_unstake_allowed(self, caller: str, allowed: bool) -> None:
        """Open or close the early-withdrawal gate (administrator only)."""
        with self._transaction("update_force_unstake_allowed"):
            self._require_owner(caller)
            self._force_unstake_allowed = bool(allowed)
        logger.info(f"Force unstake {'enabled' if allowed else 'disabled'} by {caller}")

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        with self._transaction("transfer_ownership"):
            self._require_owner(caller)
            if not new_owner:
                raise ValueError("New owner address required")
            self._owner = new_owner
        logger.info(f"Ownership transferred {caller} -> {new_owner}")

    def fund_rewards(self, caller: str, amount: int) -> None:
        """Move *amount* from *caller* into the reward reserve."""
        _require_amount(amount)
        with self._transaction("fund_rewards"):
            self.token.transfer(caller, self.custody_address, amount)
        logger.info(f"Reward reserve funded with {amount} by {caller}")

    def next_sequence(self, address: str) -> int:
        with self._lock:
            return self.sequences.get(address, 0) + 1

    def use_sequence(self, address: str, sequence: int) -> None:
        """
        Accept *sequence* for *address* if it is exactly the next one.

        A request consumes its sequence number even when the operation it
        carries later fails, so a signed request can never run twice.
        """
        with self._lock:
            expected = self.sequences.get(address, 0) + 1
            if sequence != expected:
                raise BadSequence(f"Expected seq {expected}, got {sequence}")
            self.sequences[address] = sequence

    @property
    def reward_reserve(self) -> int:
        """Custody balance not backing any staked principal."""
        return self.token.balance_of(self.custody_address) - self.store.total_staked

    # ── transaction boundary ────────────────────────────────────────

    def _now(self, now: Optional[float]) -> int:
        return int(self.clock() if now is None else now)

    @contextlib.contextmanager
    def _transaction(self, op: str) -> Iterator[None]:
        with self._lock:
            store_snap = self.store.snapshot()
            token_snap = self.token.snapshot()
            flags = (self._owner, self._force_unstake_allowed)
            if self.check_invariants:
                self._checker.capture(self)
            try:
                yield
                if self.check_invariants:
                    ok, msg = self._checker.verify(self)
                    if not ok:
                        raise InvariantViolation(msg)
            except Exception as exc:
                self.store.restore(store_snap)
                self.token.restore(token_snap)
                self._owner, self._force_unstake_allowed = flags
                logger.warning(f"{op} rolled back: {exc}", extra={"op": op})
                raise

    def _pay(self, to: str, amount: int) -> None:
        """Push *amount* out of custody without touching staked principal."""
        if amount <= 0:
            return
        if amount > self.reward_reserve:
            raise InsufficientAllowanceOrBalance(
                f"Custody cannot cover payout of {amount}"
            )
        self.token.transfer(self.custody_address, to, amount)

    # ── position lookup ─────────────────────────────────────────────

    def _position(self, caller: str, index: Optional[int]) -> Position:
        if self.mode == "aggregate":
            acct = self.store.account(caller)
            if acct is None:
                raise PositionNotFound(f"{caller} has no stake")
            return acct
        if index is None:
            raise PositionNotFound("A stake index is required")
        return self.store.position_of(caller, int(index))

    # ── stake ───────────────────────────────────────────────────────

    def stake(
        self,
        caller: str,
        amount: int,
        selector: int,
        now: Optional[float] = None,
    ) -> Optional[int]:
        """
        Lock *amount* under *selector*.

        Returns the owner's deposit index (per-deposit model) or ``None``
        (aggregate model).
        """
        _require_amount(amount)
        terms = self.schedule.terms(selector)
        ts = self._now(now)

        with self._transaction("stake"):
            result: Optional[int] = None
            settled = 0
            if self.mode == "per_deposit":
                bonus = self.bonus.calculate_bonus(amount)
                self.store.add_position(caller, amount, terms.selector, bonus, ts)
                result = self.store.count(caller) - 1
            else:
                acct = self.store.account(caller)
                if acct is not None and acct.is_active:
                    settled = self._merge(acct, amount, terms.selector, ts)
                else:
                    self.store.open_account(caller, amount, terms.selector, ts)

            self.token.transfer_from(
                self.custody_address, caller, self.custody_address, amount,
            )
            self._pay(caller, settled)

        logger.info(
            f"Stake {amount} by {caller} selector={terms.selector} "
            f"mode={self.mode}" + (f" settled={settled}" if settled else ""),
            extra={"op": "stake", "caller": caller, "amount": amount},
        )
        return result

    def _merge(self, acct: UserAccount, amount: int, selector: int, now: int) -> int:
        """Fold a new deposit into an active aggregate position."""
        if acct.tier != selector:
            raise InvalidTier(
                f"{acct.owner} is staking in tier {acct.tier}; "
                f"cannot add to tier {selector}"
            )
        pending = self.accrual.pending_reward(acct, now)
        settled = 0
        if self.merge_policy == "settle":
            settled = pending
            acct.reward_paid += pending
            self.store.total_rewards_paid += pending
        elif self.merge_policy == "compound":
            if pending > self.reward_reserve:
                raise InsufficientAllowanceOrBalance(
                    f"Reserve cannot cover compounding {pending}"
                )
            acct.total_staked += pending
            self.store.total_staked += pending
            self.store.total_rewards_compounded += pending
        acct.checkpoint = now
        acct.start_time = now
        acct.total_staked += amount
        acct.deposits += 1
        self.store.total_staked += amount
        return settled

    # ── claim ───────────────────────────────────────────────────────

    def claim_rewards(
        self,
        caller: str,
        index: Optional[int] = None,
        now: Optional[float] = None,
    ) -> int:
        """Pay the pending reward; principal and status are unchanged."""
        ts = self._now(now)
        with self._transaction("claim_rewards"):
            pos = self._position(caller, index)
            if not pos.is_active:
                raise AlreadyUnstaked("Already unstaked")
            reward = self.accrual.pending_reward(pos, ts)
            if reward == 0:
                return 0
            pos.checkpoint = self.accrual.settled_checkpoint(pos, ts)
            pos.reward_paid += reward
            self.store.total_rewards_paid += reward
            self._pay(caller, reward)

        logger.info(
            f"Claimed {reward} by {caller}",
            extra={"op": "claim_rewards", "caller": caller, "amount": reward},
        )
        return reward

    # ── unstake ─────────────────────────────────────────────────────

    def unstake(
        self,
        caller: str,
        index: Optional[int] = None,
        now: Optional[float] = None,
    ) -> int:
        """
        Close a position and pay ``principal + reward − penalty``.

        Returns the payout.
        """
        ts = self._now(now)
        with self._transaction("unstake"):
            pos = self._position(caller, index)
            if not pos.is_active:
                raise AlreadyUnstaked("Already unstaked")
            mature = self.penalties.is_mature(pos, ts)
            if (
                not mature
                and self.schedule.requires_force_flag
                and not self._force_unstake_allowed
            ):
                raise LockNotExpired(
                    f"Lock matures at {self.penalties.maturity_time(pos)}"
                )

            reward = self.accrual.pending_reward(pos, ts)
            fee = self.penalties.penalty(pos, ts, reward)
            principal = pos.principal
            payout = principal + reward - fee

            pos.status = PositionStatus.CLOSED
            pos.closed_at = ts
            pos.checkpoint = ts
            pos.reward_paid += reward
            pos.penalty_paid += fee
            self.store.total_staked -= principal
            self.store.total_rewards_paid += reward
            self.store.total_penalties += fee

            self._pay(caller, payout)

        logger.info(
            f"Unstake by {caller}: principal={principal} reward={reward} "
            f"penalty={fee} payout={payout}",
            extra={"op": "unstake", "caller": caller, "amount": payout},
        )
        return payout

    # ── read-only projections ───────────────────────────────────────

    def calculate_bonus(self, amount: int) -> int:
        return self.bonus.calculate_bonus(amount)

    def calculate_pending_rewards(
        self,
        target: Union[int, str],
        caller: Optional[str] = None,
        now: Optional[float] = None,
    ) -> int:
        """
        Pending reward without mutating state.

        *target* is an owner address (aggregate account, or the sum of the
        owner's open deposits), or a deposit index of *caller*, or — when
        no caller is given — a global stake id.
        """
        ts = self._now(now)
        with self._lock:
            if isinstance(target, str):
                acct = self.store.account(target)
                if acct is not None:
                    return self.accrual.pending_reward(acct, ts)
                return sum(
                    self.accrual.pending_reward(p, ts)
                    for p in self.store.positions_of(target)
                )
            if caller is not None:
                pos = self.store.position_of(caller, int(target))
            else:
                pos = self.store.get_position(int(target))
            return self.accrual.pending_reward(pos, ts)

    def quote_unstake(
        self,
        caller: str,
        index: Optional[int] = None,
        now: Optional[float] = None,
    ) -> dict:
        """What ``unstake`` would pay right now, without doing it."""
        ts = self._now(now)
        with self._lock:
            pos = self._position(caller, index)
            reward = self.accrual.pending_reward(pos, ts)
            fee = self.penalties.penalty(pos, ts, reward)
            mature = self.penalties.is_mature(pos, ts)
            allowed = pos.is_active and (
                mature
                or not self.schedule.requires_force_flag
                or self._force_unstake_allowed
            )
            return {
                "active": pos.is_active,
                "mature": mature,
                "allowed": allowed,
                "principal": str(pos.principal if pos.is_active else 0),
                "reward": str(reward),
                "penalty": str(fee),
                "penalty_bps": self.penalties.penalty_bps(pos, ts) if pos.is_active else 0,
                "payout": str(pos.principal + reward - fee if pos.is_active else 0),
                "maturity_time": self.penalties.maturity_time(pos),
            }

    def user_stake_count(self, owner: str) -> int:
        if self.mode == "aggregate":
            return 1 if self.store.account(owner) is not None else 0
        return self.store.count(owner)

    def user_stakes(self, owner: str, index: int) -> StakePosition:
        return self.store.position_of(owner, int(index))

    def user_info_map(self, owner: str) -> Optional[UserAccount]:
        return self.store.account(owner)

    def position_dict(self, pos: Position, now: Optional[float] = None) -> dict:
        ts = self._now(now)
        with self._lock:
            info = pos.to_dict()
            pending = self.accrual.pending_reward(pos, ts)
            info["pending_reward"] = str(pending)
            info["bonus_multiplier"] = self.bonus.calculate_bonus(pos.principal)
            info["maturity_time"] = self.penalties.maturity_time(pos)
            info["est_penalty"] = str(self.penalties.penalty(pos, ts, pending))
            if pos.is_active and self.penalties.is_mature(pos, ts):
                info["status"] = "Ready"
            return info

    def pool_summary(self, now: Optional[float] = None) -> dict:
        ts = self._now(now)
        with self._lock:
            summary = self.store.summary()
            summary["total_pending_rewards"] = str(sum(
                self.accrual.pending_reward(p, ts) for p in self.store.iter_active()
            ))
            summary["reward_reserve"] = str(self.reward_reserve)
            summary["mode"] = self.mode
            summary["schedule"] = self.schedule.name
            summary["merge_policy"] = self.merge_policy
            summary["force_unstake_allowed"] = self._force_unstake_allowed
            summary["owner"] = self._owner
            return summary
