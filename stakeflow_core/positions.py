"""
Position records and the store that owns them.

Two shapes are supported:

  - ``StakePosition`` — one record per deposit, addressed by a global id
    and by the owner's deposit index.
  - ``UserAccount``  — one aggregate record per owner; later deposits
    under the same tier are merged into it.

Both expose the same accrual view (``principal``, ``selector``,
``start_time``, ``checkpoint``, ``is_active``) so reward and penalty
calculators never need to know which shape they are looking at.
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Iterator, Optional, Union

from stakeflow_core.errors import PositionNotFound


class PositionStatus(str, Enum):
    ACTIVE = "Active"
    CLOSED = "Closed"


# ── StakePosition ───────────────────────────────────────────────────────

@dataclass
class StakePosition:
    """A single deposit.  ``id`` is global and never reused."""
    id: int
    owner: str
    principal: int
    selector: int
    start_time: int
    last_checkpoint: int
    bonus: int
    status: PositionStatus = PositionStatus.ACTIVE
    reward_paid: int = 0
    penalty_paid: int = 0
    closed_at: Optional[int] = None

    @property
    def checkpoint(self) -> int:
        return self.last_checkpoint

    @checkpoint.setter
    def checkpoint(self, value: int) -> None:
        self.last_checkpoint = value

    @property
    def is_active(self) -> bool:
        return self.status is PositionStatus.ACTIVE

    # ``userStakes`` exposes the principal as ``amount``
    @property
    def amount(self) -> int:
        return self.principal

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        d["amount"] = str(self.principal)
        d["principal"] = str(self.principal)
        d["reward_paid"] = str(self.reward_paid)
        d["penalty_paid"] = str(self.penalty_paid)
        return d


# ── UserAccount ─────────────────────────────────────────────────────────

@dataclass
class UserAccount:
    """Aggregate position: every deposit of one owner under one tier."""
    owner: str
    total_staked: int
    tier: int
    stake_timestamp: int          # accrual checkpoint
    start_time: int               # lock start (reset by each merge)
    lock_id: int = 0
    status: PositionStatus = PositionStatus.ACTIVE
    deposits: int = 1
    reward_paid: int = 0
    penalty_paid: int = 0
    closed_at: Optional[int] = None

    @property
    def principal(self) -> int:
        return self.total_staked

    @property
    def selector(self) -> int:
        return self.tier

    @property
    def checkpoint(self) -> int:
        return self.stake_timestamp

    @checkpoint.setter
    def checkpoint(self, value: int) -> None:
        self.stake_timestamp = value

    @property
    def is_active(self) -> bool:
        return self.status is PositionStatus.ACTIVE

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        d["total_staked"] = str(self.total_staked)
        d["reward_paid"] = str(self.reward_paid)
        d["penalty_paid"] = str(self.penalty_paid)
        return d


Position = Union[StakePosition, UserAccount]


# ── PositionStore ───────────────────────────────────────────────────────

class PositionStore:
    """
    Explicit ledger of positions, owned by a single ``StakingEngine``.

    Records refer to each other only by id / owner address.
    """

    def __init__(self) -> None:
        self.positions: dict[int, StakePosition] = {}
        self.positions_by_owner: dict[str, list[int]] = {}
        self.accounts: dict[str, UserAccount] = {}
        self.next_id: int = 0
        self.total_staked: int = 0
        self.total_rewards_paid: int = 0
        self.total_rewards_compounded: int = 0
        self.total_penalties: int = 0

    # ── per-deposit ─────────────────────────────────────────────────

    def add_position(
        self,
        owner: str,
        principal: int,
        selector: int,
        bonus: int,
        now: int,
    ) -> StakePosition:
        pos = StakePosition(
            id=self.next_id,
            owner=owner,
            principal=principal,
            selector=selector,
            start_time=now,
            last_checkpoint=now,
            bonus=bonus,
        )
        self.positions[pos.id] = pos
        self.positions_by_owner.setdefault(owner, []).append(pos.id)
        self.next_id += 1
        self.total_staked += principal
        return pos

    def position_of(self, owner: str, index: int) -> StakePosition:
        ids = self.positions_by_owner.get(owner, [])
        if not 0 <= index < len(ids):
            raise PositionNotFound(f"{owner} has no stake at index {index}")
        return self.positions[ids[index]]

    def get_position(self, position_id: int) -> StakePosition:
        pos = self.positions.get(position_id)
        if pos is None:
            raise PositionNotFound(f"Stake {position_id} not found")
        return pos

    def count(self, owner: str) -> int:
        return len(self.positions_by_owner.get(owner, []))

    def positions_of(self, owner: str) -> list[StakePosition]:
        return [self.positions[i] for i in self.positions_by_owner.get(owner, [])]

    # ── aggregate ───────────────────────────────────────────────────

    def account(self, owner: str) -> Optional[UserAccount]:
        return self.accounts.get(owner)

    def open_account(self, owner: str, amount: int, tier: int, now: int) -> UserAccount:
        acct = UserAccount(
            owner=owner,
            total_staked=amount,
            tier=tier,
            stake_timestamp=now,
            start_time=now,
            lock_id=self.next_id,
        )
        self.accounts[owner] = acct
        self.next_id += 1
        self.total_staked += amount
        return acct

    # ── shared ──────────────────────────────────────────────────────

    def iter_active(self) -> Iterator[Position]:
        for pos in self.positions.values():
            if pos.is_active:
                yield pos
        for acct in self.accounts.values():
            if acct.is_active:
                yield acct

    def active_principal(self) -> int:
        return sum(p.principal for p in self.iter_active())

    def snapshot(self) -> dict:
        return copy.deepcopy(self.__dict__)

    def restore(self, snap: dict) -> None:
        self.__dict__.update(copy.deepcopy(snap))

    def summary(self) -> dict:
        return {
            "total_staked": str(self.total_staked),
            "total_rewards_paid": str(self.total_rewards_paid),
            "total_rewards_compounded": str(self.total_rewards_compounded),
            "total_penalties": str(self.total_penalties),
            "active_positions": sum(1 for _ in self.iter_active()),
            "total_positions": len(self.positions) + len(self.accounts),
            "stakers": len(set(self.positions_by_owner) | set(self.accounts)),
        }
