"""
Post-operation invariant checks for the staking engine.

  - Token supply is conserved (engine operations never mint or burn)
  - Balances sum to the supply and none is negative
  - ``total_staked`` matches the sum of active principals
  - Custody holds at least the staked principal
  - A closed position is never reopened

The engine captures a snapshot before each mutating call and verifies
afterwards.  If any invariant fails the call is rolled back and
rejected with ``InvariantViolation``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class EngineSnapshot:
    """Snapshot of key engine fields before an operation."""
    total_supply: int = 0
    custody_balance: int = 0
    total_staked: int = 0
    position_status: dict[int, str] = field(default_factory=dict)
    account_status: dict[str, tuple[str, int]] = field(default_factory=dict)


class InvariantChecker:
    """
    Captures a pre-operation snapshot of the engine and validates
    invariants after the operation is applied.
    """

    def __init__(self):
        self._snapshot: EngineSnapshot | None = None

    def capture(self, engine) -> None:
        """Take a snapshot of the engine state before an operation."""
        store = engine.store
        snap = EngineSnapshot(
            total_supply=engine.token.total_supply,
            custody_balance=engine.token.balance_of(engine.custody_address),
            total_staked=store.total_staked,
        )
        for pid, pos in store.positions.items():
            snap.position_status[pid] = pos.status.value
        for owner, acct in store.accounts.items():
            snap.account_status[owner] = (acct.status.value, acct.lock_id)
        self._snapshot = snap

    def verify(self, engine) -> tuple[bool, str]:
        """
        Verify all invariants against the current engine state.
        Returns (passed, error_message).
        """
        if self._snapshot is None:
            return True, ""

        errors: list[str] = []
        for check in (
            self._check_supply_conservation,
            self._check_balances,
            self._check_staked_total,
            self._check_custody_covers_principal,
            self._check_no_reopen,
        ):
            ok, msg = check(engine)
            if not ok:
                errors.append(msg)

        self._snapshot = None
        if errors:
            return False, "; ".join(errors)
        return True, ""

    def _check_supply_conservation(self, engine) -> tuple[bool, str]:
        if engine.token.total_supply != self._snapshot.total_supply:
            return (False,
                    f"Supply changed: {self._snapshot.total_supply} -> "
                    f"{engine.token.total_supply}")
        return True, ""

    def _check_balances(self, engine) -> tuple[bool, str]:
        """No negative balance; balances sum to supply."""
        for addr, bal in engine.token.balances.items():
            if bal < 0:
                return False, f"Negative balance on {addr}: {bal}"
        total = sum(engine.token.balances.values())
        if total != engine.token.total_supply:
            return (False,
                    f"Balances sum to {total} but supply is "
                    f"{engine.token.total_supply}")
        return True, ""

    def _check_staked_total(self, engine) -> tuple[bool, str]:
        store = engine.store
        if store.total_staked < 0:
            return False, f"total_staked is negative: {store.total_staked}"
        active = store.active_principal()
        if store.total_staked != active:
            return (False,
                    f"Staking mismatch: total_staked={store.total_staked} "
                    f"but active principal sum={active}")
        return True, ""

    def _check_custody_covers_principal(self, engine) -> tuple[bool, str]:
        custody = engine.token.balance_of(engine.custody_address)
        if custody < engine.store.total_staked:
            return (False,
                    f"Custody {custody} below staked principal "
                    f"{engine.store.total_staked}")
        return True, ""

    def _check_no_reopen(self, engine) -> tuple[bool, str]:
        snap = self._snapshot
        store = engine.store
        for pid, status in snap.position_status.items():
            pos = store.positions.get(pid)
            if pos is None:
                return False, f"Stake {pid} disappeared"
            if status == "Closed" and pos.is_active:
                return False, f"Stake {pid} reopened after close"
        for owner, (status, lock_id) in snap.account_status.items():
            acct = store.accounts.get(owner)
            if acct is None:
                return False, f"Account {owner} disappeared"
            # a closed aggregate position may only be replaced by a new lock
            if status == "Closed" and acct.is_active and acct.lock_id == lock_id:
                return False, f"Account {owner} reopened after close"
        return True, ""
