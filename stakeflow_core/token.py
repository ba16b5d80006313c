"""
In-process fungible token ledger.

The staking engine treats the token as an external, trusted value-
transfer primitive.  This implementation provides exactly the surface
the engine needs:

  - ``approve`` / ``allowance``
  - ``transfer`` / ``transfer_from``
  - ``balance_of`` / ``total_supply``
  - ``mint`` (genesis and test funding only)

Balances are integers in base units.  Failed transfers raise
``InsufficientAllowanceOrBalance`` and leave every balance untouched.
"""

from __future__ import annotations

import logging

from stakeflow_core.errors import InsufficientAllowanceOrBalance, InvalidAmount
from stakeflow_core.precision import TOKEN_DECIMALS

logger = logging.getLogger("stakeflow_token")


class TokenLedger:
    """Balances and allowances for a single token."""

    def __init__(self, symbol: str = "STK", decimals: int = TOKEN_DECIMALS):
        self.symbol = symbol
        self.decimals = decimals
        self.balances: dict[str, int] = {}
        self.allowances: dict[tuple[str, str], int] = {}
        self.total_supply: int = 0

    # ── queries ─────────────────────────────────────────────────────

    def balance_of(self, address: str) -> int:
        return self.balances.get(address, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    # ── mutations ───────────────────────────────────────────────────

    def mint(self, to: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmount("Mint amount must be positive")
        self.balances[to] = self.balance_of(to) + amount
        self.total_supply += amount
        logger.debug(f"Minted {amount} {self.symbol} to {to}")

    def approve(self, owner: str, spender: str, amount: int) -> None:
        if amount < 0:
            raise InvalidAmount("Allowance must be non-negative")
        self.allowances[(owner, spender)] = amount

    def transfer(self, sender: str, to: str, amount: int) -> None:
        if amount < 0:
            raise InvalidAmount("Transfer amount must be non-negative")
        have = self.balance_of(sender)
        if have < amount:
            raise InsufficientAllowanceOrBalance(
                f"Insufficient balance: {sender} has {have}, needs {amount}"
            )
        if amount == 0 or sender == to:
            return
        self.balances[sender] = have - amount
        self.balances[to] = self.balance_of(to) + amount

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None:
        allowed = self.allowance(owner, spender)
        if allowed < amount:
            raise InsufficientAllowanceOrBalance(
                f"Insufficient allowance: {spender} may move {allowed} of {owner}, needs {amount}"
            )
        self.transfer(owner, to, amount)
        self.allowances[(owner, spender)] = allowed - amount

    # ── rollback support ────────────────────────────────────────────

    def snapshot(self) -> dict:
        return {
            "balances": dict(self.balances),
            "allowances": dict(self.allowances),
            "total_supply": self.total_supply,
        }

    def restore(self, snap: dict) -> None:
        self.balances = dict(snap["balances"])
        self.allowances = dict(snap["allowances"])
        self.total_supply = snap["total_supply"]

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "decimals": self.decimals,
            "total_supply": str(self.total_supply),
            "holders": len([b for b in self.balances.values() if b > 0]),
        }
