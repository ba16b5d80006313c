"""
Shared pytest fixtures for the StakeFlow test suite.
"""

import pytest

from stakeflow_core.engine import StakingEngine
from stakeflow_core.token import TokenLedger
from stakeflow_core.wallet import Wallet

START = 1_700_000_000
DAY = 86_400
YEAR = 365 * DAY

ADMIN = "sfAdmin"
ALICE = "sfAlice"
BOB = "sfBob"

STAKER_FUNDS = 10 ** 25
RESERVE = 10 ** 25


class FakeClock:
    """Manually advanced clock for deterministic accrual."""

    def __init__(self, start: int = START):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


def make_engine(mode="aggregate", clock=None, reserve=RESERVE, **kwargs):
    """Engine with funded, pre-approved stakers and a funded reward reserve."""
    token = TokenLedger()
    engine = StakingEngine(token, ADMIN, mode=mode, clock=clock or FakeClock(), **kwargs)
    for who in (ALICE, BOB):
        token.mint(who, STAKER_FUNDS)
        token.approve(who, engine.custody_address, STAKER_FUNDS)
    if reserve:
        token.mint(ADMIN, reserve)
        engine.fund_rewards(ADMIN, reserve)
    return engine


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def token():
    """Fresh token ledger."""
    return TokenLedger()


@pytest.fixture
def aggregate_engine(clock):
    """Aggregate-account engine on the tiered schedule."""
    return make_engine("aggregate", clock)


@pytest.fixture
def deposit_engine(clock):
    """Per-deposit engine on the lock-days schedule."""
    return make_engine("per_deposit", clock)


@pytest.fixture
def admin_wallet():
    """Deterministic wallet for the administrator."""
    return Wallet.from_seed("admin-fixture-seed")


@pytest.fixture
def alice_wallet():
    """Deterministic wallet for Alice."""
    return Wallet.from_seed("alice-fixture-seed")
