"""
Tests for the in-process token ledger.
"""

import pytest

from stakeflow_core.errors import InsufficientAllowanceOrBalance, InvalidAmount
from stakeflow_core.token import TokenLedger


@pytest.fixture
def funded(token):
    token.mint("sfAlice", 1_000)
    return token


class TestTransfer:
    def test_mint_updates_supply(self, token):
        token.mint("sfAlice", 500)
        assert token.total_supply == 500
        assert token.balance_of("sfAlice") == 500

    def test_mint_requires_positive(self, token):
        with pytest.raises(InvalidAmount):
            token.mint("sfAlice", 0)

    def test_transfer(self, funded):
        funded.transfer("sfAlice", "sfBob", 400)
        assert funded.balance_of("sfAlice") == 600
        assert funded.balance_of("sfBob") == 400

    def test_transfer_insufficient(self, funded):
        with pytest.raises(InsufficientAllowanceOrBalance):
            funded.transfer("sfAlice", "sfBob", 1_001)
        assert funded.balance_of("sfAlice") == 1_000

    def test_negative_transfer(self, funded):
        with pytest.raises(InvalidAmount):
            funded.transfer("sfAlice", "sfBob", -1)

    def test_self_transfer_is_noop(self, funded):
        funded.transfer("sfAlice", "sfAlice", 10)
        assert funded.balance_of("sfAlice") == 1_000


class TestAllowance:
    def test_transfer_from_spends_allowance(self, funded):
        funded.approve("sfAlice", "sfSpender", 300)
        funded.transfer_from("sfSpender", "sfAlice", "sfPool", 200)
        assert funded.balance_of("sfPool") == 200
        assert funded.allowance("sfAlice", "sfSpender") == 100

    def test_transfer_from_without_allowance(self, funded):
        with pytest.raises(InsufficientAllowanceOrBalance):
            funded.transfer_from("sfSpender", "sfAlice", "sfPool", 1)

    def test_allowance_above_balance(self, funded):
        funded.approve("sfAlice", "sfSpender", 5_000)
        with pytest.raises(InsufficientAllowanceOrBalance):
            funded.transfer_from("sfSpender", "sfAlice", "sfPool", 2_000)
        assert funded.allowance("sfAlice", "sfSpender") == 5_000

    def test_negative_approve(self, funded):
        with pytest.raises(InvalidAmount):
            funded.approve("sfAlice", "sfSpender", -1)


class TestSnapshot:
    def test_restore(self, funded):
        snap = funded.snapshot()
        funded.transfer("sfAlice", "sfBob", 10)
        funded.approve("sfAlice", "sfBob", 10)
        funded.restore(snap)
        assert funded.balance_of("sfBob") == 0
        assert funded.allowance("sfAlice", "sfBob") == 0

    def test_to_dict(self):
        token = TokenLedger(symbol="CSM", decimals=9)
        token.mint("sfAlice", 10 ** 30)
        d = token.to_dict()
        assert d == {
            "symbol": "CSM", "decimals": 9,
            "total_supply": str(10 ** 30), "holders": 1,
        }
