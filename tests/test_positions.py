"""
Tests for position records and the position store.
"""

import pytest

from stakeflow_core.errors import PositionNotFound
from stakeflow_core.positions import PositionStatus, PositionStore, StakePosition

from conftest import START


@pytest.fixture
def store():
    return PositionStore()


class TestPerDeposit:
    def test_indices_are_per_owner(self, store):
        store.add_position("sfAlice", 100, 365, 1_000_000, START)
        store.add_position("sfBob", 200, 30, 1_000_000, START)
        store.add_position("sfAlice", 300, 100, 1_000_000, START + 1)
        assert store.count("sfAlice") == 2
        assert store.position_of("sfAlice", 1).principal == 300
        assert store.position_of("sfBob", 0).id == 1

    def test_ids_are_global(self, store):
        a = store.add_position("sfAlice", 100, 365, 1_000_000, START)
        b = store.add_position("sfBob", 100, 365, 1_000_000, START)
        assert (a.id, b.id) == (0, 1)
        assert store.get_position(1) is b

    def test_missing_index(self, store):
        with pytest.raises(PositionNotFound):
            store.position_of("sfAlice", 0)

    def test_negative_index(self, store):
        store.add_position("sfAlice", 100, 365, 1_000_000, START)
        with pytest.raises(PositionNotFound):
            store.position_of("sfAlice", -1)

    def test_missing_id(self, store):
        with pytest.raises(PositionNotFound):
            store.get_position(42)

    def test_totals(self, store):
        store.add_position("sfAlice", 100, 365, 1_000_000, START)
        store.add_position("sfAlice", 50, 365, 1_000_000, START)
        assert store.total_staked == 150
        assert store.active_principal() == 150

    def test_amount_alias_and_dict(self, store):
        pos = store.add_position("sfAlice", 10 ** 24, 365, 1_200_000, START)
        assert pos.amount == 10 ** 24
        d = pos.to_dict()
        assert d["amount"] == str(10 ** 24)
        assert d["status"] == "Active"


class TestAggregate:
    def test_open_account(self, store):
        acct = store.open_account("sfAlice", 500, 2, START)
        assert store.account("sfAlice") is acct
        assert acct.start_time == acct.checkpoint == START
        assert acct.principal == 500 and acct.selector == 2
        assert store.total_staked == 500

    def test_lock_ids_are_unique(self, store):
        a = store.open_account("sfAlice", 500, 2, START)
        b = store.open_account("sfBob", 500, 2, START)
        assert a.lock_id != b.lock_id

    def test_unknown_account(self, store):
        assert store.account("sfNobody") is None

    def test_checkpoint_setter(self, store):
        acct = store.open_account("sfAlice", 500, 0, START)
        acct.checkpoint = START + 10
        assert acct.stake_timestamp == START + 10
        assert acct.start_time == START


class TestSnapshot:
    def test_restore_undoes_changes(self, store):
        store.add_position("sfAlice", 100, 365, 1_000_000, START)
        snap = store.snapshot()
        pos = store.position_of("sfAlice", 0)
        pos.status = PositionStatus.CLOSED
        store.total_staked = 0
        store.add_position("sfBob", 1, 1, 1_000_000, START)
        store.restore(snap)
        assert store.position_of("sfAlice", 0).is_active
        assert store.total_staked == 100
        assert store.count("sfBob") == 0

    def test_snapshot_is_deep(self, store):
        store.add_position("sfAlice", 100, 365, 1_000_000, START)
        snap = store.snapshot()
        store.position_of("sfAlice", 0).principal = 1
        assert snap["positions"][0].principal == 100

    def test_summary(self, store):
        store.add_position("sfAlice", 100, 365, 1_000_000, START)
        store.open_account("sfBob", 50, 0, START)
        summary = store.summary()
        assert summary["total_staked"] == "150"
        assert summary["active_positions"] == 2
        assert summary["stakers"] == 2


def test_closed_position_is_not_active():
    pos = StakePosition(
        id=0, owner="sfAlice", principal=1, selector=1,
        start_time=START, last_checkpoint=START, bonus=1_000_000,
        status=PositionStatus.CLOSED,
    )
    assert not pos.is_active
