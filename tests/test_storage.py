"""
Tests for SQLite persistence of engine state.
"""

import sqlite3

import pytest

from stakeflow_core.positions import PositionStatus
from stakeflow_core.storage import EngineStore

from conftest import ADMIN, ALICE, BOB, DAY, FakeClock, make_engine


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "data" / "stakeflow.db")


def _fresh(mode, clock):
    """Engine with no stakes and no funding, ready to be restored into."""
    return make_engine(mode, clock, reserve=0)


class TestSchema:
    def test_creates_parent_directory(self, db_path):
        store = EngineStore(db_path)
        assert not store.has_state()
        store.close()

    def test_in_memory(self):
        store = EngineStore(":memory:")
        assert store.load_meta() == {}
        store.close()

    def test_newer_schema_rejected(self, db_path):
        EngineStore(db_path).close()
        conn = sqlite3.connect(db_path)
        conn.execute("UPDATE schema_version SET version = 99 WHERE id = 1")
        conn.commit()
        conn.close()
        with pytest.raises(RuntimeError):
            EngineStore(db_path)

    def test_empty_database_loads_nothing(self, db_path, clock):
        store = EngineStore(db_path)
        assert store.load_into(_fresh("aggregate", clock)) is False
        store.close()


class TestRoundTrip:
    def test_aggregate_state(self, db_path, clock):
        engine = make_engine("aggregate", clock, force_unstake_allowed=True)
        engine.stake(ALICE, 10 ** 24, 3)
        engine.stake(BOB, 100_000, 0)
        clock.advance(DAY)
        engine.claim_rewards(ALICE)
        engine.unstake(BOB)
        engine.transfer_ownership(ADMIN, "sfNewAdmin")

        store = EngineStore(db_path)
        store.save_engine(engine)
        store.close()

        restored = _fresh("aggregate", clock)
        store = EngineStore(db_path)
        assert store.load_into(restored) is True
        store.close()

        assert restored.owner == "sfNewAdmin"
        assert restored.force_unstake_allowed is True
        assert restored.token.balances == engine.token.balances
        assert restored.token.allowances == engine.token.allowances
        assert restored.token.total_supply == engine.token.total_supply
        assert restored.store.total_staked == engine.store.total_staked
        assert restored.store.total_penalties == engine.store.total_penalties
        assert restored.user_info_map(ALICE) == engine.user_info_map(ALICE)
        assert restored.user_info_map(BOB).status is PositionStatus.CLOSED

        clock.advance(DAY)
        assert restored.calculate_pending_rewards(ALICE) == \
            engine.calculate_pending_rewards(ALICE)

    def test_per_deposit_state(self, db_path, clock):
        engine = make_engine("per_deposit", clock)
        engine.stake(BOB, 500, 30)
        engine.stake(ALICE, 100, 365)
        engine.stake(ALICE, 200, 100)
        clock.advance(10 * DAY)
        engine.unstake(ALICE, 0)

        store = EngineStore(db_path)
        store.save_engine(engine)
        restored = _fresh("per_deposit", FakeClock(clock.now))
        store.load_into(restored)
        store.close()

        assert restored.user_stake_count(ALICE) == 2
        assert restored.user_stakes(ALICE, 1) == engine.user_stakes(ALICE, 1)
        assert not restored.user_stakes(ALICE, 0).is_active
        assert restored.store.next_id == 3
        # new stakes continue the id sequence
        restored.stake(BOB, 1, 1)
        assert restored.store.get_position(3).owner == BOB

    def test_save_replaces_previous_snapshot(self, db_path, clock):
        engine = make_engine("per_deposit", clock)
        store = EngineStore(db_path)
        engine.stake(ALICE, 100, 365)
        store.save_engine(engine)
        engine.stake(ALICE, 100, 365)
        store.save_engine(engine)
        restored = _fresh("per_deposit", clock)
        store.load_into(restored)
        store.close()
        assert restored.user_stake_count(ALICE) == 2

    def test_mode_mismatch(self, db_path, clock):
        store = EngineStore(db_path)
        store.save_engine(make_engine("aggregate", clock))
        with pytest.raises(RuntimeError):
            store.load_into(_fresh("per_deposit", clock))
        store.close()

    def test_sequences_and_compounded_total(self, db_path, clock):
        engine = make_engine("aggregate", clock, merge_policy="compound")
        engine.stake(ALICE, 100_000, 0)
        clock.advance(DAY)
        engine.stake(ALICE, 100_000, 0)
        engine.use_sequence(ALICE, 1)
        engine.use_sequence(ALICE, 2)
        engine.use_sequence(BOB, 1)

        store = EngineStore(db_path)
        store.save_engine(engine)
        restored = _fresh("aggregate", FakeClock(clock.now))
        store.load_into(restored)
        store.close()

        assert restored.sequences == {ALICE: 2, BOB: 1}
        assert restored.next_sequence(ALICE) == 3
        assert restored.store.total_rewards_compounded == 285
