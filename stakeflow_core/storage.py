"""
SQLite-based persistence layer for StakeFlow engine state.

Stores positions, aggregate accounts, token balances, allowances,
request sequence numbers and engine metadata so that a server can
recover after restart.  Amounts are stored as decimal TEXT because
18-decimal balances overflow SQLite's 64-bit INTEGER.

Usage:
    store = EngineStore("data/stakeflow.db")
    store.save_engine(engine)         # full snapshot, one transaction
    ...
    store.load_into(fresh_engine)     # restore after restart
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any

from stakeflow_core.positions import PositionStatus, StakePosition, UserAccount

logger = logging.getLogger("stakeflow_storage")


class EngineStore:
    """Thin SQLite wrapper for persisting engine state."""

    CURRENT_SCHEMA_VERSION = 1

    def __init__(self, db_path: str = "data/stakeflow.db"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_tables()
        self._ensure_schema_version()
        logger.info(f"Storage opened: {db_path}")

    # ── schema ───────────────────────────────────────────────────

    def _create_tables(self) -> None:
        c = self._conn
        c.execute("""
            CREATE TABLE IF NOT EXISTS meta (
                key   TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS positions (
                id              INTEGER PRIMARY KEY,
                owner           TEXT NOT NULL,
                owner_index     INTEGER NOT NULL,
                principal       TEXT NOT NULL,
                selector        INTEGER NOT NULL,
                start_time      INTEGER NOT NULL,
                last_checkpoint INTEGER NOT NULL,
                bonus           INTEGER NOT NULL,
                status          TEXT NOT NULL,
                reward_paid     TEXT NOT NULL DEFAULT '0',
                penalty_paid    TEXT NOT NULL DEFAULT '0',
                closed_at       INTEGER
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS accounts (
                owner           TEXT PRIMARY KEY,
                total_staked    TEXT NOT NULL,
                tier            INTEGER NOT NULL,
                stake_timestamp INTEGER NOT NULL,
                start_time      INTEGER NOT NULL,
                lock_id         INTEGER NOT NULL,
                status          TEXT NOT NULL,
                deposits        INTEGER NOT NULL DEFAULT 1,
                reward_paid     TEXT NOT NULL DEFAULT '0',
                penalty_paid    TEXT NOT NULL DEFAULT '0',
                closed_at       INTEGER
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS balances (
                address TEXT PRIMARY KEY,
                balance TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS allowances (
                owner   TEXT NOT NULL,
                spender TEXT NOT NULL,
                amount  TEXT NOT NULL,
                PRIMARY KEY (owner, spender)
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS sequences (
                address  TEXT PRIMARY KEY,
                sequence INTEGER NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                id      INTEGER PRIMARY KEY CHECK (id = 1),
                version INTEGER NOT NULL
            )
        """)
        c.commit()

    def _ensure_schema_version(self) -> None:
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (id, version) VALUES (1, ?)",
                (self.CURRENT_SCHEMA_VERSION,),
            )
            self._conn.commit()
        elif row["version"] > self.CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema v{row['version']} is newer than this software "
                f"(v{self.CURRENT_SCHEMA_VERSION}).  Upgrade StakeFlow."
            )

    # ── save ─────────────────────────────────────────────────────

    def save_engine(self, engine) -> None:
        """Replace the stored state with a snapshot of *engine*."""
        with engine._lock:
            store = engine.store
            token = engine.token
            meta = {
                "mode": engine.mode,
                "schedule": engine.schedule.name,
                "owner": engine.owner,
                "force_unstake_allowed": "1" if engine.force_unstake_allowed else "0",
                "next_id": str(store.next_id),
                "total_staked": str(store.total_staked),
                "total_rewards_paid": str(store.total_rewards_paid),
                "total_rewards_compounded": str(store.total_rewards_compounded),
                "total_penalties": str(store.total_penalties),
                "total_supply": str(token.total_supply),
            }
            position_rows = []
            for owner, ids in store.positions_by_owner.items():
                for idx, pid in enumerate(ids):
                    p = store.positions[pid]
                    position_rows.append((
                        p.id, p.owner, idx, str(p.principal), p.selector,
                        p.start_time, p.last_checkpoint, p.bonus, p.status.value,
                        str(p.reward_paid), str(p.penalty_paid), p.closed_at,
                    ))
            account_rows = [
                (a.owner, str(a.total_staked), a.tier, a.stake_timestamp,
                 a.start_time, a.lock_id, a.status.value, a.deposits,
                 str(a.reward_paid), str(a.penalty_paid), a.closed_at)
                for a in store.accounts.values()
            ]
            balance_rows = [(addr, str(b)) for addr, b in token.balances.items()]
            allowance_rows = [
                (o, s, str(v)) for (o, s), v in token.allowances.items()
            ]
            sequence_rows = list(engine.sequences.items())

        with self._conn:
            c = self._conn
            for table in (
                "meta", "positions", "accounts", "balances", "allowances", "sequences",
            ):
                c.execute(f"DELETE FROM {table}")
            c.executemany(
                "INSERT INTO meta (key, value) VALUES (?, ?)", meta.items(),
            )
            c.executemany(
                """INSERT INTO positions
                   (id, owner, owner_index, principal, selector, start_time,
                    last_checkpoint, bonus, status, reward_paid, penalty_paid,
                    closed_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                position_rows,
            )
            c.executemany(
                """INSERT INTO accounts
                   (owner, total_staked, tier, stake_timestamp, start_time,
                    lock_id, status, deposits, reward_paid, penalty_paid,
                    closed_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                account_rows,
            )
            c.executemany(
                "INSERT INTO balances (address, balance) VALUES (?, ?)",
                balance_rows,
            )
            c.executemany(
                "INSERT INTO allowances (owner, spender, amount) VALUES (?, ?, ?)",
                allowance_rows,
            )
            c.executemany(
                "INSERT INTO sequences (address, sequence) VALUES (?, ?)",
                sequence_rows,
            )
        logger.debug(
            f"Saved {len(position_rows)} stakes, {len(account_rows)} accounts, "
            f"{len(balance_rows)} balances"
        )

    # ── load ─────────────────────────────────────────────────────

    def load_meta(self) -> dict[str, str]:
        rows = self._conn.execute("SELECT key, value FROM meta").fetchall()
        return {r["key"]: r["value"] for r in rows}

    def has_state(self) -> bool:
        return bool(self.load_meta())

    def load_into(self, engine) -> bool:
        """
        Restore stored state into a freshly built *engine*.

        Returns False when the database is empty.  Raises ``RuntimeError``
        when the stored mode or schedule differs from the engine's.
        """
        meta = self.load_meta()
        if not meta:
            return False
        if meta["mode"] != engine.mode or meta["schedule"] != engine.schedule.name:
            raise RuntimeError(
                f"Stored state is {meta['mode']}/{meta['schedule']}, engine is "
                f"{engine.mode}/{engine.schedule.name}"
            )

        with engine._lock:
            store = engine.store
            token = engine.token
            store.positions.clear()
            store.positions_by_owner.clear()
            store.accounts.clear()

            for r in self._rows("SELECT * FROM positions ORDER BY owner, owner_index"):
                pos = StakePosition(
                    id=r["id"],
                    owner=r["owner"],
                    principal=int(r["principal"]),
                    selector=r["selector"],
                    start_time=r["start_time"],
                    last_checkpoint=r["last_checkpoint"],
                    bonus=r["bonus"],
                    status=PositionStatus(r["status"]),
                    reward_paid=int(r["reward_paid"]),
                    penalty_paid=int(r["penalty_paid"]),
                    closed_at=r["closed_at"],
                )
                store.positions[pos.id] = pos
                store.positions_by_owner.setdefault(pos.owner, []).append(pos.id)

            for r in self._rows("SELECT * FROM accounts"):
                store.accounts[r["owner"]] = UserAccount(
                    owner=r["owner"],
                    total_staked=int(r["total_staked"]),
                    tier=r["tier"],
                    stake_timestamp=r["stake_timestamp"],
                    start_time=r["start_time"],
                    lock_id=r["lock_id"],
                    status=PositionStatus(r["status"]),
                    deposits=r["deposits"],
                    reward_paid=int(r["reward_paid"]),
                    penalty_paid=int(r["penalty_paid"]),
                    closed_at=r["closed_at"],
                )

            store.next_id = int(meta["next_id"])
            store.total_staked = int(meta["total_staked"])
            store.total_rewards_paid = int(meta["total_rewards_paid"])
            store.total_rewards_compounded = int(meta.get("total_rewards_compounded", "0"))
            store.total_penalties = int(meta["total_penalties"])

            token.balances = {
                r["address"]: int(r["balance"])
                for r in self._rows("SELECT * FROM balances")
            }
            token.allowances = {
                (r["owner"], r["spender"]): int(r["amount"])
                for r in self._rows("SELECT * FROM allowances")
            }
            token.total_supply = int(meta["total_supply"])

            engine._owner = meta["owner"]
            engine._force_unstake_allowed = meta["force_unstake_allowed"] == "1"
            engine.sequences = {
                r["address"]: r["sequence"]
                for r in self._rows("SELECT * FROM sequences")
            }

        logger.info(
            f"Restored {len(store.positions)} stakes and "
            f"{len(store.accounts)} accounts from {self.db_path}"
        )
        return True

    def _rows(self, sql: str) -> list[dict[str, Any]]:
        return [dict(r) for r in self._conn.execute(sql).fetchall()]

    def close(self) -> None:
        self._conn.close()
