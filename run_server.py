#!/usr/bin/env python3
"""
StakeFlow Server Runner — starts a staking ledger with:
  - Token ledger seeded from the genesis table
  - Staking engine (aggregate or per-deposit model)
  - Optional SQLite persistence
  - REST API
  - Interactive CLI for inspecting the pool

Usage:
    python run_server.py --config stakeflow.toml
    python run_server.py --owner sfAdmin --mode per_deposit --port 8080 --no-cli

Environment variables (alternative to flags):
    STAKEFLOW_OWNER, STAKEFLOW_MODE, STAKEFLOW_API_PORT, STAKEFLOW_DB_PATH, ...
    (see stakeflow_core.config.load_config)
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import time
from typing import Callable, Optional

from stakeflow_core.api import APIServer
from stakeflow_core.bonus import BonusCalculator
from stakeflow_core.config import StakeFlowConfig, load_config
from stakeflow_core.engine import StakingEngine
from stakeflow_core.logging_config import setup_logging
from stakeflow_core.precision import format_amount, format_multiplier, tokens
from stakeflow_core.schedule import build_schedule
from stakeflow_core.storage import EngineStore
from stakeflow_core.token import TokenLedger

logger = logging.getLogger("stakeflow_server")


def build_bonus(cfg: StakeFlowConfig) -> BonusCalculator:
    """Bonus table from config; an empty table keeps the defaults."""
    if not cfg.bonus.thresholds:
        return BonusCalculator(baseline=cfg.bonus.baseline)
    return BonusCalculator(
        [
            (tokens(t["min_tokens"], cfg.token.decimals), int(t["multiplier"]))
            for t in cfg.bonus.thresholds
        ],
        baseline=cfg.bonus.baseline,
    )


def build_engine(
    cfg: StakeFlowConfig,
    clock: Callable[[], float] = time.time,
) -> StakingEngine:
    if not cfg.engine.owner:
        raise ValueError("engine.owner (or STAKEFLOW_OWNER) must be set")
    schedule_name = cfg.engine.schedule or (
        "tiered" if cfg.engine.mode == "aggregate" else "lock_days"
    )
    return StakingEngine(
        TokenLedger(symbol=cfg.token.symbol, decimals=cfg.token.decimals),
        cfg.engine.owner,
        mode=cfg.engine.mode,
        schedule=build_schedule(schedule_name, cfg.engine.schedule_overrides),
        bonus=build_bonus(cfg),
        merge_policy=cfg.engine.merge_policy,
        force_unstake_allowed=cfg.engine.force_unstake_allowed,
        check_invariants=cfg.engine.check_invariants,
        clock=clock,
    )


# ===================================================================
#  StakeFlow Server
# ===================================================================

class StakeFlowServer:
    """
    Combines the token ledger, staking engine, persistence and the
    REST API into a single runnable service.
    """

    def __init__(self, config: StakeFlowConfig, clock: Callable[[], float] = time.time):
        self.config = config
        self.engine = build_engine(config, clock)
        self.store: Optional[EngineStore] = None
        self._api: Optional[APIServer] = None

        if config.storage.enabled:
            self.store = EngineStore(config.storage.path)
            if self.store.load_into(self.engine):
                logger.info("Engine state restored from database")
                return
        self.apply_genesis()
        self.save()

    @classmethod
    def from_config(cls, cfg: StakeFlowConfig, clock: Callable[[], float] = time.time):
        return cls(cfg, clock)

    def apply_genesis(self) -> None:
        """Mint genesis balances and fund the reward reserve."""
        token = self.engine.token
        decimals = self.config.token.decimals
        for address, amount in self.config.token.genesis.items():
            if amount > 0:
                token.mint(address, tokens(amount, decimals))
        if self.config.token.genesis:
            logger.info(f"Applied genesis ({len(self.config.token.genesis)} accounts)")
        if self.config.token.reward_reserve > 0:
            reserve = tokens(self.config.token.reward_reserve, decimals)
            token.mint(self.engine.owner, reserve)
            self.engine.fund_rewards(self.engine.owner, reserve)

    def save(self) -> None:
        if self.store is not None:
            self.store.save_engine(self.engine)

    # ---- lifecycle ----

    async def start(self) -> None:
        if self.config.api.enabled:
            self._api = APIServer(
                self.engine,
                host=self.config.api.host,
                port=self.config.api.port,
                api_config=self.config.api,
                on_commit=self.save,
            )
            await self._api.start()
        logger.info(
            f"StakeFlow started | owner={self.engine.owner} | "
            f"mode={self.engine.mode} | schedule={self.engine.schedule.name}"
        )

    async def stop(self) -> None:
        if self._api is not None:
            await self._api.stop()
            self._api = None
        if self.store is not None:
            logger.info("Saving engine state to database...")
            self.save()
            self.store.close()
            self.store = None

    def status(self) -> dict:
        return self.engine.pool_summary()


# ===================================================================
#  Interactive CLI
# ===================================================================

HELP_TEXT = """
Commands:
  status                 Pool totals and flags
  tiers                  Schedule terms
  bonus <tokens>         Bonus multiplier for a whole-token amount
  balance <address>      Token balance
  pending <address>      Pending reward of an owner
  stakes <address>       Stakes of an owner
  help                   Show this help
  quit                   Stop the server
"""


async def interactive_cli(server: StakeFlowServer):
    """Simple async REPL for inspecting the running engine."""
    loop = asyncio.get_event_loop()
    engine = server.engine
    symbol = engine.token.symbol
    print(HELP_TEXT)

    while True:
        try:
            line = await loop.run_in_executor(None, lambda: input("stakeflow> "))
            parts = line.strip().split()
            if not parts:
                continue
            cmd = parts[0].lower()

            if cmd == "help":
                print(HELP_TEXT)

            elif cmd == "status":
                print(json.dumps(server.status(), indent=2, default=str))

            elif cmd == "tiers":
                print(json.dumps(engine.schedule.to_dict(), indent=2, default=str))

            elif cmd == "bonus":
                if len(parts) < 2:
                    print("  Usage: bonus <tokens>")
                    continue
                amount = tokens(parts[1], engine.token.decimals)
                print(f"  {format_multiplier(engine.calculate_bonus(amount))}")

            elif cmd == "balance":
                if len(parts) < 2:
                    print("  Usage: balance <address>")
                    continue
                print(f"  {format_amount(engine.token.balance_of(parts[1]), symbol)}")

            elif cmd == "pending":
                if len(parts) < 2:
                    print("  Usage: pending <address>")
                    continue
                pending = engine.calculate_pending_rewards(parts[1])
                print(f"  {format_amount(pending, symbol)}")

            elif cmd == "stakes":
                if len(parts) < 2:
                    print("  Usage: stakes <address>")
                    continue
                if engine.mode == "aggregate":
                    acct = engine.user_info_map(parts[1])
                    rows = [engine.position_dict(acct)] if acct else []
                else:
                    rows = [engine.position_dict(p) for p in engine.store.positions_of(parts[1])]
                print(json.dumps(rows, indent=2, default=str))

            elif cmd in ("quit", "exit", "q"):
                print("Shutting down...")
                await server.stop()
                break

            else:
                print(f"  Unknown command: {cmd}. Type 'help'.")

        except (EOFError, KeyboardInterrupt):
            print("\nShutting down...")
            await server.stop()
            break
        except Exception as e:
            print(f"  Error: {e}")


# ===================================================================
#  Main entry point
# ===================================================================

def parse_args(argv: Optional[list[str]] = None):
    p = argparse.ArgumentParser(description="StakeFlow staking ledger server")
    p.add_argument("--config", default=None, help="Path to stakeflow.toml config file")
    p.add_argument("--owner", default=None, help="Administrator address")
    p.add_argument("--mode", choices=("aggregate", "per_deposit"), default=None,
                   help="Position model")
    p.add_argument("--host", default=None, help="API listen host")
    p.add_argument("--port", type=int, default=None, help="API listen port")
    p.add_argument("--db", default=None, help="SQLite database path (enables persistence)")
    p.add_argument("--no-cli", action="store_true",
                   help="Run without interactive CLI")
    return p.parse_args(argv)


def apply_args(cfg: StakeFlowConfig, args) -> StakeFlowConfig:
    """CLI flags override config file and environment."""
    if args.owner:
        cfg.engine.owner = args.owner
    if args.mode:
        cfg.engine.mode = args.mode
    if args.host:
        cfg.api.host = args.host
    if args.port is not None:
        cfg.api.port = args.port
    if args.db:
        cfg.storage.path = args.db
        cfg.storage.enabled = True
    return cfg


async def main(argv: Optional[list[str]] = None):
    args = parse_args(argv)
    cfg = apply_args(load_config(args.config), args)
    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)

    server = StakeFlowServer.from_config(cfg)
    await server.start()

    if args.no_cli:
        try:
            while True:
                await asyncio.sleep(1)
        except (KeyboardInterrupt, asyncio.CancelledError):
            await server.stop()
    else:
        await interactive_cli(server)


if __name__ == "__main__":
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())
