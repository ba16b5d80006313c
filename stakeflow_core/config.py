"""
TOML-based configuration for StakeFlow servers.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from stakeflow_core.config import load_config
    cfg = load_config("stakeflow.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

_TRUE = {"1", "true", "yes", "on"}


@dataclass
class EngineConfig:
    """Staking engine settings."""
    owner: str = ""                     # administrator address (required to run)
    mode: str = "aggregate"             # "aggregate" or "per_deposit"
    schedule: str = ""                  # "tiered" / "lock_days"; empty = mode default
    merge_policy: str = "settle"        # "settle", "compound" or "discard"
    force_unstake_allowed: bool = False
    check_invariants: bool = True
    # Overrides for the named schedule, see schedule.build_schedule
    schedule_overrides: dict[str, Any] = field(default_factory=dict)


@dataclass
class BonusConfig:
    """Bonus thresholds: list of {min_tokens, multiplier}."""
    baseline: int = 1_000_000
    thresholds: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class TokenConfig:
    """Token collaborator settings."""
    symbol: str = "STK"
    decimals: int = 18
    # address -> whole-token genesis balance
    genesis: dict[str, int] = field(default_factory=dict)
    # whole tokens placed in the reward reserve at start-up
    reward_reserve: int = 0


@dataclass
class APIConfig:
    """REST API settings."""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)  # allowed CORS origins (empty = no CORS)
    max_body_bytes: int = 65_536


@dataclass
class StorageConfig:
    """Persistence settings."""
    enabled: bool = False
    path: str = "data/stakeflow.db"


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class StakeFlowConfig:
    """Top-level configuration container."""
    engine: EngineConfig = field(default_factory=EngineConfig)
    bonus: BonusConfig = field(default_factory=BonusConfig)
    token: TokenConfig = field(default_factory=TokenConfig)
    api: APIConfig = field(default_factory=APIConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> StakeFlowConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    The ``[engine.schedule_overrides]`` table is passed through to the
    schedule builder untouched.

    Env-var mapping:
        STAKEFLOW_OWNER          -> engine.owner
        STAKEFLOW_MODE           -> engine.mode
        STAKEFLOW_SCHEDULE       -> engine.schedule
        STAKEFLOW_MERGE_POLICY   -> engine.merge_policy
        STAKEFLOW_FORCE_UNSTAKE  -> engine.force_unstake_allowed
        STAKEFLOW_HOST           -> api.host
        STAKEFLOW_API_PORT       -> api.port
        STAKEFLOW_API_KEY        -> api.api_key
        STAKEFLOW_CORS_ORIGINS   -> api.cors_origins (comma-separated)
        STAKEFLOW_DB_PATH        -> storage.path (enables storage)
        STAKEFLOW_LOG_LEVEL      -> logging.level
        STAKEFLOW_LOG_FMT        -> logging.format
    """
    cfg = StakeFlowConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("engine", cfg.engine),
                ("bonus", cfg.bonus),
                ("token", cfg.token),
                ("api", cfg.api),
                ("storage", cfg.storage),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("STAKEFLOW_OWNER"):
        cfg.engine.owner = v
    if v := os.environ.get("STAKEFLOW_MODE"):
        cfg.engine.mode = v
    if v := os.environ.get("STAKEFLOW_SCHEDULE"):
        cfg.engine.schedule = v
    if v := os.environ.get("STAKEFLOW_MERGE_POLICY"):
        cfg.engine.merge_policy = v
    if v := os.environ.get("STAKEFLOW_FORCE_UNSTAKE"):
        cfg.engine.force_unstake_allowed = v.strip().lower() in _TRUE
    if v := os.environ.get("STAKEFLOW_HOST"):
        cfg.api.host = v
    if v := os.environ.get("STAKEFLOW_API_PORT"):
        cfg.api.port = int(v)
    if v := os.environ.get("STAKEFLOW_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("STAKEFLOW_CORS_ORIGINS"):
        cfg.api.cors_origins = [o.strip() for o in v.split(",") if o.strip()]
    if v := os.environ.get("STAKEFLOW_DB_PATH"):
        cfg.storage.path = v
        cfg.storage.enabled = True
    if v := os.environ.get("STAKEFLOW_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("STAKEFLOW_LOG_FMT"):
        cfg.logging.format = v

    return cfg
