"""
StakeFlow - a token-staking reward ledger.

Key features:
- Tiered and lock-days reward schedules with exact integer accrual
- Amount-tiered bonus multipliers
- Linear early-withdrawal penalties, gated by an administrator flag
- Aggregate (one account per owner) or per-deposit position models
- Serialized, all-or-nothing operations with invariant checks
- SQLite persistence and an aiohttp REST API
"""

__version__ = "1.0.0"
__all__ = [
    "precision",
    "errors",
    "bonus",
    "schedule",
    "positions",
    "rewards",
    "penalty",
    "token",
    "invariants",
    "engine",
    "wallet",
    "config",
    "logging_config",
    "storage",
    "api",
]
