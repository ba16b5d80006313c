"""
Error taxonomy for the staking engine.

Every error aborts the whole call; the engine restores its pre-call
snapshot before the exception leaves it.  ``code`` is stable and is what
the HTTP layer reports to clients.
"""

from __future__ import annotations


class StakingError(ValueError):
    """Base class for all staking failures."""

    code: str = "StakingError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class InvalidAmount(StakingError):
    code = "InvalidAmount"


class InvalidTier(StakingError):
    code = "InvalidTier"


class AlreadyUnstaked(StakingError):
    code = "AlreadyUnstaked"


class LockNotExpired(StakingError):
    code = "LockNotExpired"


class InsufficientAllowanceOrBalance(StakingError):
    code = "InsufficientAllowanceOrBalance"


class Unauthorized(StakingError):
    code = "Unauthorized"


class PositionNotFound(StakingError):
    code = "PositionNotFound"


class InvariantViolation(StakingError):
    code = "InvariantViolation"


class BadSequence(StakingError):
    """A signed request reused or skipped its sender's sequence number."""
    code = "BadSequence"


ERRORS_BY_CODE: dict[str, type[StakingError]] = {
    cls.code: cls
    for cls in (
        InvalidAmount,
        InvalidTier,
        AlreadyUnstaked,
        LockNotExpired,
        InsufficientAllowanceOrBalance,
        Unauthorized,
        PositionNotFound,
        InvariantViolation,
        BadSequence,
    )
}
