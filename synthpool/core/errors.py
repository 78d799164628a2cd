"""Exception types raised by the pool engine.

Every failure aborts the triggering operation with no state change; callers
retry externally when a precondition (elapsed time, fresh price, quorum) is
expected to hold later.
"""

from typing import List


class PoolError(Exception):
    """Base class for all protocol failures."""


# Phase and request-slot errors

class InvalidPhase(PoolError):
    """Operation called outside its required cycle phase."""


class InvalidState(PoolError):
    """Duplicate pending request or otherwise inconsistent request slot."""


class InvalidAmount(PoolError):
    """Non-positive amount or amount exceeding what can be acted on."""


class UnknownPosition(PoolError):
    """No LP or user position exists for the given owner."""


class NothingToClaim(PoolError):
    """No settled request is waiting for the user."""


# Funding preconditions

class InsufficientCollateral(PoolError):
    """Posted collateral is below the strategy minimum."""


class InsufficientBalance(PoolError):
    """Caller does not hold enough tokens or collateral."""


class InsufficientLiquidity(PoolError):
    """LP collateral cannot back the requested exposure."""


class BelowMinimumCollateral(PoolError):
    """Withdrawal would leave an LP (or the pool) under its required collateral."""


class HealthyPosition(PoolError):
    """Liquidation attempted on a position at or above its threshold."""


# Timing and price preconditions

class CycleNotElapsed(PoolError):
    """The configured cycle length has not passed yet."""


class StalePrice(PoolError):
    """The oracle has not delivered a sample newer than the rebalance window start."""


class InvalidPrice(PoolError):
    """Submitted rebalance price lies outside the oracle sample range."""


class RebalanceIncomplete(PoolError):
    """Not every LP rebalanced and the fallback timeout has not elapsed."""


class DuplicateRebalance(PoolError):
    """LP already rebalanced in the current cycle."""


class RequestCooldown(PoolError):
    """A new oracle request was attempted before the cooldown passed."""


# Oracle response validation

class UnexpectedRequestID(PoolError):
    """Fulfillment does not match the outstanding oracle request."""


class InvalidSource(PoolError):
    """Fulfillment was delivered by an unauthorized source."""


# Engine integrity

class ReentrancyError(PoolError):
    """A public operation was entered while another one was in flight."""


class InvariantViolation(PoolError):
    """Post-state violates one or more pool invariants."""

    def __init__(self, violations: List[str]):
        self.violations = violations
        super().__init__(f"invariant violations: {', '.join(violations)}")
