"""Precondition checks shared by public pool operations."""

from decimal import Decimal

from synthpool.core.errors import InvalidAmount, InvalidPhase
from synthpool.core.models import CyclePhase

from .state import PoolState


def require_phase(state: PoolState, operation: str, *phases: CyclePhase) -> None:
    """Fail fast when the pool is outside the phases an operation runs in."""
    if state.cycle.phase not in phases:
        allowed = ", ".join(p.value for p in phases)
        raise InvalidPhase(f"{operation} requires phase {allowed}, pool is {state.cycle.phase.value}")


def require_positive(amount: Decimal, what: str = "amount") -> None:
    if amount <= 0:
        raise InvalidAmount(f"{what} must be positive, got {amount}")
