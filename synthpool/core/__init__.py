"""Core module - models, constants and errors."""

from .models import (
    PriceSample,
    RequestType,
    UserRequest,
    SettlementResult,
    UserPosition,
    LPPosition,
    CyclePhase,
    CycleState,
    CycleRecord,
    PoolAccount,
)
from .constants import SECONDS_PER_DAY, SECONDS_PER_YEAR, WAD

__all__ = [
    "PriceSample",
    "RequestType",
    "UserRequest",
    "SettlementResult",
    "UserPosition",
    "LPPosition",
    "CyclePhase",
    "CycleState",
    "CycleRecord",
    "PoolAccount",
    "SECONDS_PER_DAY",
    "SECONDS_PER_YEAR",
    "WAD",
]
