"""Core data models for synthetic pools."""

from .oracle import PriceSample
from .request import RequestType, UserRequest, SettlementResult
from .position import UserPosition, LPPosition
from .cycle import CyclePhase, CycleState, CycleRecord
from .pool import PoolAccount

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
]
