"""Pool engine: strategy, ledger, cycle manager, liquidity manager and oracle."""

from .clock import Clock, ManualClock, SystemClock
from .cycle import CycleManager
from .ledger import PositionLedger
from .liquidity import LiquidityManager
from .oracle import AssetOracle, decode_price_response, encode_price_response
from .pool import SolvencyReport, SyntheticPool
from .state import PoolState, StateStore
from .strategy import PoolStrategy
from .tokens import FungibleToken, InMemoryToken

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "CycleManager",
    "PositionLedger",
    "LiquidityManager",
    "AssetOracle",
    "decode_price_response",
    "encode_price_response",
    "SolvencyReport",
    "SyntheticPool",
    "PoolState",
    "StateStore",
    "PoolStrategy",
    "FungibleToken",
    "InMemoryToken",
]
