"""Keeper automation and price feeds."""

from .feeds import PriceFeed, PriceFeedError, ScriptedPriceFeed, StaticPriceFeed
from .keeper import KeeperOutcome, KeeperReport, ManagedPool, PoolKeeper

__all__ = [
    "PriceFeed",
    "PriceFeedError",
    "ScriptedPriceFeed",
    "StaticPriceFeed",
    "KeeperOutcome",
    "KeeperReport",
    "ManagedPool",
    "PoolKeeper",
]
