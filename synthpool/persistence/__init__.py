"""Pool state persistence."""

from .storage import PoolStorage

__all__ = ["PoolStorage"]
