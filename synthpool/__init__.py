"""Cycle-based synthetic exposure pool engine."""

__version__ = "0.1.0"
