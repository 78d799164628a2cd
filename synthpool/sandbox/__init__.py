"""Sandbox module for multi-cycle pool simulation."""

from .models import ActionType, SimulationResult, SimulationScenario, UserAction
from .simulator import PoolSimulator, SimulationError, default_scenario, format_summary

__all__ = [
    "ActionType",
    "SimulationResult",
    "SimulationScenario",
    "UserAction",
    "PoolSimulator",
    "SimulationError",
    "default_scenario",
    "format_summary",
]
