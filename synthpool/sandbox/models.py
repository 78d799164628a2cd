"""Sandbox simulation models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from synthpool.analytics import PoolMetrics
from synthpool.core.models import CycleRecord, PoolAccount


class ActionType(Enum):
    """User actions a scenario can schedule."""

    DEPOSIT = "deposit"
    REDEEM = "redeem"


@dataclass
class UserAction:
    """
    A user request submitted at the start of a cycle.

    For redemptions, amount=None redeems the user's whole exposure balance.
    For deposits, collateral=None posts exactly the required minimum.
    """

    cycle: int
    user: str
    action: ActionType
    amount: Optional[Decimal] = None
    collateral: Optional[Decimal] = None


@dataclass
class SimulationScenario:
    """Inputs for one simulated pool run."""

    name: str
    symbol: str
    prices: List[Decimal]                               # Settlement price per cycle
    lp_collateral: Dict[str, Decimal] = field(default_factory=dict)
    actions: List[UserAction] = field(default_factory=list)
    user_funding: Decimal = Decimal("10000")            # Reserve minted to each acting user
    start_time: int = 0

    @property
    def cycles(self) -> int:
        return len(self.prices)

    @property
    def users(self) -> List[str]:
        return sorted({a.user for a in self.actions})

    def actions_for(self, cycle: int) -> List[UserAction]:
        return [a for a in self.actions if a.cycle == cycle]


@dataclass
class SimulationResult:
    """
    Complete result of a pool simulation.

    Contains the closed cycle records and aggregated metrics.
    """

    scenario_name: str
    symbol: str

    records: List[CycleRecord] = field(default_factory=list)
    final_account: Optional[PoolAccount] = None
    metrics: Optional[PoolMetrics] = None
    balances: Dict[str, Dict[str, Decimal]] = field(default_factory=dict)   # user -> {reserve, exposure}

    # Status
    success: bool = True
    error_message: str = ""

    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = datetime.now(timezone.utc)

    @property
    def price_series(self) -> List[float]:
        """Extract settlement price series for charting."""
        return [float(r.price) for r in self.records if r.price is not None]

    @property
    def utilization_series(self) -> List[float]:
        return [float(r.utilization) for r in self.records]

    def to_dict(self) -> dict:
        return {
            "scenario_name": self.scenario_name,
            "symbol": self.symbol,
            "records": [r.to_dict() for r in self.records],
            "final_account": self.final_account.to_dict() if self.final_account else None,
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "balances": {
                user: {k: str(v) for k, v in b.items()} for user, b in self.balances.items()
            },
            "success": self.success,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
