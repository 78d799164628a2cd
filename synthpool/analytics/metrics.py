"""Pool metrics over closed cycle records."""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

import numpy as np

from synthpool.core.constants import SECONDS_PER_YEAR
from synthpool.core.models import CycleRecord


@dataclass
class PoolMetrics:
    """Aggregated KPIs over a pool's cycle history."""

    cycles: int
    mean_utilization: Decimal
    peak_utilization: Decimal
    mean_interest_rate: Decimal
    total_interest: Decimal
    total_fees: Decimal
    total_minted: Decimal
    total_burned: Decimal
    realized_volatility: Optional[Decimal]      # Annualized, None with fewer than 2 returns
    max_drawdown: Decimal                       # Of the settlement price, as a fraction

    def to_dict(self) -> dict:
        return {
            "cycles": self.cycles,
            "mean_utilization": str(self.mean_utilization),
            "peak_utilization": str(self.peak_utilization),
            "mean_interest_rate": str(self.mean_interest_rate),
            "total_interest": str(self.total_interest),
            "total_fees": str(self.total_fees),
            "total_minted": str(self.total_minted),
            "total_burned": str(self.total_burned),
            "realized_volatility": str(self.realized_volatility) if self.realized_volatility is not None else None,
            "max_drawdown": str(self.max_drawdown),
        }


class PoolMetricsCalculator:
    """
    Calculate pool KPIs from cycle records.

    Volatility = Std Dev of settlement log returns × √(cycles per year)
    """

    @property
    def min_priced_cycles(self) -> int:
        return 3  # Two returns for a sample standard deviation

    def calculate(self, records: List[CycleRecord], seconds_per_cycle: int) -> PoolMetrics:
        """
        Calculate metrics for a sequence of closed cycles.

        Args:
            records: Cycle records in cycle order
            seconds_per_cycle: Nominal cycle length, for annualization

        Returns:
            PoolMetrics (zeros when there are no records)
        """
        if not records:
            zero = Decimal("0")
            return PoolMetrics(0, zero, zero, zero, zero, zero, zero, zero, None, zero)

        utilizations = np.array([float(r.utilization) for r in records])
        rates = np.array([float(r.interest_rate) for r in records])
        prices = np.array([float(r.price) for r in records if r.price is not None])

        return PoolMetrics(
            cycles=len(records),
            mean_utilization=Decimal(str(np.mean(utilizations))),
            peak_utilization=Decimal(str(np.max(utilizations))),
            mean_interest_rate=Decimal(str(np.mean(rates))),
            total_interest=sum((r.interest_accrued for r in records), Decimal("0")),
            total_fees=sum((r.fees for r in records), Decimal("0")),
            total_minted=sum((r.exposure_minted for r in records), Decimal("0")),
            total_burned=sum((r.exposure_burned for r in records), Decimal("0")),
            realized_volatility=self._volatility(prices, seconds_per_cycle),
            max_drawdown=self._max_drawdown(prices),
        )

    def _volatility(self, prices: np.ndarray, seconds_per_cycle: int) -> Optional[Decimal]:
        if len(prices) < self.min_priced_cycles or seconds_per_cycle <= 0:
            return None
        returns = np.diff(np.log(prices))
        cycles_per_year = SECONDS_PER_YEAR / seconds_per_cycle
        volatility = np.std(returns, ddof=1) * np.sqrt(cycles_per_year)
        return Decimal(str(float(volatility)))

    @staticmethod
    def _max_drawdown(prices: np.ndarray) -> Decimal:
        if len(prices) == 0:
            return Decimal("0")
        peaks = np.maximum.accumulate(prices)
        drawdowns = (peaks - prices) / peaks
        return Decimal(str(float(np.max(drawdowns))))
