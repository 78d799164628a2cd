"""Pool strategy: interest rate curve and protocol ratios."""

from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

import numpy as np

from config.settings import Settings, get_settings
from synthpool.core.constants import SECONDS_PER_DAY, SECONDS_PER_YEAR


@dataclass(frozen=True)
class PoolStrategy:
    """
    Immutable parameter set injected into every pool component.

    The interest rate is a three-tier linear curve through the knots
    (0, base), (tier1, tier1_rate), (tier2, tier2_rate), (max, max_rate),
    clamped at max_rate above max utilization. Each segment is steeper
    than the previous one, so LPs earn more as utilization approaches the
    solvency ceiling.
    """

    # Interest rate curve
    base_rate: Decimal = Decimal("0.06")
    tier1_rate: Decimal = Decimal("0.12")
    tier2_rate: Decimal = Decimal("0.24")
    max_rate: Decimal = Decimal("0.36")
    tier1_utilization: Decimal = Decimal("0.50")
    tier2_utilization: Decimal = Decimal("0.75")
    max_utilization: Decimal = Decimal("0.95")

    # Cycle timing (seconds)
    cycle_length: int = 7 * SECONDS_PER_DAY
    offchain_rebalance_window: int = SECONDS_PER_DAY
    onchain_rebalance_timeout: int = SECONDS_PER_DAY
    oracle_request_cooldown: int = 300

    # User side
    user_collateral_ratio: Decimal = Decimal("0.20")
    deposit_fee: Decimal = Decimal("0")
    redemption_fee: Decimal = Decimal("0")
    user_liquidation_threshold: Decimal = Decimal("0.5")
    user_liquidation_reward: Decimal = Decimal("0.05")

    # LP side
    lp_collateral_ratio: Decimal = Decimal("0.30")
    lp_liquidation_threshold: Decimal = Decimal("0.5")
    lp_liquidation_bonus: Decimal = Decimal("0.05")
    min_lp_collateral: Decimal = Decimal("100")

    def __post_init__(self):
        if not (0 < self.tier1_utilization < self.tier2_utilization < self.max_utilization <= 1):
            raise ValueError("Utilization tiers must satisfy 0 < tier1 < tier2 < max <= 1")
        if not (0 <= self.base_rate <= self.tier1_rate <= self.tier2_rate <= self.max_rate):
            raise ValueError("Rates must be non-negative and non-decreasing")
        for name in ("user_collateral_ratio", "lp_collateral_ratio"):
            value = getattr(self, name)
            if not (0 < value <= 1):
                raise ValueError(f"{name} must be in (0, 1], got {value}")
        for name in ("user_liquidation_threshold", "lp_liquidation_threshold"):
            value = getattr(self, name)
            if not (0 < value <= 1):
                raise ValueError(f"{name} must be in (0, 1], got {value}")
        for name in ("deposit_fee", "redemption_fee", "user_liquidation_reward", "lp_liquidation_bonus"):
            value = getattr(self, name)
            if not (0 <= value < 1):
                raise ValueError(f"{name} must be in [0, 1), got {value}")
        if min(self.cycle_length, self.offchain_rebalance_window, self.onchain_rebalance_timeout) <= 0:
            raise ValueError("Cycle durations must be positive")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PoolStrategy":
        """Build a strategy from application settings."""
        settings = settings or get_settings()
        return cls(**{name: getattr(settings, name) for name in cls.__dataclass_fields__})

    # Interest rate

    @property
    def _knots(self) -> List[Tuple[Decimal, Decimal]]:
        return [
            (Decimal("0"), self.base_rate),
            (self.tier1_utilization, self.tier1_rate),
            (self.tier2_utilization, self.tier2_rate),
            (self.max_utilization, self.max_rate),
        ]

    def interest_rate(self, utilization: Decimal) -> Decimal:
        """
        Annual interest rate at a utilization ratio.

        Args:
            utilization: Exposure notional / reserve balance

        Returns:
            Annual rate, linearly interpolated between tier knots
        """
        if utilization <= 0:
            return self.base_rate
        if utilization >= self.max_utilization:
            return self.max_rate

        knots = self._knots
        for (u0, r0), (u1, r1) in zip(knots, knots[1:]):
            if utilization <= u1:
                return r0 + (r1 - r0) * (utilization - u0) / (u1 - u0)
        return self.max_rate

    def periodic_rate(self, utilization: Decimal, elapsed_seconds: int) -> Decimal:
        """Rate accrued over elapsed_seconds at a fixed utilization."""
        if elapsed_seconds <= 0:
            return Decimal("0")
        return self.interest_rate(utilization) * Decimal(elapsed_seconds) / Decimal(SECONDS_PER_YEAR)

    @staticmethod
    def utilization(notional: Decimal, reserve: Decimal) -> Decimal:
        if reserve <= 0:
            return Decimal("0")
        return notional / reserve

    def rate_curve(self, num_points: int = 100) -> Tuple[List[float], List[float]]:
        """
        Generate the rate curve for display.

        Returns:
            Tuple of (utilizations, annual_rates) as float lists
        """
        utilizations = np.linspace(0.0, 1.0, num_points + 1)
        rates = [float(self.interest_rate(Decimal(str(u)))) for u in utilizations]
        return utilizations.tolist(), rates

    # Collateral and fees

    def required_user_collateral(self, amount: Decimal) -> Decimal:
        return amount * self.user_collateral_ratio

    def required_lp_collateral(self, notional: Decimal) -> Decimal:
        return notional * self.lp_collateral_ratio

    def lp_capacity(self, total_lp_collateral: Decimal) -> Decimal:
        """Maximum exposure notional the LP collateral can back."""
        if total_lp_collateral <= 0:
            return Decimal("0")
        return total_lp_collateral / self.lp_collateral_ratio

    def deposit_fee_for(self, amount: Decimal) -> Decimal:
        return amount * self.deposit_fee

    def redemption_fee_for(self, amount: Decimal) -> Decimal:
        return amount * self.redemption_fee

    # Serialization

    def to_dict(self) -> dict:
        return {k: str(v) if isinstance(v, Decimal) else v for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: dict) -> "PoolStrategy":
        kwargs = {}
        for name, f in cls.__dataclass_fields__.items():
            if name not in data:
                continue
            kwargs[name] = int(data[name]) if f.type in (int, "int") else Decimal(str(data[name]))
        return cls(**kwargs)
