"""Pool-wide account model."""

from dataclasses import dataclass
from decimal import Decimal


@dataclass
class PoolAccount:
    """
    Aggregate reserve and exposure bookkeeping for one pool.

    backing_balance holds the reserve that pays exposure holders. After each
    settlement it equals total_exposure_supply * rebalance_price, because the
    mark-to-market difference is moved to or from LP collateral.
    """

    backing_balance: Decimal = Decimal("0")
    total_lp_collateral: Decimal = Decimal("0")     # Sum of LP effective collateral
    total_user_collateral: Decimal = Decimal("0")   # Sum of settled position collateral
    total_exposure_supply: Decimal = Decimal("0")
    total_lp_shares: Decimal = Decimal("0")

    # Per-liquidity-share accumulators
    cumulative_interest_index: Decimal = Decimal("0")
    cumulative_pnl_index: Decimal = Decimal("0")

    accrued_fees: Decimal = Decimal("0")
    claimable_reserve: Decimal = Decimal("0")       # Settled but unclaimed payouts
    last_accrual_time: int = 0

    emergency: bool = False                         # Exposure without LP backing
    bad_debt: Decimal = Decimal("0")

    @property
    def reserve_balance(self) -> Decimal:
        """Reserve backing outstanding exposure: user backing plus LP collateral."""
        return self.backing_balance + self.total_lp_collateral

    def notional(self, price: Decimal) -> Decimal:
        """Outstanding exposure valued at price."""
        return self.total_exposure_supply * price

    def utilization(self, price: Decimal) -> Decimal:
        """Exposure notional relative to reserve balance."""
        reserve = self.reserve_balance
        if reserve <= 0:
            return Decimal("0")
        return self.notional(price) / reserve

    def to_dict(self) -> dict:
        return {
            "backing_balance": str(self.backing_balance),
            "total_lp_collateral": str(self.total_lp_collateral),
            "total_user_collateral": str(self.total_user_collateral),
            "total_exposure_supply": str(self.total_exposure_supply),
            "total_lp_shares": str(self.total_lp_shares),
            "cumulative_interest_index": str(self.cumulative_interest_index),
            "cumulative_pnl_index": str(self.cumulative_pnl_index),
            "accrued_fees": str(self.accrued_fees),
            "claimable_reserve": str(self.claimable_reserve),
            "last_accrual_time": self.last_accrual_time,
            "emergency": self.emergency,
            "bad_debt": str(self.bad_debt),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PoolAccount":
        return cls(
            backing_balance=Decimal(data.get("backing_balance", "0")),
            total_lp_collateral=Decimal(data.get("total_lp_collateral", "0")),
            total_user_collateral=Decimal(data.get("total_user_collateral", "0")),
            total_exposure_supply=Decimal(data.get("total_exposure_supply", "0")),
            total_lp_shares=Decimal(data.get("total_lp_shares", "0")),
            cumulative_interest_index=Decimal(data.get("cumulative_interest_index", "0")),
            cumulative_pnl_index=Decimal(data.get("cumulative_pnl_index", "0")),
            accrued_fees=Decimal(data.get("accrued_fees", "0")),
            claimable_reserve=Decimal(data.get("claimable_reserve", "0")),
            last_accrual_time=int(data.get("last_accrual_time", 0)),
            emergency=bool(data.get("emergency", False)),
            bad_debt=Decimal(data.get("bad_debt", "0")),
        )
