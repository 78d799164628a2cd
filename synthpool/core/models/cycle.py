"""Cycle state and cycle history models."""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from synthpool.core.numeric import optional_decimal

from .oracle import PriceSample


class CyclePhase(Enum):
    """Rebalance phases, visited strictly in declaration order."""

    ACTIVE = "active"
    OFFCHAIN_REBALANCE = "offchain_rebalance"
    ONCHAIN_REBALANCE = "onchain_rebalance"

    @property
    def next_phase(self) -> "CyclePhase":
        order = list(CyclePhase)
        return order[(order.index(self) + 1) % len(order)]


@dataclass
class CycleState:
    """
    Process-wide cycle state.

    Written by the cycle manager on phase transitions; the position ledger
    only increments the request totals while Active.
    """

    phase: CyclePhase = CyclePhase.ACTIVE
    cycle_index: int = 0
    active_since: int = 0

    # Settlement price of the most recent onchain rebalance
    rebalance_price: Optional[Decimal] = None
    price_sample: Optional[PriceSample] = None

    # Aggregated requests for the current cycle
    total_deposit_requests: Decimal = Decimal("0")
    total_redemption_requests: Decimal = Decimal("0")
    total_liquidation_requests: Decimal = Decimal("0")

    # Rebalance window bookkeeping
    offchain_started_at: Optional[int] = None
    onchain_started_at: Optional[int] = None
    oracle_request_id: Optional[str] = None
    last_price_request_at: Optional[int] = None

    @property
    def has_pending_flow(self) -> bool:
        return (
            self.total_deposit_requests > 0
            or self.total_redemption_requests > 0
            or self.total_liquidation_requests > 0
        )

    def reset_totals(self) -> None:
        self.total_deposit_requests = Decimal("0")
        self.total_redemption_requests = Decimal("0")
        self.total_liquidation_requests = Decimal("0")

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "cycle_index": self.cycle_index,
            "active_since": self.active_since,
            "rebalance_price": str(self.rebalance_price) if self.rebalance_price is not None else None,
            "price_sample": self.price_sample.to_dict() if self.price_sample else None,
            "total_deposit_requests": str(self.total_deposit_requests),
            "total_redemption_requests": str(self.total_redemption_requests),
            "total_liquidation_requests": str(self.total_liquidation_requests),
            "offchain_started_at": self.offchain_started_at,
            "onchain_started_at": self.onchain_started_at,
            "oracle_request_id": self.oracle_request_id,
            "last_price_request_at": self.last_price_request_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CycleState":
        return cls(
            phase=CyclePhase(data.get("phase", "active")),
            cycle_index=int(data.get("cycle_index", 0)),
            active_since=int(data.get("active_since", 0)),
            rebalance_price=optional_decimal(data.get("rebalance_price")),
            price_sample=PriceSample.from_dict(data["price_sample"]) if data.get("price_sample") else None,
            total_deposit_requests=Decimal(data.get("total_deposit_requests", "0")),
            total_redemption_requests=Decimal(data.get("total_redemption_requests", "0")),
            total_liquidation_requests=Decimal(data.get("total_liquidation_requests", "0")),
            offchain_started_at=data.get("offchain_started_at"),
            onchain_started_at=data.get("onchain_started_at"),
            oracle_request_id=data.get("oracle_request_id"),
            last_price_request_at=data.get("last_price_request_at"),
        )


@dataclass
class CycleRecord:
    """Summary of one closed cycle."""

    cycle_index: int
    price: Optional[Decimal]
    started_at: int
    closed_at: int = 0

    sample: Optional[PriceSample] = None
    utilization: Decimal = Decimal("0")
    interest_rate: Decimal = Decimal("0")       # Annual rate applied for the period
    interest_accrued: Decimal = Decimal("0")    # Reserve moved from users to LPs

    # Flows settled in this cycle
    deposits: Decimal = Decimal("0")            # Net reserve added to backing
    redemptions: Decimal = Decimal("0")         # Gross reserve removed from backing
    exposure_minted: Decimal = Decimal("0")
    exposure_burned: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    lp_pnl: Decimal = Decimal("0")              # Mark-to-market result for LPs

    liquidation_candidates: List[str] = field(default_factory=list)
    skipped: bool = False                       # Closed via start_new_cycle

    def to_dict(self) -> dict:
        return {
            "cycle_index": self.cycle_index,
            "price": str(self.price) if self.price is not None else None,
            "started_at": self.started_at,
            "closed_at": self.closed_at,
            "sample": self.sample.to_dict() if self.sample else None,
            "utilization": str(self.utilization),
            "interest_rate": str(self.interest_rate),
            "interest_accrued": str(self.interest_accrued),
            "deposits": str(self.deposits),
            "redemptions": str(self.redemptions),
            "exposure_minted": str(self.exposure_minted),
            "exposure_burned": str(self.exposure_burned),
            "fees": str(self.fees),
            "lp_pnl": str(self.lp_pnl),
            "liquidation_candidates": list(self.liquidation_candidates),
            "skipped": self.skipped,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CycleRecord":
        return cls(
            cycle_index=int(data["cycle_index"]),
            price=optional_decimal(data.get("price")),
            started_at=int(data.get("started_at", 0)),
            closed_at=int(data.get("closed_at", 0)),
            sample=PriceSample.from_dict(data["sample"]) if data.get("sample") else None,
            utilization=Decimal(data.get("utilization", "0")),
            interest_rate=Decimal(data.get("interest_rate", "0")),
            interest_accrued=Decimal(data.get("interest_accrued", "0")),
            deposits=Decimal(data.get("deposits", "0")),
            redemptions=Decimal(data.get("redemptions", "0")),
            exposure_minted=Decimal(data.get("exposure_minted", "0")),
            exposure_burned=Decimal(data.get("exposure_burned", "0")),
            fees=Decimal(data.get("fees", "0")),
            lp_pnl=Decimal(data.get("lp_pnl", "0")),
            liquidation_candidates=list(data.get("liquidation_candidates", [])),
            skipped=bool(data.get("skipped", False)),
        )
