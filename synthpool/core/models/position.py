"""User and LP position models."""

from dataclasses import dataclass
from decimal import Decimal


@dataclass
class UserPosition:
    """
    Settled exposure held by a user, with the collateral that pays its interest.

    Created the first time one of the user's deposits settles.
    """

    owner: str
    exposure_amount: Decimal = Decimal("0")     # Exposure tokens attributed to the user
    deposit_amount: Decimal = Decimal("0")      # Net reserve deposited (cost basis)
    collateral_amount: Decimal = Decimal("0")   # Reserve collateral backing interest
    pending_liquidation: Decimal = Decimal("0") # Exposure under an unsettled liquidation

    @property
    def liquidatable_exposure(self) -> Decimal:
        """Exposure not already claimed by a pending liquidation."""
        return self.exposure_amount - self.pending_liquidation

    @property
    def is_closed(self) -> bool:
        return self.exposure_amount <= 0 and self.collateral_amount <= 0

    def notional(self, price: Decimal) -> Decimal:
        """Exposure value in reserve units."""
        return self.exposure_amount * price

    def to_dict(self) -> dict:
        return {
            "owner": self.owner,
            "exposure_amount": str(self.exposure_amount),
            "deposit_amount": str(self.deposit_amount),
            "collateral_amount": str(self.collateral_amount),
            "pending_liquidation": str(self.pending_liquidation),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserPosition":
        return cls(
            owner=data["owner"],
            exposure_amount=Decimal(data.get("exposure_amount", "0")),
            deposit_amount=Decimal(data.get("deposit_amount", "0")),
            collateral_amount=Decimal(data.get("collateral_amount", "0")),
            pending_liquidation=Decimal(data.get("pending_liquidation", "0")),
        )


@dataclass
class LPPosition:
    """
    Liquidity provider position.

    liquidity_share is the LP's claim on pool NAV. It decides how interest
    and mark-to-market PnL are split. Amounts accrued since the last sync
    are held in the pool's per-share indices until the next rebalance or
    LP operation moves them into collateral_balance.
    """

    owner: str
    collateral_balance: Decimal
    liquidity_share: Decimal

    # Accumulator snapshots (per liquidity share)
    interest_index_snapshot: Decimal = Decimal("0")
    pnl_index_snapshot: Decimal = Decimal("0")

    # Cycle bookkeeping
    last_health_check_cycle: int = -1
    last_rebalance_cycle: int = -1
    registered_at: int = 0

    def pending_interest(self, interest_index: Decimal) -> Decimal:
        return self.liquidity_share * (interest_index - self.interest_index_snapshot)

    def pending_pnl(self, pnl_index: Decimal) -> Decimal:
        return self.liquidity_share * (pnl_index - self.pnl_index_snapshot)

    def effective_collateral(self, interest_index: Decimal, pnl_index: Decimal) -> Decimal:
        """Collateral including accrued but unsynced interest and PnL."""
        return (
            self.collateral_balance
            + self.pending_interest(interest_index)
            + self.pending_pnl(pnl_index)
        )

    def to_dict(self) -> dict:
        return {
            "owner": self.owner,
            "collateral_balance": str(self.collateral_balance),
            "liquidity_share": str(self.liquidity_share),
            "interest_index_snapshot": str(self.interest_index_snapshot),
            "pnl_index_snapshot": str(self.pnl_index_snapshot),
            "last_health_check_cycle": self.last_health_check_cycle,
            "last_rebalance_cycle": self.last_rebalance_cycle,
            "registered_at": self.registered_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LPPosition":
        return cls(
            owner=data["owner"],
            collateral_balance=Decimal(data["collateral_balance"]),
            liquidity_share=Decimal(data["liquidity_share"]),
            interest_index_snapshot=Decimal(data.get("interest_index_snapshot", "0")),
            pnl_index_snapshot=Decimal(data.get("pnl_index_snapshot", "0")),
            last_health_check_cycle=int(data.get("last_health_check_cycle", -1)),
            last_rebalance_cycle=int(data.get("last_rebalance_cycle", -1)),
            registered_at=int(data.get("registered_at", 0)),
        )
