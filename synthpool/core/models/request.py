"""User request and settlement result models."""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional


class RequestType(Enum):
    """Kinds of user request held in a request slot."""

    NONE = "none"
    DEPOSIT = "deposit"
    REDEEM = "redeem"
    LIQUIDATE = "liquidate"


@dataclass
class SettlementResult:
    """Outcome of a request, fixed at the cycle's settlement price."""

    price: Decimal
    filled_amount: Decimal = Decimal("0")       # Principal actually settled
    exposure_minted: Decimal = Decimal("0")
    exposure_burned: Decimal = Decimal("0")
    reserve_payout: Decimal = Decimal("0")      # Redemption/liquidation proceeds
    collateral_refund: Decimal = Decimal("0")   # Excess collateral + unfilled principal
    fee: Decimal = Decimal("0")

    @property
    def reserve_due(self) -> Decimal:
        """Total reserve owed to the claimant."""
        return self.reserve_payout + self.collateral_refund

    def to_dict(self) -> dict:
        return {
            "price": str(self.price),
            "filled_amount": str(self.filled_amount),
            "exposure_minted": str(self.exposure_minted),
            "exposure_burned": str(self.exposure_burned),
            "reserve_payout": str(self.reserve_payout),
            "collateral_refund": str(self.collateral_refund),
            "fee": str(self.fee),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SettlementResult":
        return cls(
            price=Decimal(data["price"]),
            filled_amount=Decimal(data.get("filled_amount", "0")),
            exposure_minted=Decimal(data.get("exposure_minted", "0")),
            exposure_burned=Decimal(data.get("exposure_burned", "0")),
            reserve_payout=Decimal(data.get("reserve_payout", "0")),
            collateral_refund=Decimal(data.get("collateral_refund", "0")),
            fee=Decimal(data.get("fee", "0")),
        )


@dataclass
class UserRequest:
    """
    A user's single request slot.

    principal_amount is in reserve units for deposits and in exposure-token
    units for redemptions and liquidations. The slot is overwritten only
    after the settled result has been claimed.
    """

    request_type: RequestType = RequestType.NONE
    principal_amount: Decimal = Decimal("0")
    posted_collateral: Decimal = Decimal("0")
    cycle_submitted: int = 0
    target: Optional[str] = None                # Liquidated user (LIQUIDATE only)
    result: Optional[SettlementResult] = None

    @property
    def is_empty(self) -> bool:
        return self.request_type == RequestType.NONE

    @property
    def is_settled(self) -> bool:
        return self.result is not None

    @property
    def is_pending(self) -> bool:
        """Submitted but not yet settled."""
        return not self.is_empty and not self.is_settled

    def to_dict(self) -> dict:
        return {
            "request_type": self.request_type.value,
            "principal_amount": str(self.principal_amount),
            "posted_collateral": str(self.posted_collateral),
            "cycle_submitted": self.cycle_submitted,
            "target": self.target,
            "result": self.result.to_dict() if self.result else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "UserRequest":
        return cls(
            request_type=RequestType(data.get("request_type", "none")),
            principal_amount=Decimal(data.get("principal_amount", "0")),
            posted_collateral=Decimal(data.get("posted_collateral", "0")),
            cycle_submitted=int(data.get("cycle_submitted", 0)),
            target=data.get("target"),
            result=SettlementResult.from_dict(data["result"]) if data.get("result") else None,
        )
