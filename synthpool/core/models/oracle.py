"""Oracle price sample model."""

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class PriceSample:
    """
    OHLC sample delivered by the asset oracle.

    Prices are quoted in reserve units per unit of the underlying asset.
    `timestamp` is the market data time reported by the price source, not
    the time the sample reached the pool.
    """

    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    timestamp: int

    def __post_init__(self):
        if min(self.open, self.high, self.low, self.close) <= 0:
            raise ValueError(f"Prices must be positive: {self}")
        if self.low > self.high:
            raise ValueError(f"Low {self.low} above high {self.high}")
        if self.timestamp < 0:
            raise ValueError(f"Timestamp must be non-negative: {self.timestamp}")

    def contains(self, price: Decimal) -> bool:
        """Check that a price lies within the sample's [low, high] range."""
        return self.low <= price <= self.high

    def to_dict(self) -> dict:
        return {
            "open": str(self.open),
            "high": str(self.high),
            "low": str(self.low),
            "close": str(self.close),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PriceSample":
        return cls(
            open=Decimal(data["open"]),
            high=Decimal(data["high"]),
            low=Decimal(data["low"]),
            close=Decimal(data["close"]),
            timestamp=int(data["timestamp"]),
        )

    @classmethod
    def flat(cls, price: Decimal, timestamp: int) -> "PriceSample":
        """Sample with all four prices equal, for tests and scripted feeds."""
        return cls(open=price, high=price, low=price, close=price, timestamp=timestamp)
