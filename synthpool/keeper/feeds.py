"""Price feeds the keeper reads before fulfilling oracle requests.

A feed plays the part of the oracle's off-chain computation: it turns a
symbol into an OHLC sample. Real HTTP quote sources are out of scope; the
feeds here serve fixed or scripted prices.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Union

from synthpool.core.models import PriceSample
from synthpool.core.numeric import Number, as_decimal


class PriceFeedError(Exception):
    """The feed could not produce a sample."""


class PriceFeed(ABC):
    """Abstract source of OHLC samples."""

    @abstractmethod
    async def fetch_sample(self, symbol: str, now: int) -> PriceSample:
        """Fetch the latest sample for symbol.

        Args:
            symbol: Asset symbol
            now: Current time, used as the sample timestamp

        Raises:
            PriceFeedError: No sample available
        """
        ...


class StaticPriceFeed(PriceFeed):
    """Serves a constant price per symbol."""

    def __init__(self, prices: Dict[str, Number]):
        self.prices = {symbol: as_decimal(p) for symbol, p in prices.items()}

    def set_price(self, symbol: str, price: Number) -> None:
        self.prices[symbol] = as_decimal(price)

    async def fetch_sample(self, symbol: str, now: int) -> PriceSample:
        if symbol not in self.prices:
            raise PriceFeedError(f"No price configured for {symbol}")
        return PriceSample.flat(self.prices[symbol], now)


class ScriptedPriceFeed(PriceFeed):
    """
    Serves a sequence of prices, one per fetch.

    A None entry simulates an outage for that fetch. Entries may be full
    samples; their timestamp is replaced with the fetch time.
    """

    def __init__(self, script: List[Optional[Union[Number, PriceSample]]]):
        self.script = list(script)
        self.position = 0

    @property
    def exhausted(self) -> bool:
        return self.position >= len(self.script)

    async def fetch_sample(self, symbol: str, now: int) -> PriceSample:
        if self.exhausted:
            raise PriceFeedError(f"Price script for {symbol} exhausted")

        entry = self.script[self.position]
        self.position += 1
        if entry is None:
            raise PriceFeedError(f"Price source unavailable for {symbol}")
        if isinstance(entry, PriceSample):
            return PriceSample(entry.open, entry.high, entry.low, entry.close, now)
        return PriceSample.flat(as_decimal(entry), now)

