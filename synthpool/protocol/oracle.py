"""Asset price oracle: asynchronous request/fulfil contract and response codec."""

import hashlib
import logging
from decimal import Decimal
from typing import Optional

from synthpool.core.constants import ABI_WORD_SIZE, PRICE_RESPONSE_WORDS, WAD
from synthpool.core.errors import InvalidSource, UnexpectedRequestID
from synthpool.core.models import PriceSample

logger = logging.getLogger(__name__)


def _to_wad(value: Decimal) -> int:
    return int((value * WAD).to_integral_value())


def encode_price_response(sample: PriceSample) -> bytes:
    """
    Encode a sample as five ABI uint256 words: open, high, low, close, timestamp.

    Prices are scaled to 18-decimal fixed point; the timestamp is raw seconds.
    """
    words = [
        _to_wad(sample.open),
        _to_wad(sample.high),
        _to_wad(sample.low),
        _to_wad(sample.close),
        sample.timestamp,
    ]
    return b"".join(w.to_bytes(ABI_WORD_SIZE, "big") for w in words)


def decode_price_response(response: bytes) -> PriceSample:
    """
    Decode an ABI-encoded price response.

    Raises:
        ValueError: If the payload is not exactly five words or the prices are invalid
    """
    expected = ABI_WORD_SIZE * PRICE_RESPONSE_WORDS
    if len(response) != expected:
        raise ValueError(f"Price response must be {expected} bytes, got {len(response)}")

    words = [
        int.from_bytes(response[i:i + ABI_WORD_SIZE], "big")
        for i in range(0, expected, ABI_WORD_SIZE)
    ]
    wad = Decimal(WAD)
    return PriceSample(
        open=Decimal(words[0]) / wad,
        high=Decimal(words[1]) / wad,
        low=Decimal(words[2]) / wad,
        close=Decimal(words[3]) / wad,
        timestamp=words[4],
    )


class AssetOracle:
    """
    In-memory price oracle for one asset.

    A request returns an identifier; the off-chain source later calls
    fulfill() with that identifier. Only the latest outstanding request can
    be fulfilled, and only by the configured source.
    """

    def __init__(self, symbol: str, authorized_source: str, market_open_window: int = 3600):
        self.symbol = symbol
        self.authorized_source = authorized_source
        self.market_open_window = market_open_window

        self.pending_request_id: Optional[str] = None
        self.latest_sample: Optional[PriceSample] = None
        self.last_updated: Optional[int] = None
        self.last_error: bytes = b""
        self._nonce = 0

    def request_price(self, now: int) -> str:
        """
        Issue a new price request, replacing any outstanding one.

        Returns:
            Request identifier the fulfillment must quote
        """
        self._nonce += 1
        request_id = hashlib.sha256(f"{self.symbol}:{self._nonce}:{now}".encode()).hexdigest()
        self.pending_request_id = request_id
        logger.info(f"Price requested for {self.symbol}: {request_id[:12]}")
        return request_id

    def fulfill(
        self,
        request_id: str,
        response: bytes,
        source: str,
        delivered_at: int,
        error: bytes = b"",
    ) -> Optional[PriceSample]:
        """
        Deliver the response for the outstanding request.

        Args:
            request_id: Identifier returned by request_price
            response: ABI-encoded OHLC sample
            source: Identity of the delivering off-chain source
            delivered_at: Delivery time
            error: Non-empty when the off-chain computation failed

        Returns:
            The stored sample, or None when an error was delivered
        """
        if source != self.authorized_source:
            raise InvalidSource(f"{source} may not fulfil {self.symbol} requests")
        if self.pending_request_id is None or request_id != self.pending_request_id:
            raise UnexpectedRequestID(f"No outstanding {self.symbol} request {request_id[:12]}")

        if error:
            self.pending_request_id = None
            self.last_error = error
            logger.error(f"Oracle error for {self.symbol}: {error.decode(errors='replace')}")
            return None

        sample = decode_price_response(response)
        self.pending_request_id = None
        self.latest_sample = sample
        self.last_updated = delivered_at
        self.last_error = b""
        logger.info(f"Price fulfilled for {self.symbol}: close={sample.close} ts={sample.timestamp}")
        return sample

    def checkpoint(self) -> tuple:
        return (self.pending_request_id, self.latest_sample, self.last_updated, self.last_error, self._nonce)

    def restore(self, checkpoint: tuple) -> None:
        (
            self.pending_request_id,
            self.latest_sample,
            self.last_updated,
            self.last_error,
            self._nonce,
        ) = checkpoint

    def is_market_open(self) -> bool:
        """Whether the latest sample was fresh when delivered."""
        if self.latest_sample is None or self.last_updated is None:
            return False
        return (self.last_updated - self.latest_sample.timestamp) < self.market_open_window
