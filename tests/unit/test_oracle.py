"""Unit tests for the asset oracle and its response codec."""

import pytest
from decimal import Decimal

from synthpool.core.constants import WAD
from synthpool.core.errors import InvalidSource, UnexpectedRequestID
from synthpool.core.models import PriceSample
from synthpool.protocol import AssetOracle, decode_price_response, encode_price_response


class TestPriceCodec:
    """Tests for the five-word ABI response format."""

    @pytest.fixture
    def sample(self):
        return PriceSample(
            open=Decimal("42000.5"),
            high=Decimal("42500"),
            low=Decimal("41800.25"),
            close=Decimal("42069"),
            timestamp=1_700_000_000,
        )

    def test_layout(self, sample):
        """Words are big-endian uint256 in open, high, low, close, timestamp order."""
        payload = encode_price_response(sample)

        assert len(payload) == 160
        assert int.from_bytes(payload[0:32], "big") == 42000_500000000000000000
        assert int.from_bytes(payload[96:128], "big") == 42069 * WAD
        assert int.from_bytes(payload[128:160], "big") == 1_700_000_000

    def test_decode(self, sample):
        assert decode_price_response(encode_price_response(sample)) == sample

    def test_decode_wad_units(self):
        words = [WAD, 2 * WAD, WAD // 2, WAD, 42]
        payload = b"".join(w.to_bytes(32, "big") for w in words)

        sample = decode_price_response(payload)

        assert sample.high == Decimal("2")
        assert sample.low == Decimal("0.5")
        assert sample.timestamp == 42

    def test_bad_length(self):
        with pytest.raises(ValueError):
            decode_price_response(b"\x00" * 128)

    def test_inverted_range(self):
        with pytest.raises(ValueError):
            PriceSample(open=Decimal("1"), high=Decimal("1"), low=Decimal("2"), close=Decimal("1"), timestamp=0)


class TestAssetOracle:
    """Tests for request/fulfil matching."""

    @pytest.fixture
    def oracle(self):
        return AssetOracle("TSLA", "keeper", market_open_window=3600)

    @pytest.fixture
    def payload(self):
        return encode_price_response(PriceSample.flat(Decimal("42069"), 1_000))

    def test_request_id(self, oracle):
        request_id = oracle.request_price(1_000)

        assert len(request_id) == 64
        assert oracle.pending_request_id == request_id

    def test_fulfil(self, oracle, payload):
        request_id = oracle.request_price(1_000)

        sample = oracle.fulfill(request_id, payload, "keeper", 1_010)

        assert sample.close == Decimal("42069")
        assert oracle.latest_sample == sample
        assert oracle.last_updated == 1_010
        assert oracle.pending_request_id is None

    def test_new_request_replaces_old(self, oracle, payload):
        first = oracle.request_price(1_000)
        second = oracle.request_price(1_000)

        assert first != second
        with pytest.raises(UnexpectedRequestID):
            oracle.fulfill(first, payload, "keeper", 1_010)
        assert oracle.fulfill(second, payload, "keeper", 1_010) is not None

    def test_unknown_request(self, oracle, payload):
        with pytest.raises(UnexpectedRequestID):
            oracle.fulfill("feed", payload, "keeper", 1_010)

    def test_wrong_source(self, oracle, payload):
        request_id = oracle.request_price(1_000)

        with pytest.raises(InvalidSource):
            oracle.fulfill(request_id, payload, "mallory", 1_010)

        assert oracle.pending_request_id == request_id
        assert oracle.latest_sample is None

    def test_error_response(self, oracle, payload):
        """An error clears the request and keeps the previous sample."""
        request_id = oracle.request_price(1_000)
        oracle.fulfill(request_id, payload, "keeper", 1_010)
        previous = oracle.latest_sample

        request_id = oracle.request_price(2_000)
        result = oracle.fulfill(request_id, b"", "keeper", 2_010, error=b"market data unavailable")

        assert result is None
        assert oracle.pending_request_id is None
        assert oracle.latest_sample == previous
        assert oracle.last_error == b"market data unavailable"

    def test_market_open(self, oracle, payload):
        assert not oracle.is_market_open()

        oracle.fulfill(oracle.request_price(1_000), payload, "keeper", 1_000 + 3599)
        assert oracle.is_market_open()

        oracle.fulfill(oracle.request_price(5_000), payload, "keeper", 1_000 + 3600)
        assert not oracle.is_market_open()
