"""Pytest configuration and fixtures."""

from decimal import Decimal
from typing import Optional

import pytest

from synthpool.core.models import CyclePhase, CycleRecord, PriceSample
from synthpool.protocol import (
    AssetOracle,
    InMemoryToken,
    ManualClock,
    PoolStrategy,
    SyntheticPool,
    encode_price_response,
)

GENESIS = 1_699_920_000
ORACLE_SOURCE = "keeper"
USER_FUNDING = Decimal("10000")
LP_COLLATERAL = Decimal("5000")
INITIAL_PRICE = Decimal("42069")


class CycleDriver:
    """Moves a pool through its phases the way a keeper would, one call at a time."""

    def __init__(self, pool: SyntheticPool, clock: ManualClock, source: str = ORACLE_SOURCE):
        self.pool = pool
        self.clock = clock
        self.source = source

    def deliver(
        self,
        price: Decimal,
        low: Optional[Decimal] = None,
        high: Optional[Decimal] = None,
        timestamp: Optional[int] = None,
    ) -> PriceSample:
        """Fulfil the outstanding oracle request with a sample around `price`."""
        now = self.clock.now()
        sample = PriceSample(
            open=price,
            high=high if high is not None else price,
            low=low if low is not None else price,
            close=price,
            timestamp=now if timestamp is None else timestamp,
        )
        oracle = self.pool.oracle
        oracle.fulfill(oracle.pending_request_id, encode_price_response(sample), self.source, now)
        return sample

    def settle(self, price: Decimal, **sample_kwargs) -> CycleRecord:
        """Elapse the cycle and run settlement at `price`, leaving the pool Onchain."""
        self.clock.advance(self.pool.strategy.cycle_length)
        self.pool.initiate_offchain_rebalance()
        self.deliver(price, **sample_kwargs)
        return self.pool.initiate_onchain_rebalance()

    def rebalance_all(self) -> None:
        pool = self.pool
        price = pool.state.cycle.rebalance_price
        for lp in list(pool.state.lps):
            if pool.phase != CyclePhase.ONCHAIN_REBALANCE:
                break
            if pool.state.lps[lp].last_rebalance_cycle != pool.cycle_index:
                pool.rebalance_pool(lp, price)
        if pool.phase == CyclePhase.ONCHAIN_REBALANCE:
            pool.close_cycle()

    def run_cycle(self, price: Decimal, **sample_kwargs) -> CycleRecord:
        """Settle at `price` and close the cycle through every LP's rebalance."""
        record = self.settle(price, **sample_kwargs)
        self.rebalance_all()
        return record

    def skip(self) -> CycleRecord:
        self.clock.advance(self.pool.strategy.cycle_length)
        return self.pool.start_new_cycle()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(GENESIS)


@pytest.fixture
def strategy() -> PoolStrategy:
    """Default protocol parameters."""
    return PoolStrategy()


@pytest.fixture
def reserve_token() -> InMemoryToken:
    return InMemoryToken("USDC")


@pytest.fixture
def exposure_token() -> InMemoryToken:
    return InMemoryToken("xTSLA")


@pytest.fixture
def oracle() -> AssetOracle:
    return AssetOracle("TSLA", ORACLE_SOURCE)


@pytest.fixture
def empty_pool(strategy, clock, oracle, reserve_token, exposure_token) -> SyntheticPool:
    """Pool with no LPs and unfunded users."""
    return SyntheticPool(
        strategy=strategy,
        clock=clock,
        oracle=oracle,
        reserve_token=reserve_token,
        exposure_token=exposure_token,
    )


@pytest.fixture
def pool(empty_pool, reserve_token) -> SyntheticPool:
    """Pool with two LPs of 5000 each; alice, bob and carol hold 10000 reserve."""
    for user in ("alice", "bob", "carol"):
        reserve_token.mint(user, USER_FUNDING)
    for lp in ("lp-1", "lp-2"):
        reserve_token.mint(lp, LP_COLLATERAL)
        empty_pool.register_lp(lp, LP_COLLATERAL)
    return empty_pool


@pytest.fixture
def driver(pool, clock) -> CycleDriver:
    return CycleDriver(pool, clock)


@pytest.fixture
def settled_pool(pool, driver) -> SyntheticPool:
    """alice and bob each hold exposure from a 1000 deposit settled at 42069."""
    pool.submit_deposit("alice", Decimal("1000"), Decimal("200"))
    pool.submit_deposit("bob", Decimal("1000"), Decimal("200"))
    driver.run_cycle(INITIAL_PRICE)
    pool.claim("alice")
    pool.claim("bob")
    return pool


@pytest.fixture
def make_driver(clock):
    """Driver factory for pools built inside a test."""
    def _make(pool: SyntheticPool) -> CycleDriver:
        return CycleDriver(pool, clock)
    return _make
