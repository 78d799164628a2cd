"""Keeper automation driving pool cycles and oracle fulfillment."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from synthpool.core.errors import PoolError, RebalanceIncomplete, RequestCooldown
from synthpool.core.models import CyclePhase
from synthpool.protocol import SyntheticPool, encode_price_response

from .feeds import PriceFeed, PriceFeedError

logger = logging.getLogger(__name__)


@dataclass
class ManagedPool:
    """A pool the keeper services, with its price feed and the LPs it operates for."""

    pool: SyntheticPool
    feed: PriceFeed
    operated_lps: List[str] = field(default_factory=list)
    attempts: int = 0                   # Consecutive failed price deliveries

    @property
    def symbol(self) -> str:
        return self.pool.symbol


@dataclass
class KeeperOutcome:
    symbol: str
    detail: str


@dataclass
class KeeperReport:
    """Outcome of one keeper poll across every managed pool."""

    successful: List[KeeperOutcome] = field(default_factory=list)
    failed: List[KeeperOutcome] = field(default_factory=list)
    skipped: List[KeeperOutcome] = field(default_factory=list)

    def log_summary(self) -> None:
        logger.info(
            f"Keeper poll: {len(self.successful)} successful, "
            f"{len(self.failed)} failed, {len(self.skipped)} skipped"
        )
        for outcome in self.failed:
            logger.warning(f"  {outcome.symbol}: {outcome.detail}")


class PoolKeeper:
    """
    Moves pools through their cycles.

    Each poll: an elapsed Active cycle is skipped when empty or sent to
    the offchain phase; an offchain pool gets its price delivered from the
    feed and moves onchain; an onchain pool has its operated LPs
    rebalanced and is closed once the pool allows it. A failed price fetch
    is retried on later polls; after max_retries consecutive failures the
    keeper reports the pool as failed and starts counting again.
    """

    def __init__(self, pools: List[ManagedPool], source: str, max_retries: int = 3):
        self.pools = pools
        self.source = source
        self.max_retries = max_retries

    async def run_once(self) -> KeeperReport:
        """Service every managed pool once."""
        report = KeeperReport()

        for managed in self.pools:
            try:
                status, detail = await self._service(managed)
            except PoolError as e:
                logger.error(f"Keeper action failed for {managed.symbol}: {e}")
                status, detail = "failed", f"{type(e).__name__}: {e}"

            outcome = KeeperOutcome(managed.symbol, detail)
            getattr(report, status).append(outcome)

        report.log_summary()
        return report

    async def run(self, polls: int, interval: float = 0) -> List[KeeperReport]:
        """Poll `polls` times, sleeping `interval` seconds in between."""
        reports = []
        for i in range(polls):
            reports.append(await self.run_once())
            if interval and i < polls - 1:
                await asyncio.sleep(interval)
        return reports

    async def _service(self, managed: ManagedPool):
        pool = managed.pool
        actions = []

        if pool.phase == CyclePhase.ACTIVE:
            if not pool.cycle.is_cycle_elapsed():
                return "skipped", "cycle not elapsed"
            if not pool.has_pending_flow():
                record = pool.start_new_cycle()
                return "successful", f"cycle {record.cycle_index} closed without flow"
            pool.initiate_offchain_rebalance()
            actions.append("offchain rebalance started")

        if pool.phase == CyclePhase.OFFCHAIN_REBALANCE:
            error = await self._deliver_price(managed)
            if error is not None:
                return "failed", error
            record = pool.initiate_onchain_rebalance()
            actions.append(f"settled at {record.price}")

        if pool.phase == CyclePhase.ONCHAIN_REBALANCE:
            actions.extend(self._rebalance_lps(managed))

        if pool.phase == CyclePhase.ONCHAIN_REBALANCE:
            try:
                record = pool.close_cycle()
                actions.append(f"cycle {record.cycle_index} closed")
            except RebalanceIncomplete:
                actions.append("waiting for LP rebalances")

        return "successful", "; ".join(actions)

    async def _deliver_price(self, managed: ManagedPool) -> Optional[str]:
        """
        Fetch a sample and fulfil the pool's outstanding oracle request.

        Returns:
            None on success, otherwise a failure description
        """
        pool = managed.pool
        oracle = pool.oracle
        now = pool.clock.now()

        try:
            sample = await managed.feed.fetch_sample(managed.symbol, now)
        except PriceFeedError as e:
            return self._record_failure(managed, str(e))

        if oracle.pending_request_id is None:
            pool.request_price_update()
        oracle.fulfill(oracle.pending_request_id, encode_price_response(sample), self.source, now)
        managed.attempts = 0
        return None

    def _record_failure(self, managed: ManagedPool, error: str) -> str:
        managed.attempts += 1

        if managed.attempts >= self.max_retries:
            managed.attempts = 0
            logger.error(f"Price delivery for {managed.symbol} gave up after {self.max_retries} attempts: {error}")
            return f"Max retries ({self.max_retries}) reached: {error}"

        try:
            managed.pool.request_price_update()
        except RequestCooldown:
            logger.debug(f"Re-request for {managed.symbol} still in cooldown")
        if managed.pool.cycle.is_rebalance_window_expired():
            logger.warning(f"{managed.symbol} oracle missed the offchain rebalance window")
        return f"Failed, retry scheduled (attempt {managed.attempts}/{self.max_retries}): {error}"

    @staticmethod
    def _rebalance_lps(managed: ManagedPool) -> List[str]:
        pool = managed.pool
        price = pool.state.cycle.rebalance_price
        actions = []

        for lp in managed.operated_lps:
            if pool.phase != CyclePhase.ONCHAIN_REBALANCE:
                break
            position = pool.liquidity.position(lp)
            if position is None or position.last_rebalance_cycle == pool.cycle_index:
                continue
            pool.rebalance_pool(lp, price)
            actions.append(f"rebalanced {lp}")

        return actions
