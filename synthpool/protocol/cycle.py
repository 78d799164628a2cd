"""Cycle manager: rebalance phase machine, settlement and interest accrual."""

import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from synthpool.core.errors import (
    CycleNotElapsed,
    DuplicateRebalance,
    InvalidPrice,
    InvalidState,
    RebalanceIncomplete,
    RequestCooldown,
    StalePrice,
    UnknownPosition,
)
from synthpool.core.models import CyclePhase, CycleRecord
from synthpool.core.numeric import Number, as_decimal

from .clock import Clock
from .guards import require_phase
from .ledger import PositionLedger
from .liquidity import LiquidityManager
from .oracle import AssetOracle
from .state import PoolState, StateStore
from .strategy import PoolStrategy

logger = logging.getLogger(__name__)


class CycleManager:
    """
    Drives the pool through Active -> OffchainRebalance -> OnchainRebalance.

    Phase-advancing calls are rejected until their precondition holds
    (elapsed cycle, fresh oracle price, LP quorum or timeout); any caller
    may retry later. Aggregate settlement runs once, when the onchain
    phase starts: interest accrual, mark-to-market against LP collateral,
    then every pending request at the fixed price. LPs then rebalance
    individually, and the cycle closes when all of them have, or when
    the fallback timeout has passed.
    """

    def __init__(
        self,
        store: StateStore,
        strategy: PoolStrategy,
        clock: Clock,
        oracle: AssetOracle,
        ledger: PositionLedger,
        liquidity: LiquidityManager,
    ):
        self.store = store
        self.strategy = strategy
        self.clock = clock
        self.oracle = oracle
        self.ledger = ledger
        self.liquidity = liquidity

    # Phase transitions

    def initiate_offchain_rebalance(self) -> str:
        """
        Close the Active phase and request a price from the oracle.

        Returns:
            Oracle request identifier

        Raises:
            InvalidPhase: Pool is not Active
            CycleNotElapsed: Cycle length has not passed
        """
        now = self.clock.now()
        with self.store.transaction("initiate_offchain_rebalance") as state:
            require_phase(state, "initiate_offchain_rebalance", CyclePhase.ACTIVE)
            self._require_elapsed(state, now)

            cycle = state.cycle
            cycle.phase = CyclePhase.OFFCHAIN_REBALANCE
            cycle.offchain_started_at = now
            cycle.oracle_request_id = self.oracle.request_price(now)
            cycle.last_price_request_at = now
            request_id = cycle.oracle_request_id

        logger.info(f"Cycle {cycle.cycle_index}: offchain rebalance started")
        return request_id

    def request_price_update(self) -> str:
        """
        Re-request a price while waiting in the offchain window.

        Raises:
            InvalidPhase: Pool is not in OffchainRebalance
            RequestCooldown: Last request is more recent than the cooldown
        """
        now = self.clock.now()
        with self.store.transaction("request_price_update") as state:
            require_phase(state, "request_price_update", CyclePhase.OFFCHAIN_REBALANCE)
            cycle = state.cycle
            if cycle.last_price_request_at is not None:
                next_allowed = cycle.last_price_request_at + self.strategy.oracle_request_cooldown
                if now < next_allowed:
                    raise RequestCooldown(f"Next price request allowed at {next_allowed}")

            cycle.oracle_request_id = self.oracle.request_price(now)
            cycle.last_price_request_at = now
            request_id = cycle.oracle_request_id

        return request_id

    def initiate_onchain_rebalance(self) -> CycleRecord:
        """
        Fix the settlement price from the oracle and settle the cycle's flows.

        Returns:
            The cycle record being built (closed later)

        Raises:
            InvalidPhase: Pool is not in OffchainRebalance
            StalePrice: No sample at least as new as the window start
        """
        now = self.clock.now()
        with self.store.transaction("initiate_onchain_rebalance") as state:
            require_phase(state, "initiate_onchain_rebalance", CyclePhase.OFFCHAIN_REBALANCE)
            cycle = state.cycle

            sample = self.oracle.latest_sample
            if sample is None or sample.timestamp < cycle.offchain_started_at:
                raise StalePrice(
                    f"Oracle sample {sample.timestamp if sample else None} older than window start "
                    f"{cycle.offchain_started_at}"
                )

            price = sample.close
            record = CycleRecord(
                cycle_index=cycle.cycle_index,
                price=price,
                started_at=cycle.active_since,
                sample=sample,
            )

            record.utilization, record.interest_rate, record.interest_accrued = self._accrue_interest(
                state, price, now
            )
            record.lp_pnl = self._mark_to_market(state, price)

            cycle.rebalance_price = price
            cycle.price_sample = sample
            self.ledger.settle_pending(state, price, record)

            cycle.phase = CyclePhase.ONCHAIN_REBALANCE
            cycle.onchain_started_at = now
            state.current_record = record

        logger.info(
            f"Cycle {record.cycle_index}: onchain rebalance at {price}, "
            f"utilization={float(record.utilization):.4f} interest={record.interest_accrued}"
        )
        return record

    def rebalance_pool(self, lp: str, price: Number) -> Decimal:
        """
        Apply the cycle's settlement to one LP.

        Folds the LP's pending interest and PnL into its collateral and
        records its health at `price`, which must lie inside the oracle
        sample's range. Closes the cycle once every LP has rebalanced.

        Returns:
            LP health at `price`

        Raises:
            InvalidPhase: Pool is not in OnchainRebalance
            UnknownPosition: Not an LP
            DuplicateRebalance: LP already rebalanced this cycle
            InvalidPrice: Price outside the sample's [low, high]
        """
        price = as_decimal(price)
        now = self.clock.now()
        with self.store.transaction("rebalance_pool") as state:
            require_phase(state, "rebalance_pool", CyclePhase.ONCHAIN_REBALANCE)
            cycle = state.cycle

            position = state.lps.get(lp)
            if position is None:
                raise UnknownPosition(f"{lp} is not an LP")
            if position.last_rebalance_cycle == cycle.cycle_index:
                raise DuplicateRebalance(f"{lp} already rebalanced in cycle {cycle.cycle_index}")
            if cycle.price_sample is None or not cycle.price_sample.contains(price):
                raise InvalidPrice(f"Price {price} outside the oracle sample range")

            self.liquidity.sync(state, position)
            health = self.liquidity.health_in(state, position, price)
            position.last_rebalance_cycle = cycle.cycle_index
            position.last_health_check_cycle = cycle.cycle_index

            closed = self._all_rebalanced(state)
            if closed:
                self._close(state, now)

        logger.info(f"LP {lp} rebalanced at {price}, health={health}")
        return health

    def close_cycle(self) -> CycleRecord:
        """
        Close the onchain phase without waiting for every LP.

        Raises:
            InvalidPhase: Pool is not in OnchainRebalance
            RebalanceIncomplete: LPs outstanding and the timeout has not passed
        """
        now = self.clock.now()
        with self.store.transaction("close_cycle") as state:
            require_phase(state, "close_cycle", CyclePhase.ONCHAIN_REBALANCE)
            deadline = state.cycle.onchain_started_at + self.strategy.onchain_rebalance_timeout
            if not self._all_rebalanced(state) and now < deadline:
                raise RebalanceIncomplete(f"LPs still rebalancing until {deadline}")
            record = self._close(state, now)

        return record

    def start_new_cycle(self) -> CycleRecord:
        """
        Skip the rebalance phases when there is no flow to settle.

        Interest accrues at the previous price and the cycle index advances.

        Raises:
            InvalidPhase: Pool is not Active
            CycleNotElapsed: Cycle length has not passed
            InvalidState: Requests are pending
        """
        now = self.clock.now()
        with self.store.transaction("start_new_cycle") as state:
            require_phase(state, "start_new_cycle", CyclePhase.ACTIVE)
            self._require_elapsed(state, now)
            cycle = state.cycle
            if cycle.has_pending_flow or state.pending_requests():
                raise InvalidState("Requests are pending, a full rebalance is required")

            price = cycle.rebalance_price
            record = CycleRecord(
                cycle_index=cycle.cycle_index,
                price=price,
                started_at=cycle.active_since,
                sample=cycle.price_sample,
                skipped=True,
            )
            if price is not None:
                record.utilization, record.interest_rate, record.interest_accrued = self._accrue_interest(
                    state, price, now
                )
                record.lp_pnl = self._mark_to_market(state, price)
            else:
                state.account.last_accrual_time = now

            state.current_record = record
            self._close(state, now)

        logger.info(f"Cycle {record.cycle_index} skipped, no pending flow")
        return record

    # Views

    @property
    def phase(self) -> CyclePhase:
        return self.store.state.cycle.phase

    @property
    def cycle_index(self) -> int:
        return self.store.state.cycle.cycle_index

    def history(self) -> List[CycleRecord]:
        return list(self.store.state.history)

    def settlement_price(self, cycle_index: int) -> Optional[Decimal]:
        """Price a closed cycle settled at."""
        for record in self.store.state.history:
            if record.cycle_index == cycle_index:
                return record.price
        return None

    def is_cycle_elapsed(self) -> bool:
        cycle = self.store.state.cycle
        return self.clock.now() >= cycle.active_since + self.strategy.cycle_length

    def is_rebalance_window_expired(self) -> bool:
        """Whether the oracle missed the offchain delivery window."""
        cycle = self.store.state.cycle
        if cycle.phase != CyclePhase.OFFCHAIN_REBALANCE:
            return False
        return self.clock.now() >= cycle.offchain_started_at + self.strategy.offchain_rebalance_window

    def all_lps_rebalanced(self) -> bool:
        return self._all_rebalanced(self.store.state)

    # Internals, run inside an open transaction

    def _require_elapsed(self, state: PoolState, now: int) -> None:
        ends_at = state.cycle.active_since + self.strategy.cycle_length
        if now < ends_at:
            raise CycleNotElapsed(f"Cycle {state.cycle.cycle_index} runs until {ends_at}")

    @staticmethod
    def _all_rebalanced(state: PoolState) -> bool:
        index = state.cycle.cycle_index
        return all(lp.last_rebalance_cycle == index for lp in state.lps.values())

    def _accrue_interest(self, state: PoolState, price: Decimal, now: int) -> Tuple[Decimal, Decimal, Decimal]:
        """
        Charge interest on every position and credit it to LPs.

        Each position pays notional * periodic rate, capped at its
        collateral. The total raises the per-share interest index.

        Returns:
            Tuple of (utilization, annual_rate, total_interest)
        """
        account = state.account
        elapsed = now - account.last_accrual_time
        utilization = account.utilization(price)
        rate = self.strategy.interest_rate(utilization)
        periodic = self.strategy.periodic_rate(utilization, elapsed)
        account.last_accrual_time = now

        total = Decimal("0")
        if periodic <= 0 or account.total_lp_shares <= 0:
            return utilization, rate, total

        for position in state.positions.values():
            charge = min(position.notional(price) * periodic, position.collateral_amount)
            if charge <= 0:
                continue
            position.collateral_amount -= charge
            total += charge

        if total > 0:
            account.total_user_collateral -= total
            account.total_lp_collateral += total
            account.cumulative_interest_index += total / account.total_lp_shares

        return utilization, rate, total

    def _mark_to_market(self, state: PoolState, price: Decimal) -> Decimal:
        """
        Move the backing surplus or deficit at `price` to LP collateral.

        Returns:
            PnL credited to LPs (negative when LPs lost)
        """
        account = state.account
        pnl = account.backing_balance - account.notional(price)

        if account.total_lp_shares <= 0:
            if pnl != 0 or account.total_exposure_supply > 0:
                account.emergency = True
                logger.warning("No LP backs outstanding exposure, pool in emergency")
            return Decimal("0")

        if pnl != 0:
            account.backing_balance -= pnl
            account.total_lp_collateral += pnl
            account.cumulative_pnl_index += pnl / account.total_lp_shares

        if account.total_lp_collateral < 0:
            account.emergency = True
            logger.warning(f"LP collateral negative after mark-to-market: {account.total_lp_collateral}")
        elif account.emergency:
            account.emergency = False
            logger.info("Pool re-collateralized, emergency cleared")

        return pnl

    def _close(self, state: PoolState, now: int) -> CycleRecord:
        """Re-evaluate LP health, store the record and return to Active."""
        cycle = state.cycle
        account = state.account
        record = state.current_record

        candidates = self.liquidity.candidates_in(state, cycle.rebalance_price)
        for position in state.lps.values():
            position.last_health_check_cycle = cycle.cycle_index
        if candidates:
            logger.warning(f"Cycle {cycle.cycle_index}: LPs below liquidation threshold: {candidates}")

        if account.total_lp_collateral < 0 or (account.total_exposure_supply > 0 and account.total_lp_shares <= 0):
            account.emergency = True

        record.liquidation_candidates = candidates
        record.closed_at = now
        state.history.append(record)
        state.current_record = None

        cycle.cycle_index += 1
        cycle.reset_totals()
        cycle.active_since = now
        cycle.phase = CyclePhase.ACTIVE
        cycle.offchain_started_at = None
        cycle.onchain_started_at = None
        cycle.oracle_request_id = None

        logger.info(f"Cycle {record.cycle_index} closed, cycle {cycle.cycle_index} active")
        return record
