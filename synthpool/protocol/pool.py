"""Synthetic pool: wires the components and exposes the public surface."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from synthpool.core.constants import POOL_CUSTODY
from synthpool.core.models import (
    CyclePhase,
    CycleRecord,
    LPPosition,
    PoolAccount,
    RequestType,
    SettlementResult,
    UserPosition,
    UserRequest,
)
from synthpool.core.numeric import Number

from .clock import Clock
from .cycle import CycleManager
from .invariants import check_all
from .ledger import PositionLedger
from .liquidity import LiquidityManager
from .oracle import AssetOracle
from .state import PoolState, StateStore
from .strategy import PoolStrategy
from .tokens import FungibleToken

logger = logging.getLogger(__name__)


@dataclass
class SolvencyReport:
    """Collateral coverage of outstanding exposure at the settlement price."""

    price: Optional[Decimal]
    notional: Decimal
    reserve_balance: Decimal              # Backing + LP collateral
    required_collateral: Decimal          # Backing owed to users + LP requirement
    custody_balance: Decimal              # Reserve tokens actually held
    expected_custody: Decimal             # Sum of every bucket the pool owes
    liquidation_candidates: List[str]
    emergency: bool

    @property
    def is_solvent(self) -> bool:
        return self.reserve_balance >= self.required_collateral

    @property
    def coverage_ratio(self) -> Decimal:
        if self.required_collateral <= 0:
            return Decimal("Infinity")
        return self.reserve_balance / self.required_collateral

    def to_dict(self) -> dict:
        return {
            "price": str(self.price) if self.price is not None else None,
            "notional": str(self.notional),
            "reserve_balance": str(self.reserve_balance),
            "required_collateral": str(self.required_collateral),
            "custody_balance": str(self.custody_balance),
            "expected_custody": str(self.expected_custody),
            "liquidation_candidates": list(self.liquidation_candidates),
            "emergency": self.emergency,
            "is_solvent": self.is_solvent,
        }


class SyntheticPool:
    """
    One synthetic-exposure pool.

    Components share a single StateStore and hold narrow handles to each
    other, injected here: the cycle manager drives the ledger's settlement
    and reads LP health from the liquidity manager; the ledger and the
    liquidity manager only read cycle state from the store.
    """

    def __init__(
        self,
        strategy: PoolStrategy,
        clock: Clock,
        oracle: AssetOracle,
        reserve_token: FungibleToken,
        exposure_token: FungibleToken,
        store: Optional[StateStore] = None,
    ):
        self.strategy = strategy
        self.clock = clock
        self.oracle = oracle
        self.reserve_token = reserve_token
        self.exposure_token = exposure_token

        if store is None:
            now = clock.now()
            state = PoolState()
            state.cycle.active_since = now
            state.account.last_accrual_time = now
            store = StateStore(state)
        store.set_validator(check_all)
        for resource in (reserve_token, exposure_token, oracle):
            store.enlist(resource)
        self.store = store

        self.ledger = PositionLedger(store, strategy, clock, reserve_token, exposure_token)
        self.liquidity = LiquidityManager(store, strategy, clock, reserve_token)
        self.cycle = CycleManager(store, strategy, clock, oracle, self.ledger, self.liquidity)

    @property
    def symbol(self) -> str:
        return self.oracle.symbol

    @property
    def state(self) -> PoolState:
        return self.store.state

    @property
    def account(self) -> PoolAccount:
        return self.store.state.account

    @property
    def phase(self) -> CyclePhase:
        return self.cycle.phase

    @property
    def cycle_index(self) -> int:
        return self.cycle.cycle_index

    # User operations

    def submit_deposit(self, user: str, amount: Number, collateral: Number) -> UserRequest:
        return self.ledger.submit_deposit(user, amount, collateral)

    def submit_redemption(self, user: str, exposure_amount: Number) -> UserRequest:
        return self.ledger.submit_redemption(user, exposure_amount)

    def submit_liquidation(self, liquidator: str, user: str, exposure_amount: Number) -> UserRequest:
        return self.ledger.submit_liquidation(liquidator, user, exposure_amount)

    def add_collateral(self, user: str, amount: Number, payer: Optional[str] = None) -> UserRequest:
        return self.ledger.add_collateral(user, amount, payer)

    def add_position_collateral(self, user: str, amount: Number) -> UserPosition:
        return self.ledger.add_position_collateral(user, amount)

    def claim(self, user: str) -> SettlementResult:
        return self.ledger.claim(user)

    # Cycle operations

    def initiate_offchain_rebalance(self) -> str:
        return self.cycle.initiate_offchain_rebalance()

    def request_price_update(self) -> str:
        return self.cycle.request_price_update()

    def initiate_onchain_rebalance(self) -> CycleRecord:
        return self.cycle.initiate_onchain_rebalance()

    def rebalance_pool(self, lp: str, price: Number) -> Decimal:
        return self.cycle.rebalance_pool(lp, price)

    def close_cycle(self) -> CycleRecord:
        return self.cycle.close_cycle()

    def start_new_cycle(self) -> CycleRecord:
        return self.cycle.start_new_cycle()

    # LP operations

    def register_lp(self, owner: str, collateral: Number) -> LPPosition:
        return self.liquidity.register_lp(owner, collateral)

    def add_lp_collateral(self, owner: str, amount: Number) -> LPPosition:
        return self.liquidity.add_lp_collateral(owner, amount)

    def withdraw_collateral(self, owner: str, amount: Number) -> Optional[LPPosition]:
        return self.liquidity.withdraw_collateral(owner, amount)

    def liquidate(self, caller: str, lp: str) -> Decimal:
        return self.liquidity.liquidate(caller, lp)

    def check_health(self, lp: str, price: Optional[Decimal] = None) -> Decimal:
        return self.liquidity.check_health(lp, price)

    # Reporting

    def has_pending_flow(self) -> bool:
        state = self.store.state
        return state.cycle.has_pending_flow or bool(state.pending_requests())

    def solvency_report(self) -> SolvencyReport:
        """
        Compare reserve with what outstanding exposure requires.

        Users are owed the full notional from backing; LPs must hold their
        collateral ratio of it on top.
        """
        state = self.store.state
        account = state.account
        price = state.cycle.rebalance_price
        notional = account.notional(price) if price is not None else Decimal("0")

        pending_deposits = sum(
            (r.principal_amount + r.posted_collateral for r in state.pending_requests(RequestType.DEPOSIT)),
            Decimal("0"),
        )
        expected = (
            account.backing_balance
            + account.total_lp_collateral
            + account.total_user_collateral
            + account.claimable_reserve
            + account.accrued_fees
            + pending_deposits
        )

        return SolvencyReport(
            price=price,
            notional=notional,
            reserve_balance=account.reserve_balance,
            required_collateral=notional + self.strategy.required_lp_collateral(notional),
            custody_balance=self.reserve_token.balance_of(POOL_CUSTODY),
            expected_custody=expected,
            liquidation_candidates=self.liquidity.candidates_in(state),
            emergency=account.emergency,
        )
