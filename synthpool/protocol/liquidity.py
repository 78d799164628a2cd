"""Liquidity/collateral manager: LP registration, health and liquidation."""

import logging
from decimal import Decimal
from typing import List, Optional

from synthpool.core.constants import INFINITE_HEALTH, POOL_CUSTODY
from synthpool.core.errors import (
    BelowMinimumCollateral,
    HealthyPosition,
    InsufficientBalance,
    InsufficientCollateral,
    InvalidState,
    UnknownPosition,
)
from synthpool.core.models import CyclePhase, LPPosition
from synthpool.core.numeric import Number, as_decimal

from .clock import Clock
from .guards import require_positive
from .state import PoolState, StateStore
from .strategy import PoolStrategy
from .tokens import FungibleToken

logger = logging.getLogger(__name__)


class LiquidityManager:
    """
    Tracks LP collateral against the exposure it backs.

    Each LP's required collateral is its share of total exposure notional
    times the LP collateral ratio. Interest and mark-to-market PnL reach
    LPs through per-share indices and are folded into collateral_balance
    whenever the LP is touched.
    """

    def __init__(self, store: StateStore, strategy: PoolStrategy, clock: Clock, reserve_token: FungibleToken):
        self.store = store
        self.strategy = strategy
        self.clock = clock
        self.reserve_token = reserve_token

    def register_lp(self, owner: str, collateral: Number) -> LPPosition:
        """
        Register a new LP with an initial collateral deposit.

        Raises:
            InvalidState: LP already registered
            InsufficientCollateral: Collateral below the minimum
            InsufficientBalance: Owner cannot fund the collateral
        """
        collateral = as_decimal(collateral)

        with self.store.transaction("register_lp") as state:
            require_positive(collateral, "collateral")
            if owner in state.lps:
                raise InvalidState(f"{owner} is already an LP")
            if collateral < self.strategy.min_lp_collateral:
                raise InsufficientCollateral(
                    f"LP collateral {collateral} below minimum {self.strategy.min_lp_collateral}"
                )
            balance = self.reserve_token.balance_of(owner)
            if balance < collateral:
                raise InsufficientBalance(f"{owner} holds {balance}, needs {collateral}")

            account = state.account
            credited = collateral
            if account.total_lp_shares <= 0:
                credited = self._recapitalize(state, owner, collateral)

            if account.total_lp_shares <= 0 or account.total_lp_collateral <= 0:
                shares = credited
            else:
                shares = credited * account.total_lp_shares / account.total_lp_collateral

            cycle = state.cycle
            position = LPPosition(
                owner=owner,
                collateral_balance=credited,
                liquidity_share=shares,
                interest_index_snapshot=account.cumulative_interest_index,
                pnl_index_snapshot=account.cumulative_pnl_index,
                last_health_check_cycle=cycle.cycle_index,
                # Joining mid-rebalance needs no rebalance of its own
                last_rebalance_cycle=cycle.cycle_index if cycle.phase == CyclePhase.ONCHAIN_REBALANCE else -1,
                registered_at=self.clock.now(),
            )
            state.lps[owner] = position
            account.total_lp_collateral += credited
            account.total_lp_shares += shares

            self.reserve_token.transfer(owner, POOL_CUSTODY, collateral)

        logger.info(f"LP registered: {owner} collateral={credited} shares={shares}")
        return position

    def _recapitalize(self, state: PoolState, owner: str, collateral: Decimal) -> Decimal:
        """
        Settle the backing gap left behind when the last LP was removed.

        Backing is reset to the exposure notional at the settlement price so
        the next mark-to-market does not move the gap into the new LP's
        collateral. A surplus goes to protocol fees. A deficit is covered
        from protocol fees first and then from the new collateral, and
        bad debt is cleared once the gap is closed.

        Returns:
            Collateral credited to the new LP

        Raises:
            InsufficientCollateral: Collateral left after covering the deficit is below the minimum
        """
        account = state.account
        price = state.cycle.rebalance_price
        if price is None:
            return collateral

        gap = account.backing_balance - account.notional(price)
        if gap == 0 and account.bad_debt == 0:
            return collateral

        credited = collateral
        if gap >= 0:
            account.accrued_fees += gap
        else:
            deficit = -gap
            from_fees = min(deficit, account.accrued_fees)
            from_collateral = deficit - from_fees
            credited = collateral - from_collateral
            if credited < self.strategy.min_lp_collateral:
                raise InsufficientCollateral(
                    f"{owner} must cover a deficit of {from_collateral} on top of the "
                    f"{self.strategy.min_lp_collateral} minimum, got {collateral}"
                )
            account.accrued_fees -= from_fees

        account.backing_balance -= gap
        logger.warning(
            f"Recapitalized by {owner}: backing gap {gap} settled, bad debt {account.bad_debt} cleared"
        )
        account.bad_debt = Decimal("0")
        return credited

    def add_lp_collateral(self, owner: str, amount: Number) -> LPPosition:
        """Add collateral to an LP without changing its liquidity share."""
        amount = as_decimal(amount)

        with self.store.transaction("add_lp_collateral") as state:
            require_positive(amount)
            position = self._get(state, owner)
            balance = self.reserve_token.balance_of(owner)
            if balance < amount:
                raise InsufficientBalance(f"{owner} holds {balance}, needs {amount}")

            self.sync(state, position)
            position.collateral_balance += amount
            state.account.total_lp_collateral += amount

            self.reserve_token.transfer(owner, POOL_CUSTODY, amount)

        return position

    def withdraw_collateral(self, owner: str, amount: Number) -> Optional[LPPosition]:
        """
        Withdraw LP collateral.

        Withdrawing everything removes the LP; it is allowed only if the
        remaining LPs still cover the outstanding notional. A partial
        withdrawal must leave the LP's health at or above 1.

        Returns:
            The updated position, or None when the LP was removed

        Raises:
            InsufficientBalance: Amount exceeds effective collateral
            BelowMinimumCollateral: Withdrawal would under-collateralize
        """
        amount = as_decimal(amount)

        with self.store.transaction("withdraw_collateral") as state:
            require_positive(amount)
            position = self._get(state, owner)
            account = state.account

            self.sync(state, position)
            available = position.collateral_balance
            if amount > available:
                raise InsufficientBalance(f"{owner} has {available} collateral, cannot withdraw {amount}")

            price = state.cycle.rebalance_price
            notional = account.notional(price) if price is not None else Decimal("0")

            if amount == available:
                remaining = account.total_lp_collateral - available
                if notional > 0 and remaining < self.strategy.required_lp_collateral(notional):
                    raise BelowMinimumCollateral(
                        f"Remaining LP collateral {remaining} cannot back notional {notional}"
                    )
                del state.lps[owner]
                account.total_lp_shares -= position.liquidity_share
                account.total_lp_collateral -= available
                result = None
            else:
                required = self._required(state, position, price)
                if required > 0 and (available - amount) / required < 1:
                    raise BelowMinimumCollateral(
                        f"{owner} needs {required} collateral, would keep {available - amount}"
                    )
                position.collateral_balance -= amount
                account.total_lp_collateral -= amount
                result = position

            self.reserve_token.transfer(POOL_CUSTODY, owner, amount)

        logger.info(f"LP withdrawal: {owner} amount={amount}{' (exited)' if result is None else ''}")
        return result

    def liquidate(self, caller: str, owner: str) -> Decimal:
        """
        Liquidate an LP whose health fell below the liquidation threshold.

        The LP's effective collateral and shares are seized in one step.
        The caller receives a bonus from the seized collateral; the rest is
        spread over the remaining LPs. With no LP left the remainder backs
        users directly and the pool enters emergency.

        Returns:
            Bonus paid to the caller

        Raises:
            HealthyPosition: LP health is at or above the threshold
        """
        with self.store.transaction("liquidate") as state:
            position = self._get(state, owner)
            health = self.health_in(state, position, state.cycle.rebalance_price)
            if health >= self.strategy.lp_liquidation_threshold:
                raise HealthyPosition(
                    f"LP {owner} health {health} is not below {self.strategy.lp_liquidation_threshold}"
                )

            account = state.account
            seized = self.effective_collateral_in(state, position)
            bonus = max(Decimal("0"), seized) * self.strategy.lp_liquidation_bonus
            remainder = seized - bonus

            del state.lps[owner]
            account.total_lp_shares -= position.liquidity_share
            account.total_lp_collateral -= seized

            if account.total_lp_shares > 0:
                account.cumulative_pnl_index += remainder / account.total_lp_shares
                account.total_lp_collateral += remainder
            else:
                account.backing_balance += remainder
                account.emergency = True
                if remainder < 0:
                    account.bad_debt -= remainder
                logger.warning(f"Last LP {owner} liquidated, pool requires re-collateralization")

            if bonus > 0:
                self.reserve_token.transfer(POOL_CUSTODY, caller, bonus)

        logger.info(f"LP liquidated: {owner} by {caller}, seized={seized} bonus={bonus} health={health}")
        return bonus

    # Views

    def position(self, owner: str) -> Optional[LPPosition]:
        return self.store.state.lps.get(owner)

    def effective_collateral(self, owner: str) -> Decimal:
        """Stored collateral plus unsynced interest and PnL."""
        state = self.store.state
        return self.effective_collateral_in(state, self._get(state, owner))

    def required_collateral(self, owner: str, price: Optional[Decimal] = None) -> Decimal:
        """Collateral the LP must hold for its share of exposure notional."""
        state = self.store.state
        price = price if price is not None else state.cycle.rebalance_price
        return self._required(state, self._get(state, owner), price)

    def check_health(self, owner: str, price: Optional[Decimal] = None) -> Decimal:
        """Effective collateral over required collateral; Infinity when nothing is required."""
        state = self.store.state
        price = price if price is not None else state.cycle.rebalance_price
        return self.health_in(state, self._get(state, owner), price)

    def liquidation_candidates(self, price: Optional[Decimal] = None) -> List[str]:
        """LPs whose health is below the liquidation threshold."""
        return self.candidates_in(self.store.state, price)

    def required_collateral_sum(self, price: Optional[Decimal] = None) -> Decimal:
        """Collateral all LPs must hold together."""
        state = self.store.state
        price = price if price is not None else state.cycle.rebalance_price
        if price is None:
            return Decimal("0")
        return self.strategy.required_lp_collateral(state.account.notional(price))

    def available_capacity(self, price: Optional[Decimal] = None) -> Decimal:
        """Additional exposure notional the current LP collateral could back."""
        state = self.store.state
        price = price if price is not None else state.cycle.rebalance_price
        notional = state.account.notional(price) if price is not None else Decimal("0")
        return max(Decimal("0"), self.strategy.lp_capacity(state.account.total_lp_collateral) - notional)

    # State-level helpers, usable inside another component's transaction

    def sync(self, state: PoolState, position: LPPosition) -> Decimal:
        """Fold pending interest and PnL into the stored balance."""
        account = state.account
        position.collateral_balance = self.effective_collateral_in(state, position)
        position.interest_index_snapshot = account.cumulative_interest_index
        position.pnl_index_snapshot = account.cumulative_pnl_index
        return position.collateral_balance

    @staticmethod
    def effective_collateral_in(state: PoolState, position: LPPosition) -> Decimal:
        account = state.account
        return position.effective_collateral(account.cumulative_interest_index, account.cumulative_pnl_index)

    def candidates_in(self, state: PoolState, price: Optional[Decimal] = None) -> List[str]:
        price = price if price is not None else state.cycle.rebalance_price
        return [
            owner for owner, position in state.lps.items()
            if self.health_in(state, position, price) < self.strategy.lp_liquidation_threshold
        ]

    def _required(self, state: PoolState, position: LPPosition, price: Optional[Decimal]) -> Decimal:
        account = state.account
        if price is None or account.total_lp_shares <= 0:
            return Decimal("0")
        share_fraction = position.liquidity_share / account.total_lp_shares
        return self.strategy.required_lp_collateral(share_fraction * account.notional(price))

    def health_in(self, state: PoolState, position: LPPosition, price: Optional[Decimal]) -> Decimal:
        required = self._required(state, position, price)
        if required <= 0:
            return INFINITE_HEALTH
        return self.effective_collateral_in(state, position) / required

    @staticmethod
    def _get(state: PoolState, owner: str) -> LPPosition:
        position = state.lps.get(owner)
        if position is None:
            raise UnknownPosition(f"{owner} is not an LP")
        return position
