"""Position ledger: user requests, settled positions and claims."""

import logging
from decimal import Decimal
from typing import Optional

from synthpool.core.constants import INFINITE_HEALTH, POOL_CUSTODY
from synthpool.core.errors import (
    HealthyPosition,
    InsufficientBalance,
    InsufficientCollateral,
    InsufficientLiquidity,
    InvalidAmount,
    InvalidState,
    NothingToClaim,
    UnknownPosition,
)
from synthpool.core.models import (
    CyclePhase,
    CycleRecord,
    RequestType,
    SettlementResult,
    UserPosition,
    UserRequest,
)
from synthpool.core.numeric import Number, as_decimal

from .clock import Clock
from .guards import require_phase, require_positive
from .state import PoolState, StateStore
from .strategy import PoolStrategy
from .tokens import FungibleToken

logger = logging.getLogger(__name__)


class PositionLedger:
    """
    Records one request per user and settles them at the cycle price.

    Deposits are in reserve units and mint exposure tokens on claim.
    Redemptions and liquidations escrow exposure tokens on submission and
    burn them on claim. Internal state is always final before any token
    call is made.
    """

    def __init__(
        self,
        store: StateStore,
        strategy: PoolStrategy,
        clock: Clock,
        reserve_token: FungibleToken,
        exposure_token: FungibleToken,
    ):
        self.store = store
        self.strategy = strategy
        self.clock = clock
        self.reserve_token = reserve_token
        self.exposure_token = exposure_token

    # Requests

    def submit_deposit(self, user: str, amount: Number, collateral: Number) -> UserRequest:
        """
        Request exposure for `amount` reserve, posting `collateral` for interest.

        Raises:
            InvalidPhase: Pool is not Active
            InvalidState: User already has a pending or unclaimed request
            InsufficientCollateral: Collateral below the required ratio
            InsufficientLiquidity: LP collateral cannot back the extra exposure
            InsufficientBalance: User cannot fund amount + collateral
        """
        amount = as_decimal(amount)
        collateral = as_decimal(collateral)

        with self.store.transaction("submit_deposit") as state:
            require_phase(state, "submit_deposit", CyclePhase.ACTIVE)
            require_positive(amount)
            if collateral < 0:
                raise InvalidAmount(f"Collateral must be non-negative, got {collateral}")
            self._require_free_slot(state, user)

            required = self.strategy.required_user_collateral(amount)
            if collateral < required:
                raise InsufficientCollateral(f"Deposit of {amount} needs {required} collateral, got {collateral}")

            account = state.account
            price = state.cycle.rebalance_price
            notional = account.notional(price) if price is not None else Decimal("0")
            capacity = self.strategy.lp_capacity(account.total_lp_collateral)
            if account.emergency or state.cycle.total_deposit_requests + amount + notional > capacity:
                raise InsufficientLiquidity(
                    f"Deposit of {amount} exceeds LP capacity {capacity} (notional {notional})"
                )

            total = amount + collateral
            balance = self.reserve_token.balance_of(user)
            if balance < total:
                raise InsufficientBalance(f"{user} holds {balance}, needs {total}")

            request = UserRequest(
                request_type=RequestType.DEPOSIT,
                principal_amount=amount,
                posted_collateral=collateral,
                cycle_submitted=state.cycle.cycle_index,
            )
            state.requests[user] = request
            state.cycle.total_deposit_requests += amount

            self.reserve_token.transfer(user, POOL_CUSTODY, total)

        logger.info(f"Deposit requested: {user} amount={amount} collateral={collateral}")
        return request

    def submit_redemption(self, user: str, exposure_amount: Number) -> UserRequest:
        """
        Request reserve for `exposure_amount` exposure tokens, escrowing them.

        Raises:
            InvalidPhase: Pool is not Active
            InvalidState: User already has a pending or unclaimed request
            InsufficientBalance: User holds fewer exposure tokens
        """
        exposure_amount = as_decimal(exposure_amount)

        with self.store.transaction("submit_redemption") as state:
            require_phase(state, "submit_redemption", CyclePhase.ACTIVE)
            require_positive(exposure_amount)
            self._require_free_slot(state, user)
            self._require_exposure(user, exposure_amount)

            request = UserRequest(
                request_type=RequestType.REDEEM,
                principal_amount=exposure_amount,
                cycle_submitted=state.cycle.cycle_index,
            )
            state.requests[user] = request
            state.cycle.total_redemption_requests += exposure_amount

            self.exposure_token.transfer(user, POOL_CUSTODY, exposure_amount)

        logger.info(f"Redemption requested: {user} exposure={exposure_amount}")
        return request

    def submit_liquidation(self, liquidator: str, user: str, exposure_amount: Number) -> UserRequest:
        """
        Request liquidation of an unhealthy user position.

        The liquidator supplies exposure tokens that are burned against the
        target's position at the settlement price, and receives the
        proceeds plus a reward taken from the target's collateral.

        Raises:
            UnknownPosition: Target has no settled position
            HealthyPosition: Target health is at or above the threshold
            InvalidAmount: Amount exceeds the target's unliquidated exposure
        """
        exposure_amount = as_decimal(exposure_amount)

        with self.store.transaction("submit_liquidation") as state:
            require_phase(state, "submit_liquidation", CyclePhase.ACTIVE)
            require_positive(exposure_amount)

            position = state.positions.get(user)
            if position is None:
                raise UnknownPosition(f"No position for {user}")
            health = self._health(position, state.cycle.rebalance_price)
            if health >= self.strategy.user_liquidation_threshold:
                raise HealthyPosition(f"{user} health {health} is not below {self.strategy.user_liquidation_threshold}")
            if exposure_amount > position.liquidatable_exposure:
                raise InvalidAmount(
                    f"Cannot liquidate {exposure_amount}, {user} has {position.liquidatable_exposure} open"
                )

            self._require_free_slot(state, liquidator)
            self._require_exposure(liquidator, exposure_amount)

            request = UserRequest(
                request_type=RequestType.LIQUIDATE,
                principal_amount=exposure_amount,
                cycle_submitted=state.cycle.cycle_index,
                target=user,
            )
            state.requests[liquidator] = request
            state.cycle.total_liquidation_requests += exposure_amount
            position.pending_liquidation += exposure_amount

            self.exposure_token.transfer(liquidator, POOL_CUSTODY, exposure_amount)

        logger.info(f"Liquidation requested: {liquidator} -> {user} exposure={exposure_amount}")
        return request

    def add_collateral(self, user: str, amount: Number, payer: Optional[str] = None) -> UserRequest:
        """
        Top up the collateral of a pending deposit. Anyone may pay.

        Raises:
            InvalidState: User has no pending, unsettled deposit
        """
        amount = as_decimal(amount)
        payer = payer or user

        with self.store.transaction("add_collateral") as state:
            require_phase(state, "add_collateral", CyclePhase.ACTIVE)
            require_positive(amount)

            request = state.requests.get(user)
            if request is None or not request.is_pending or request.request_type != RequestType.DEPOSIT:
                raise InvalidState(f"{user} has no pending deposit")

            balance = self.reserve_token.balance_of(payer)
            if balance < amount:
                raise InsufficientBalance(f"{payer} holds {balance}, needs {amount}")

            request.posted_collateral += amount
            self.reserve_token.transfer(payer, POOL_CUSTODY, amount)

        logger.info(f"Collateral added to deposit of {user}: {amount} (payer {payer})")
        return request

    def add_position_collateral(self, user: str, amount: Number) -> UserPosition:
        """Top up the collateral of a settled position to restore its health."""
        amount = as_decimal(amount)

        with self.store.transaction("add_position_collateral") as state:
            require_positive(amount)
            position = state.positions.get(user)
            if position is None:
                raise UnknownPosition(f"No position for {user}")

            balance = self.reserve_token.balance_of(user)
            if balance < amount:
                raise InsufficientBalance(f"{user} holds {balance}, needs {amount}")

            position.collateral_amount += amount
            state.account.total_user_collateral += amount
            self.reserve_token.transfer(user, POOL_CUSTODY, amount)

        return position

    def claim(self, user: str) -> SettlementResult:
        """
        Pay out a settled request and clear the slot.

        Raises:
            NothingToClaim: No request, or its cycle has not closed yet
        """
        with self.store.transaction("claim") as state:
            request = state.requests.get(user)
            if request is None or not request.is_settled or state.cycle.cycle_index <= request.cycle_submitted:
                raise NothingToClaim(f"{user} has no settled request")

            result = request.result
            del state.requests[user]
            state.account.claimable_reserve -= result.reserve_due

            if request.request_type == RequestType.DEPOSIT:
                if result.exposure_minted > 0:
                    self.exposure_token.mint(user, result.exposure_minted)
            else:
                if result.exposure_burned > 0:
                    self.exposure_token.burn(POOL_CUSTODY, result.exposure_burned)
                unused = request.principal_amount - result.exposure_burned
                if unused > 0:
                    self.exposure_token.transfer(POOL_CUSTODY, user, unused)

            if result.reserve_due > 0:
                self.reserve_token.transfer(POOL_CUSTODY, user, result.reserve_due)

        logger.info(
            f"Claimed {request.request_type.value} for {user}: "
            f"minted={result.exposure_minted} reserve={result.reserve_due}"
        )
        return result

    # Views

    def request(self, user: str) -> UserRequest:
        return self.store.state.request_for(user)

    def position(self, user: str) -> Optional[UserPosition]:
        return self.store.state.positions.get(user)

    def user_health(self, user: str, price: Optional[Decimal] = None) -> Decimal:
        """
        Collateral of a position relative to its required collateral.

        Raises:
            UnknownPosition: User has no settled position
        """
        state = self.store.state
        position = state.positions.get(user)
        if position is None:
            raise UnknownPosition(f"No position for {user}")
        return self._health(position, price if price is not None else state.cycle.rebalance_price)

    def _health(self, position: UserPosition, price: Optional[Decimal]) -> Decimal:
        if price is None:
            return INFINITE_HEALTH
        required = self.strategy.required_user_collateral(position.notional(price))
        if required <= 0:
            return INFINITE_HEALTH
        return position.collateral_amount / required

    # Settlement, driven by the cycle manager inside its own transaction

    def settle_pending(self, state: PoolState, price: Decimal, record: CycleRecord) -> int:
        """
        Settle every pending request of the current cycle at `price`.

        Returns:
            Number of requests settled
        """
        settled = 0
        for user, request in state.requests.items():
            if not request.is_pending:
                continue

            if request.request_type == RequestType.DEPOSIT:
                result = self._settle_deposit(state, user, request, price, record)
            elif request.request_type == RequestType.REDEEM:
                result = self._settle_redemption(state, user, request, price, record)
            else:
                result = self._settle_liquidation(state, request, price, record)

            request.result = result
            state.account.claimable_reserve += result.reserve_due
            record.fees += result.fee
            settled += 1

        if settled:
            logger.info(f"Settled {settled} requests at price {price}")
        return settled

    def _settle_deposit(
        self,
        state: PoolState,
        user: str,
        request: UserRequest,
        price: Decimal,
        record: CycleRecord,
    ) -> SettlementResult:
        account = state.account
        amount = request.principal_amount
        required = self.strategy.required_user_collateral(amount)
        fill = min(Decimal("1"), request.posted_collateral / required)

        filled = amount * fill
        fee = self.strategy.deposit_fee_for(filled)
        net = filled - fee
        minted = net / price
        locked = self.strategy.required_user_collateral(net)

        position = state.positions.setdefault(user, UserPosition(owner=user))
        position.exposure_amount += minted
        position.deposit_amount += net
        position.collateral_amount += locked

        account.total_user_collateral += locked
        account.backing_balance += net
        account.total_exposure_supply += minted
        account.accrued_fees += fee

        record.deposits += net
        record.exposure_minted += minted

        return SettlementResult(
            price=price,
            filled_amount=filled,
            exposure_minted=minted,
            collateral_refund=request.posted_collateral - locked + (amount - filled),
            fee=fee,
        )

    def _settle_redemption(
        self,
        state: PoolState,
        user: str,
        request: UserRequest,
        price: Decimal,
        record: CycleRecord,
    ) -> SettlementResult:
        account = state.account
        exposure = request.principal_amount
        gross = exposure * price
        fee = self.strategy.redemption_fee_for(gross)

        account.backing_balance -= gross
        account.total_exposure_supply -= exposure
        account.accrued_fees += fee

        released = Decimal("0")
        position = state.positions.get(user)
        if position is not None:
            released = self._release_position(state, position, exposure)

        record.redemptions += gross
        record.exposure_burned += exposure

        return SettlementResult(
            price=price,
            filled_amount=exposure,
            exposure_burned=exposure,
            reserve_payout=gross - fee,
            collateral_refund=released,
            fee=fee,
        )

    def _settle_liquidation(
        self,
        state: PoolState,
        request: UserRequest,
        price: Decimal,
        record: CycleRecord,
    ) -> SettlementResult:
        account = state.account
        position = state.positions.get(request.target)

        exposure = Decimal("0")
        if position is not None:
            position.pending_liquidation -= min(request.principal_amount, position.pending_liquidation)
            exposure = min(request.principal_amount, position.exposure_amount)

        # Target redeemed in the same cycle; unused tokens go back on claim
        if exposure <= 0:
            return SettlementResult(price=price)

        gross = exposure * price
        fee = self.strategy.redemption_fee_for(gross)
        reward = min(gross * self.strategy.user_liquidation_reward, position.collateral_amount)

        position.collateral_amount -= reward
        position.deposit_amount -= position.deposit_amount * exposure / position.exposure_amount
        position.exposure_amount -= exposure
        if position.is_closed and position.pending_liquidation <= 0:
            del state.positions[position.owner]

        account.total_user_collateral -= reward
        account.backing_balance -= gross
        account.total_exposure_supply -= exposure
        account.accrued_fees += fee

        record.redemptions += gross
        record.exposure_burned += exposure
        logger.info(f"Liquidated {exposure} exposure of {request.target}, reward {reward}")

        return SettlementResult(
            price=price,
            filled_amount=exposure,
            exposure_burned=exposure,
            reserve_payout=gross - fee + reward,
            fee=fee,
        )

    def _release_position(self, state: PoolState, position: UserPosition, exposure: Decimal) -> Decimal:
        """Release the collateral backing `exposure` of a position."""
        if position.exposure_amount > 0:
            covered = min(exposure, position.exposure_amount)
            fraction = covered / position.exposure_amount
        else:
            covered = Decimal("0")
            fraction = Decimal("1")

        released = position.collateral_amount * fraction
        position.collateral_amount -= released
        position.deposit_amount -= position.deposit_amount * fraction
        position.exposure_amount -= covered
        state.account.total_user_collateral -= released

        if position.is_closed and position.pending_liquidation <= 0:
            del state.positions[position.owner]
        return released

    # Helpers

    @staticmethod
    def _require_free_slot(state: PoolState, user: str) -> None:
        if not state.request_for(user).is_empty:
            raise InvalidState(f"{user} already has an unclaimed request")

    def _require_exposure(self, owner: str, amount: Decimal) -> None:
        balance = self.exposure_token.balance_of(owner)
        if balance < amount:
            raise InsufficientBalance(f"{owner} holds {balance} {self.exposure_token.symbol}, needs {amount}")
