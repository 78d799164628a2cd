"""Unit tests for the position ledger: requests, settlement and claims."""

import pytest
from decimal import Decimal

from synthpool.core.constants import POOL_CUSTODY
from synthpool.core.errors import (
    HealthyPosition,
    InsufficientBalance,
    InsufficientCollateral,
    InsufficientLiquidity,
    InvalidAmount,
    InvalidPhase,
    InvalidState,
    NothingToClaim,
    UnknownPosition,
)
from synthpool.core.models import RequestType
from synthpool.protocol import PoolStrategy

PRICE = Decimal("42069")


class TestSubmitDeposit:
    """Tests for deposit requests."""

    def test_records_request(self, pool, reserve_token):
        request = pool.submit_deposit("alice", 1000, 200)

        assert request.request_type == RequestType.DEPOSIT
        assert request.principal_amount == Decimal("1000")
        assert request.posted_collateral == Decimal("200")
        assert request.cycle_submitted == 0
        assert pool.state.cycle.total_deposit_requests == Decimal("1000")
        assert reserve_token.balance_of("alice") == Decimal("8800")
        assert reserve_token.balance_of(POOL_CUSTODY) == Decimal("11200")

    def test_collateral_below_ratio(self, pool):
        with pytest.raises(InsufficientCollateral):
            pool.submit_deposit("alice", 1000, 199)

    def test_non_positive_amount(self, pool):
        with pytest.raises(InvalidAmount):
            pool.submit_deposit("alice", 0, 0)

    def test_negative_collateral(self, pool):
        with pytest.raises(InvalidAmount):
            pool.submit_deposit("alice", 1000, -1)

    def test_one_request_per_user(self, pool):
        pool.submit_deposit("alice", 1000, 200)

        with pytest.raises(InvalidState):
            pool.submit_deposit("alice", 500, 100)

    def test_exceeds_lp_capacity(self, pool):
        """10000 LP collateral at a 30% ratio backs at most 33333 notional."""
        with pytest.raises(InsufficientLiquidity):
            pool.submit_deposit("alice", 40000, 8000)

    def test_capacity_counts_pending_deposits(self, pool, reserve_token):
        reserve_token.mint("whale", Decimal("100000"))
        pool.submit_deposit("whale", 30000, 6000)

        with pytest.raises(InsufficientLiquidity):
            pool.submit_deposit("alice", 5000, 1000)

    def test_no_lps(self, empty_pool, reserve_token):
        reserve_token.mint("alice", Decimal("10000"))

        with pytest.raises(InsufficientLiquidity):
            empty_pool.submit_deposit("alice", 1000, 200)

    def test_insufficient_balance(self, pool, reserve_token):
        with pytest.raises(InsufficientBalance):
            pool.submit_deposit("carol", 9000, 1800)

        assert reserve_token.balance_of("carol") == Decimal("10000")
        assert pool.state.request_for("carol").is_empty

    def test_wrong_phase(self, pool, clock, strategy):
        clock.advance(strategy.cycle_length)
        pool.initiate_offchain_rebalance()

        with pytest.raises(InvalidPhase):
            pool.submit_deposit("alice", 1000, 200)


class TestAddCollateral:
    """Tests for topping up pending deposits and settled positions."""

    def test_third_party_top_up(self, pool, reserve_token):
        pool.submit_deposit("alice", 1000, 200)

        request = pool.add_collateral("alice", 50, payer="bob")

        assert request.posted_collateral == Decimal("250")
        assert reserve_token.balance_of("bob") == Decimal("9950")

    def test_requires_pending_deposit(self, pool):
        with pytest.raises(InvalidState):
            pool.add_collateral("alice", 50)

    def test_position_top_up(self, settled_pool, reserve_token):
        position = settled_pool.add_position_collateral("alice", 100)

        assert position.collateral_amount == Decimal("300")
        assert settled_pool.account.total_user_collateral == Decimal("500")

    def test_position_top_up_unknown(self, pool):
        with pytest.raises(UnknownPosition):
            pool.add_position_collateral("alice", 100)


class TestDepositSettlement:
    """Tests for deposit settlement and claims."""

    def test_mint_at_settlement_price(self, settled_pool, exposure_token):
        minted = Decimal("1000") / PRICE

        assert exposure_token.balance_of("alice") == minted
        assert settled_pool.account.total_exposure_supply == 2 * minted
        assert settled_pool.account.backing_balance == Decimal("2000")
        assert settled_pool.account.total_user_collateral == Decimal("400")

        position = settled_pool.ledger.position("alice")
        assert position.exposure_amount == minted
        assert position.deposit_amount == Decimal("1000")
        assert position.collateral_amount == Decimal("200")

    def test_claim_waits_for_cycle_close(self, pool, driver):
        pool.submit_deposit("alice", 1000, 200)
        driver.settle(PRICE)

        assert pool.state.request_for("alice").is_settled
        with pytest.raises(NothingToClaim):
            pool.claim("alice")

        driver.rebalance_all()
        result = pool.claim("alice")

        assert result.exposure_minted == Decimal("1000") / PRICE
        assert pool.state.request_for("alice").is_empty

    def test_excess_collateral_refunded(self, pool, driver, reserve_token):
        pool.submit_deposit("alice", 1000, 300)
        driver.run_cycle(PRICE)

        result = pool.claim("alice")

        assert result.collateral_refund == Decimal("100")
        assert reserve_token.balance_of("alice") == Decimal("8800")
        assert pool.account.claimable_reserve == Decimal("0")

    def test_nothing_to_claim(self, pool):
        with pytest.raises(NothingToClaim):
            pool.claim("alice")

    def test_pending_request_not_claimable(self, pool):
        pool.submit_deposit("alice", 1000, 200)

        with pytest.raises(NothingToClaim):
            pool.claim("alice")


class TestDepositFees:
    """Tests for fee deduction at settlement."""

    @pytest.fixture
    def strategy(self):
        return PoolStrategy(deposit_fee=Decimal("0.01"), redemption_fee=Decimal("0.01"))

    def test_fee_reduces_net_deposit(self, pool, driver):
        pool.submit_deposit("alice", 1000, 200)
        record = driver.run_cycle(PRICE)

        result = pool.claim("alice")

        assert result.fee == Decimal("10")
        assert result.exposure_minted == Decimal("990") / PRICE
        assert result.collateral_refund == Decimal("2")
        assert record.fees == Decimal("10")
        assert pool.account.accrued_fees == Decimal("10")
        assert pool.account.backing_balance == Decimal("990")


class TestRedemption:
    """Tests for redemption requests and payouts."""

    def test_escrow_on_submit(self, settled_pool, exposure_token):
        exposure = exposure_token.balance_of("alice")

        settled_pool.submit_redemption("alice", exposure)

        assert exposure_token.balance_of("alice") == Decimal("0")
        assert exposure_token.balance_of(POOL_CUSTODY) == exposure
        assert settled_pool.state.cycle.total_redemption_requests == exposure

    def test_more_than_held(self, settled_pool, exposure_token):
        exposure = exposure_token.balance_of("alice")

        with pytest.raises(InsufficientBalance):
            settled_pool.submit_redemption("alice", exposure * 2)

    def test_without_tokens(self, settled_pool):
        with pytest.raises(InsufficientBalance):
            settled_pool.submit_redemption("carol", Decimal("0.001"))

    def test_full_redemption(self, settled_pool, driver, exposure_token, reserve_token):
        exposure = exposure_token.balance_of("alice")
        settled_pool.submit_redemption("alice", exposure)
        new_price = Decimal("44000")

        driver.run_cycle(new_price)
        collateral_left = settled_pool.ledger.position("alice")
        result = settled_pool.claim("alice")

        assert collateral_left is None
        assert result.exposure_burned == exposure
        assert result.reserve_payout == pytest.approx(exposure * new_price)
        # 7 days of interest came out of the 200 collateral
        assert Decimal("195") < result.collateral_refund < Decimal("200")
        assert exposure_token.balance_of(POOL_CUSTODY) == Decimal("0")
        assert exposure_token.total_supply == exposure_token.balance_of("bob")
        assert reserve_token.balance_of("alice") == pytest.approx(Decimal("8800") + result.reserve_due)

    def test_partial_redemption(self, settled_pool, driver, exposure_token):
        exposure = exposure_token.balance_of("alice")
        settled_pool.submit_redemption("alice", exposure / 4)

        driver.run_cycle(PRICE)
        settled_pool.claim("alice")
        position = settled_pool.ledger.position("alice")

        assert position.exposure_amount == pytest.approx(exposure * 3 / 4)
        assert position.deposit_amount == pytest.approx(Decimal("750"))
        assert exposure_token.balance_of("alice") == pytest.approx(exposure * 3 / 4)


class TestUserLiquidation:
    """Tests for liquidating unhealthy user positions."""

    SPIKE = Decimal("90000")

    @pytest.fixture
    def spiked_pool(self, settled_pool, driver):
        """Price more than doubled, so both positions are below 0.5 health."""
        driver.run_cycle(self.SPIKE)
        return settled_pool

    def test_health_tracks_price(self, settled_pool):
        assert settled_pool.ledger.user_health("alice") == pytest.approx(Decimal("1"))
        assert settled_pool.ledger.user_health("alice", PRICE * 2) == pytest.approx(Decimal("0.5"))

    def test_healthy_position_rejected(self, settled_pool, exposure_token):
        exposure = exposure_token.balance_of("bob")

        with pytest.raises(HealthyPosition):
            settled_pool.submit_liquidation("bob", "alice", exposure / 2)

    def test_unknown_target(self, settled_pool):
        with pytest.raises(UnknownPosition):
            settled_pool.submit_liquidation("bob", "carol", Decimal("0.001"))

    def test_amount_above_position(self, spiked_pool, exposure_token):
        exposure = exposure_token.balance_of("alice")

        with pytest.raises(InvalidAmount):
            spiked_pool.submit_liquidation("bob", "alice", exposure * 2)

    def test_topped_up_position_is_safe(self, spiked_pool, exposure_token):
        spiked_pool.add_position_collateral("alice", 500)

        with pytest.raises(HealthyPosition):
            spiked_pool.submit_liquidation("bob", "alice", exposure_token.balance_of("bob") / 2)

    def test_liquidation_pays_reward(self, spiked_pool, driver, exposure_token):
        amount = exposure_token.balance_of("alice") / 2
        assert spiked_pool.ledger.user_health("alice") < Decimal("0.5")

        spiked_pool.submit_liquidation("bob", "alice", amount)
        target = spiked_pool.ledger.position("alice")
        assert target.pending_liquidation == amount
        assert target.liquidatable_exposure == pytest.approx(amount)

        driver.run_cycle(self.SPIKE)
        result = spiked_pool.claim("bob")
        target = spiked_pool.ledger.position("alice")

        gross = amount * self.SPIKE
        assert result.exposure_burned == amount
        assert result.reserve_payout == pytest.approx(gross * Decimal("1.05"))
        assert target.exposure_amount == pytest.approx(amount)
        assert target.pending_liquidation == Decimal("0")
        assert target.deposit_amount == pytest.approx(Decimal("500"))


class TestUserLiquidationThreshold:
    """Health exactly at the threshold, with interest switched off so values stay exact."""

    @pytest.fixture
    def strategy(self):
        zero = Decimal("0")
        return PoolStrategy(base_rate=zero, tier1_rate=zero, tier2_rate=zero, max_rate=zero)

    @pytest.fixture
    def doubled_pool(self, pool, driver):
        """alice holds 10 units bought at 100 with 200 collateral; price now 200."""
        pool.submit_deposit("alice", 1000, 200)
        pool.submit_deposit("bob", 1000, 200)
        driver.run_cycle(Decimal("100"))
        pool.claim("alice")
        pool.claim("bob")
        driver.run_cycle(Decimal("200"))
        return pool

    def test_at_threshold_is_healthy(self, doubled_pool):
        assert doubled_pool.ledger.user_health("alice") == Decimal("0.5")

        with pytest.raises(HealthyPosition):
            doubled_pool.submit_liquidation("bob", "alice", Decimal("1"))

        assert doubled_pool.state.request_for("bob").is_empty

    def test_just_below_threshold_is_liquidatable(self, doubled_pool, driver):
        driver.run_cycle(Decimal("200.01"))

        request = doubled_pool.submit_liquidation("bob", "alice", Decimal("1"))

        assert request.request_type == RequestType.LIQUIDATE
        assert request.target == "alice"
