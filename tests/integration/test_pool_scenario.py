"""Integration tests running a pool through several cycles by hand."""

import pytest
from decimal import Decimal

from synthpool.core.constants import POOL_CUSTODY, SECONDS_PER_DAY, SECONDS_PER_YEAR
from synthpool.core.models import CyclePhase
from synthpool.protocol.invariants import check_all

P0 = Decimal("42069")
P1 = Decimal("43110")
P2 = Decimal("41250")


def assert_books_match_custody(pool):
    """Reserve held by the pool equals every bucket its books owe."""
    report = pool.solvency_report()
    assert report.custody_balance == pytest.approx(report.expected_custody)


class TestDefaultScenario:
    """Two LPs of 5000, two users depositing 1000 with 20% collateral at 42069."""

    @pytest.fixture
    def scenario_pool(self, pool):
        pool.submit_deposit("alice", 1000, 200)
        pool.submit_deposit("bob", 1000, 200)
        return pool

    def test_first_cycle(self, scenario_pool, driver, exposure_token):
        assert_books_match_custody(scenario_pool)

        record = driver.run_cycle(P0)
        scenario_pool.claim("alice")
        scenario_pool.claim("bob")
        account = scenario_pool.account

        assert record.price == P0
        assert record.exposure_minted == pytest.approx(2 * Decimal("1000") / P0)
        assert account.backing_balance == Decimal("2000")
        assert account.total_user_collateral == Decimal("400")
        assert account.total_lp_collateral == Decimal("10000")
        assert exposure_token.total_supply == account.total_exposure_supply
        assert scenario_pool.check_health("lp-1") == pytest.approx(Decimal("5000") / Decimal("300"))
        assert_books_match_custody(scenario_pool)

    def test_minted_value_matches_deposits(self, scenario_pool, driver):
        record = driver.run_cycle(P0)

        assert record.exposure_minted * P0 == pytest.approx(record.deposits)
        assert record.deposits == Decimal("2000")

    def test_collateralized_after_every_rebalance(self, scenario_pool, driver):
        for price in (P0, P1, P2):
            driver.run_cycle(price)
            report = scenario_pool.solvency_report()

            assert report.is_solvent
            assert report.coverage_ratio > 1
            assert report.liquidation_candidates == []
            assert not report.emergency
            assert_books_match_custody(scenario_pool)

    def test_interest_over_skipped_cycle(self, scenario_pool, driver):
        driver.run_cycle(P0)
        scenario_pool.claim("alice")
        scenario_pool.claim("bob")

        record = driver.skip()

        expected = Decimal("2000") * Decimal("0.08") * 7 * SECONDS_PER_DAY / SECONDS_PER_YEAR
        assert record.interest_accrued == pytest.approx(expected)
        assert scenario_pool.account.total_lp_collateral == pytest.approx(Decimal("10000") + expected)
        assert_books_match_custody(scenario_pool)

    def test_redemption_after_price_move(self, scenario_pool, driver, reserve_token, exposure_token):
        driver.run_cycle(P0)
        scenario_pool.claim("alice")
        scenario_pool.claim("bob")
        driver.skip()

        exposure = exposure_token.balance_of("alice")
        scenario_pool.submit_redemption("alice", exposure)
        assert_books_match_custody(scenario_pool)
        record = driver.run_cycle(P1)
        result = scenario_pool.claim("alice")

        assert result.reserve_payout == pytest.approx(exposure * P1)
        assert record.redemptions == pytest.approx(exposure * P1)
        # LPs paid the gain on both positions
        assert record.lp_pnl == pytest.approx(Decimal("2000") - 2 * exposure * P1)
        assert scenario_pool.ledger.position("alice") is None
        assert exposure_token.balance_of(POOL_CUSTODY) == Decimal("0")
        assert scenario_pool.account.claimable_reserve == Decimal("0")
        assert scenario_pool.account.backing_balance == pytest.approx(
            scenario_pool.account.total_exposure_supply * P1
        )
        assert_books_match_custody(scenario_pool)

    def test_history_is_ordered(self, scenario_pool, driver):
        driver.run_cycle(P0)
        driver.skip()
        driver.run_cycle(P1)

        history = scenario_pool.cycle.history()

        assert [r.cycle_index for r in history] == [0, 1, 2]
        assert [r.skipped for r in history] == [False, True, False]
        assert all(a.closed_at <= b.started_at for a, b in zip(history, history[1:]))
        assert scenario_pool.phase == CyclePhase.ACTIVE


class TestPhaseMonotonicity:
    """Every committed transition passes the invariant checks."""

    def test_observed_transitions(self, scenario_pool_with_recorder):
        pool, transitions = scenario_pool_with_recorder

        phases = [after.cycle.phase for _, after in transitions]
        indexes = [after.cycle.cycle_index for _, after in transitions]

        assert CyclePhase.OFFCHAIN_REBALANCE in phases
        assert CyclePhase.ONCHAIN_REBALANCE in phases
        assert indexes == sorted(indexes)
        assert all(check_all(before, after) == [] for before, after in transitions)

    @pytest.fixture
    def scenario_pool_with_recorder(self, pool, driver):
        transitions = []

        def recording_validator(before, after):
            transitions.append((before, pool.store.snapshot()))
            return check_all(before, after)

        pool.store.set_validator(recording_validator)
        pool.submit_deposit("alice", 1000, 200)
        driver.run_cycle(P0)
        pool.claim("alice")
        driver.skip()
        driver.run_cycle(P1)
        return pool, transitions
