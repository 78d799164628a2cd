"""Unit tests for the state store, invariants and reentrancy guard."""

import pytest
from decimal import Decimal

from synthpool.core.constants import POOL_CUSTODY
from synthpool.core.errors import InvariantViolation, ReentrancyError
from synthpool.core.models import CyclePhase, LPPosition
from synthpool.protocol import InMemoryToken, PoolState, StateStore
from synthpool.protocol.invariants import check_all, check_monotonic


class TestStateStore:
    """Tests for atomic commits."""

    def test_commit_bumps_version(self):
        store = StateStore()

        with store.transaction("bump") as state:
            state.cycle.active_since = 100

        assert store.version == 1
        assert store.state.cycle.active_since == 100
        assert not store.in_transaction

    def test_exception_rolls_back(self):
        store = StateStore()

        with pytest.raises(RuntimeError):
            with store.transaction("broken") as state:
                state.cycle.active_since = 100
                state.account.backing_balance = Decimal("5")
                raise RuntimeError("boom")

        assert store.version == 0
        assert store.state.cycle.active_since == 0
        assert store.state.account.backing_balance == Decimal("0")
        assert not store.in_transaction

    def test_nested_transaction(self):
        store = StateStore()

        with pytest.raises(ReentrancyError):
            with store.transaction("outer"):
                with store.transaction("inner"):
                    pass

        assert not store.in_transaction
        assert store.version == 0

    def test_validator_rejects_commit(self):
        store = StateStore(validator=check_all)

        with pytest.raises(InvariantViolation) as exc_info:
            with store.transaction("orphan_shares") as state:
                state.account.total_lp_shares = Decimal("5")

        assert "lp_shares_sum" in exc_info.value.violations
        assert store.state.account.total_lp_shares == Decimal("0")

    def test_validator_accepts_consistent_state(self):
        store = StateStore(validator=check_all)

        with store.transaction("add_lp") as state:
            state.lps["lp-1"] = LPPosition(owner="lp-1", collateral_balance=Decimal("100"), liquidity_share=Decimal("100"))
            state.account.total_lp_shares = Decimal("100")
            state.account.total_lp_collateral = Decimal("100")

        assert store.version == 1

    def test_rollback_restores_enlisted_token(self):
        store = StateStore()
        token = InMemoryToken("USDC")
        token.mint("alice", Decimal("10"))
        store.enlist(token)
        store.enlist(token)

        with pytest.raises(RuntimeError):
            with store.transaction("move") as state:
                token.transfer("alice", "bob", Decimal("4"))
                token.burn("alice", Decimal("1"))
                raise RuntimeError("boom")

        assert token.balance_of("alice") == Decimal("10")
        assert token.balance_of("bob") == Decimal("0")
        assert token.total_supply == Decimal("10")

    def test_commit_keeps_token_changes(self):
        store = StateStore()
        token = InMemoryToken("USDC")
        token.mint("alice", Decimal("10"))
        store.enlist(token)

        with store.transaction("move"):
            token.transfer("alice", "bob", Decimal("4"))

        assert token.balance_of("bob") == Decimal("4")

    def test_snapshot_is_detached(self):
        store = StateStore()
        copy = store.snapshot()

        copy.cycle.cycle_index = 7

        assert store.state.cycle.cycle_index == 0


class TestInvariants:
    """Tests for individual invariant checks."""

    def test_phase_cannot_skip(self):
        before = PoolState()
        after = PoolState()
        after.cycle.phase = CyclePhase.ONCHAIN_REBALANCE

        assert "phase_order" in check_monotonic(before, after)

    def test_cycle_index_advances_into_active_only(self):
        before = PoolState()
        before.cycle.phase = CyclePhase.ONCHAIN_REBALANCE
        after = PoolState()
        after.cycle.cycle_index = 1

        assert check_monotonic(before, after) == []

        after.cycle.cycle_index = 2
        assert "cycle_index_monotonic" in check_monotonic(before, after)

    def test_interest_index_never_decreases(self):
        before = PoolState()
        before.account.cumulative_interest_index = Decimal("0.1")
        after = PoolState()

        assert "interest_index_monotonic" in check_monotonic(before, after)

    def test_backing_must_match_exposure(self):
        state = PoolState()
        state.cycle.rebalance_price = Decimal("100")
        state.account.total_exposure_supply = Decimal("2")
        state.account.backing_balance = Decimal("150")

        assert "backing_matches_exposure" in check_all(state, state)

        state.account.emergency = True
        assert "backing_matches_exposure" not in check_all(state, state)


class TestReentrancy:
    """Tests for token callbacks re-entering the pool."""

    def test_callback_during_deposit(self, pool, reserve_token):
        calls = []

        def reenter(sender, recipient, amount):
            if recipient == POOL_CUSTODY:
                calls.append(amount)
                pool.submit_deposit("bob", 1000, 200)

        reserve_token.on_transfer = reenter

        with pytest.raises(ReentrancyError):
            pool.submit_deposit("alice", 1000, 200)

        assert calls == [Decimal("1200")]
        assert pool.state.request_for("alice").is_empty
        assert pool.state.request_for("bob").is_empty
        assert pool.state.cycle.total_deposit_requests == Decimal("0")
        assert not pool.store.in_transaction

    def test_rejected_deposit_returns_funds(self, pool, reserve_token):
        def reenter(sender, recipient, amount):
            pool.submit_deposit("bob", 1000, 200)

        reserve_token.on_transfer = reenter
        with pytest.raises(ReentrancyError):
            pool.submit_deposit("alice", 1000, 200)

        report = pool.solvency_report()
        assert reserve_token.balance_of("alice") == Decimal("10000")
        assert reserve_token.balance_of("bob") == Decimal("10000")
        assert report.custody_balance == Decimal("10000")
        assert report.custody_balance == report.expected_custody

    def test_callback_during_payout(self, settled_pool, driver, reserve_token, exposure_token):
        settled_pool.submit_redemption("alice", exposure_token.balance_of("alice"))
        driver.run_cycle(Decimal("42069"))
        claimable = settled_pool.account.claimable_reserve

        def reenter(sender, recipient, amount):
            settled_pool.claim("alice")

        reserve_token.on_transfer = reenter
        with pytest.raises(ReentrancyError):
            settled_pool.claim("alice")

        assert settled_pool.state.request_for("alice").is_settled
        assert settled_pool.account.claimable_reserve == claimable

    def test_claim_succeeds_after_rejected_payout(self, settled_pool, driver, reserve_token, exposure_token):
        exposure = exposure_token.balance_of("alice")
        settled_pool.submit_redemption("alice", exposure)
        driver.run_cycle(Decimal("42069"))
        supply = exposure_token.total_supply
        reserve_before = reserve_token.balance_of("alice")

        def reenter(sender, recipient, amount):
            settled_pool.claim("alice")

        reserve_token.on_transfer = reenter
        with pytest.raises(ReentrancyError):
            settled_pool.claim("alice")

        assert exposure_token.balance_of(POOL_CUSTODY) == exposure
        assert exposure_token.total_supply == supply
        assert reserve_token.balance_of("alice") == reserve_before

        reserve_token.on_transfer = None
        result = settled_pool.claim("alice")

        assert exposure_token.balance_of(POOL_CUSTODY) == Decimal("0")
        assert reserve_token.balance_of("alice") == reserve_before + result.reserve_due
        report = settled_pool.solvency_report()
        assert report.custody_balance == pytest.approx(report.expected_custody)

    def test_operations_resume_after_rejection(self, pool, reserve_token):
        def reenter(sender, recipient, amount):
            pool.claim("alice")

        reserve_token.on_transfer = reenter
        with pytest.raises(ReentrancyError):
            pool.submit_deposit("alice", 1000, 200)

        reserve_token.on_transfer = None
        pool.submit_deposit("bob", 1000, 200)

        assert pool.state.request_for("bob").principal_amount == Decimal("1000")


class TestStateSerialization:
    """Tests for PoolState dict conversion."""

    def test_settled_state(self, settled_pool):
        state = settled_pool.state

        restored = PoolState.from_dict(state.to_dict())

        assert restored.to_dict() == state.to_dict()
        assert restored.cycle.phase == CyclePhase.ACTIVE
        assert restored.history[0].price == Decimal("42069")
        assert restored.lps["lp-1"].liquidity_share == Decimal("5000")
