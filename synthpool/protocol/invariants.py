"""Post-state invariant checks run on every commit."""

from decimal import Decimal
from typing import List

from synthpool.core.models import CyclePhase, RequestType
from synthpool.core.numeric import approx_equal

from .state import PoolState


def check_non_negative(state: PoolState) -> List[str]:
    """Balances stay non-negative; backing and LP collateral only while not in emergency."""
    account = state.account
    violations = []

    for name in ("total_user_collateral", "total_exposure_supply", "total_lp_shares", "claimable_reserve", "accrued_fees"):
        if getattr(account, name) < 0:
            violations.append(f"negative_{name}")

    if not account.emergency:
        if account.backing_balance < 0:
            violations.append("negative_backing_balance")
        if account.total_lp_collateral < 0:
            violations.append("negative_total_lp_collateral")

    return violations


def check_backing(state: PoolState) -> List[str]:
    """Backing equals outstanding exposure at the settlement price."""
    account = state.account
    price = state.cycle.rebalance_price
    if price is None or account.emergency:
        return []
    if not approx_equal(account.backing_balance, account.notional(price)):
        return ["backing_matches_exposure"]
    return []


def check_monotonic(before: PoolState, after: PoolState) -> List[str]:
    """Cycle index, phase order and interest index only move forward."""
    violations = []
    b, a = before.cycle, after.cycle

    if a.cycle_index < b.cycle_index:
        violations.append("cycle_index_monotonic")
    elif a.cycle_index > b.cycle_index:
        if a.cycle_index != b.cycle_index + 1 or a.phase != CyclePhase.ACTIVE:
            violations.append("cycle_index_monotonic")

    if a.phase != b.phase and a.phase != b.phase.next_phase:
        violations.append("phase_order")

    if after.account.cumulative_interest_index < before.account.cumulative_interest_index:
        violations.append("interest_index_monotonic")

    return violations


def check_aggregates(state: PoolState) -> List[str]:
    """Pool aggregates equal the sum of the positions they summarize."""
    account = state.account
    violations = []

    shares = sum((lp.liquidity_share for lp in state.lps.values()), Decimal("0"))
    if not approx_equal(account.total_lp_shares, shares):
        violations.append("lp_shares_sum")

    collateral = sum(
        (
            lp.effective_collateral(account.cumulative_interest_index, account.cumulative_pnl_index)
            for lp in state.lps.values()
        ),
        Decimal("0"),
    )
    if not approx_equal(account.total_lp_collateral, collateral):
        violations.append("lp_collateral_sum")

    user_collateral = sum((p.collateral_amount for p in state.positions.values()), Decimal("0"))
    if not approx_equal(account.total_user_collateral, user_collateral):
        violations.append("user_collateral_sum")

    # Request totals are reset at cycle close, after settlement
    if state.cycle.phase != CyclePhase.ONCHAIN_REBALANCE:
        totals = (
            (RequestType.DEPOSIT, state.cycle.total_deposit_requests),
            (RequestType.REDEEM, state.cycle.total_redemption_requests),
            (RequestType.LIQUIDATE, state.cycle.total_liquidation_requests),
        )
        for request_type, total in totals:
            pending = sum(
                (r.principal_amount for r in state.pending_requests(request_type)),
                Decimal("0"),
            )
            if not approx_equal(total, pending):
                violations.append(f"{request_type.value}_request_totals")

    return violations


def check_requests(state: PoolState) -> List[str]:
    """Unsettled requests always belong to the current cycle."""
    for request in state.pending_requests():
        if request.cycle_submitted != state.cycle.cycle_index:
            return ["request_cycle"]
    return []


def check_all(before: PoolState, after: PoolState) -> List[str]:
    """
    Run every invariant against a committed transition.

    Returns:
        Names of violated invariants (empty when the state is consistent)
    """
    return (
        check_non_negative(after)
        + check_backing(after)
        + check_monotonic(before, after)
        + check_aggregates(after)
        + check_requests(after)
    )
