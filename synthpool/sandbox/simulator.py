"""Multi-cycle pool simulation engine."""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from config.settings import Settings, get_settings
from synthpool.analytics import PoolMetricsCalculator
from synthpool.core.errors import PoolError
from synthpool.keeper import ManagedPool, PoolKeeper, StaticPriceFeed
from synthpool.persistence import PoolStorage
from synthpool.protocol import AssetOracle, InMemoryToken, ManualClock, PoolStrategy, SyntheticPool

from .models import ActionType, SimulationResult, SimulationScenario, UserAction

logger = logging.getLogger(__name__)

class SimulationError(Exception):
    """The simulated pool could not complete a cycle."""


class PoolSimulator:
    """
    Engine for running a pool through a scripted price path.

    Each cycle: settled requests are claimed, the cycle's user actions are
    submitted, the clock moves one cycle length forward and the keeper
    polls until the cycle closes. The keeper operates every LP, so each
    cycle closes without waiting for the fallback timeout. With a storage
    attached, the final state is saved as a snapshot named after the
    scenario.
    """

    def __init__(
        self,
        strategy: PoolStrategy,
        max_polls_per_cycle: int = 10,
        max_retries: int = 3,
        oracle_source: str = "price-keeper",
        market_open_window: int = 3600,
        storage: Optional[PoolStorage] = None,
    ):
        """
        Initialize simulator.

        Args:
            strategy: Pool parameters
            max_polls_per_cycle: Keeper polls allowed before a cycle counts as stuck
            max_retries: Keeper price-delivery retries
            oracle_source: Identity the keeper fulfils oracle requests as
            market_open_window: Max sample age for the oracle's market-open check
            storage: Where to save the final pool state, if anywhere
        """
        self.strategy = strategy
        self.max_polls_per_cycle = max_polls_per_cycle
        self.max_retries = max_retries
        self.oracle_source = oracle_source
        self.market_open_window = market_open_window
        self.storage = storage

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, storage: Optional[PoolStorage] = None) -> "PoolSimulator":
        settings = settings or get_settings()
        return cls(
            PoolStrategy.from_settings(settings),
            max_retries=settings.keeper_max_retries,
            oracle_source=settings.oracle_source,
            market_open_window=settings.market_open_window,
            storage=storage,
        )

    def build_pool(self, scenario: SimulationScenario, clock: ManualClock) -> SyntheticPool:
        oracle = AssetOracle(scenario.symbol, self.oracle_source, self.market_open_window)
        return SyntheticPool(
            strategy=self.strategy,
            clock=clock,
            oracle=oracle,
            reserve_token=InMemoryToken("USDC"),
            exposure_token=InMemoryToken(f"x{scenario.symbol}"),
        )

    async def run(self, scenario: SimulationScenario) -> SimulationResult:
        """
        Run a scenario to completion.

        Args:
            scenario: Scenario with LPs, user actions and one price per cycle

        Returns:
            SimulationResult with cycle records and metrics
        """
        logger.info(f"Starting simulation: {scenario.name}, {scenario.cycles} cycles")

        clock = ManualClock(scenario.start_time)
        pool = self.build_pool(scenario, clock)
        feed = StaticPriceFeed({})
        managed = ManagedPool(pool=pool, feed=feed, operated_lps=list(scenario.lp_collateral))
        keeper = PoolKeeper([managed], source=self.oracle_source, max_retries=self.max_retries)

        result = SimulationResult(scenario_name=scenario.name, symbol=scenario.symbol)

        try:
            self._fund(pool, scenario)

            for cycle, price in enumerate(scenario.prices):
                self._claim_settled(pool)
                for action in scenario.actions_for(cycle):
                    self._apply(pool, action)

                feed.set_price(scenario.symbol, price)
                clock.advance(self.strategy.cycle_length)
                await self._close_cycle(pool, keeper, clock)

            self._claim_settled(pool)
        except (PoolError, SimulationError) as e:
            logger.error(f"Simulation {scenario.name} failed: {e}")
            result.success = False
            result.error_message = str(e)

        history = pool.cycle.history()
        result.records = history
        result.final_account = pool.account
        result.metrics = PoolMetricsCalculator().calculate(history, self.strategy.cycle_length)
        result.balances = self._balances(pool, scenario)

        if self.storage is not None:
            self.storage.save_snapshot(pool.store, scenario.name)

        logger.info(
            f"Simulation complete: {len(history)} cycles, "
            f"supply={pool.account.total_exposure_supply}, success={result.success}"
        )
        return result

    def _fund(self, pool: SyntheticPool, scenario: SimulationScenario) -> None:
        for lp, collateral in scenario.lp_collateral.items():
            pool.reserve_token.mint(lp, collateral)
            pool.register_lp(lp, collateral)
        for user in scenario.users:
            pool.reserve_token.mint(user, scenario.user_funding)

    def _apply(self, pool: SyntheticPool, action: UserAction) -> None:
        if action.action == ActionType.DEPOSIT:
            collateral = action.collateral
            if collateral is None:
                collateral = self.strategy.required_user_collateral(action.amount)
            pool.submit_deposit(action.user, action.amount, collateral)
        else:
            amount = action.amount
            if amount is None:
                amount = pool.exposure_token.balance_of(action.user)
            if amount > 0:
                pool.submit_redemption(action.user, amount)

    @staticmethod
    def _claim_settled(pool: SyntheticPool) -> List[str]:
        claimed = []
        for user, request in list(pool.state.requests.items()):
            if request.is_settled and pool.cycle_index > request.cycle_submitted:
                pool.claim(user)
                claimed.append(user)
        return claimed

    async def _close_cycle(self, pool: SyntheticPool, keeper: PoolKeeper, clock: ManualClock) -> None:
        start_index = pool.cycle_index
        for _ in range(self.max_polls_per_cycle):
            await keeper.run_once()
            if pool.cycle_index > start_index:
                return
            # Let the oracle cooldown and onchain timeout run down between polls
            clock.advance(max(self.strategy.oracle_request_cooldown, 1))
        raise SimulationError(f"Cycle {start_index} did not close after {self.max_polls_per_cycle} polls")

    @staticmethod
    def _balances(pool: SyntheticPool, scenario: SimulationScenario) -> Dict[str, Dict[str, Decimal]]:
        owners = list(scenario.lp_collateral) + scenario.users
        return {
            owner: {
                "reserve": pool.reserve_token.balance_of(owner),
                "exposure": pool.exposure_token.balance_of(owner),
            }
            for owner in owners
        }


def default_scenario(strategy: Optional[PoolStrategy] = None, symbol: str = "TSLA") -> SimulationScenario:
    """Two LPs with 5000 each, two users depositing 1000 with 20% collateral."""
    strategy = strategy or PoolStrategy()
    collateral = strategy.required_user_collateral(Decimal("1000"))
    return SimulationScenario(
        name="default",
        symbol=symbol,
        prices=[Decimal(p) for p in ("42069", "43110", "41250", "42800", "44020")],
        lp_collateral={"lp-1": Decimal("5000"), "lp-2": Decimal("5000")},
        actions=[
            UserAction(0, "alice", ActionType.DEPOSIT, Decimal("1000"), collateral),
            UserAction(0, "bob", ActionType.DEPOSIT, Decimal("1000"), collateral),
            UserAction(3, "alice", ActionType.REDEEM),
        ],
        start_time=1_699_920_000,
    )


def format_summary(result: SimulationResult) -> str:
    """
    Format a simulation result for the terminal.

    Args:
        result: Simulation result

    Returns:
        Formatted summary string
    """
    lines = []
    lines.append("=" * 80)
    lines.append(f"POOL SIMULATION: {result.scenario_name} ({result.symbol})")
    lines.append("=" * 80)

    if not result.success:
        lines.append(f"FAILED: {result.error_message}")

    header = f"{'Cycle':>5} {'Price':>12} {'Util':>8} {'Rate':>8} {'Interest':>12} {'LP PnL':>12} {'Skipped':>8}"
    lines.append(header)
    lines.append("-" * 80)
    for r in result.records:
        price = f"{float(r.price):>12.2f}" if r.price is not None else f"{'-':>12}"
        lines.append(
            f"{r.cycle_index:>5} {price} "
            f"{float(r.utilization) * 100:>7.2f}% "
            f"{float(r.interest_rate) * 100:>7.2f}% "
            f"{float(r.interest_accrued):>12.6f} "
            f"{float(r.lp_pnl):>12.4f} "
            f"{'yes' if r.skipped else 'no':>8}"
        )

    if result.metrics:
        m = result.metrics
        lines.append("-" * 80)
        lines.append(f"Mean utilization: {float(m.mean_utilization) * 100:.2f}%")
        lines.append(f"Total interest:   {float(m.total_interest):.6f}")
        if m.realized_volatility is not None:
            lines.append(f"Realized vol:     {float(m.realized_volatility) * 100:.2f}%")
        lines.append(f"Max drawdown:     {float(m.max_drawdown) * 100:.2f}%")

    lines.append("=" * 80)
    return "\n".join(lines)
