"""Run the default pool scenario: python -m synthpool."""

import asyncio
import logging

from config.settings import get_settings
from synthpool.persistence import PoolStorage
from synthpool.sandbox import PoolSimulator, default_scenario, format_summary


def main():
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    simulator = PoolSimulator.from_settings(settings, storage=PoolStorage(settings=settings))
    scenario = default_scenario(simulator.strategy, symbol=settings.asset_symbol)
    result = asyncio.run(simulator.run(scenario))
    print(format_summary(result))


if __name__ == "__main__":
    main()
