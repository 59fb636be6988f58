"""
Visualization simulation for the floor-price lending market.

This script launches a market with the default decaying fee, lets random
trading and steady burning run for a month, and plots spot against pMin.
"""

import numpy as np
import sys
import os

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from chain import Chain
from constants import WAD
from logging_setup import configure_logging
from market import launch_market
from market_token import MarketToken


def run_visualization_simulation():
    configure_logging("WARNING")
    chain = Chain(timestamp=1_700_000_000)

    quote = MarketToken("Wrapped Quote", "WQT", owner="quote_admin")
    quote.add_minter("quote_admin", "quote_admin")
    quote.mint("quote_admin", "creator", 100 * WAD)
    quote.mint("quote_admin", "sim_trader", 200 * WAD)
    quote.mint("quote_admin", "lender", 50 * WAD)

    market = launch_market(chain, "creator", quote, 1_000_000_000 * WAD, 1_000_000_000 * WAD, 100 * WAD)
    market.supply_liquidity("lender", 50 * WAD)

    # Seed the trader with collateral so the simulation can sell as well as buy
    market.buy("sim_trader", 50 * WAD)

    # A few borrowers lock part of their holdings
    rng = np.random.default_rng(7)
    for i in range(5):
        borrower = f"borrower{i}"
        quote.mint("quote_admin", borrower, 5 * WAD)
        bought = market.buy(borrower, int(rng.uniform(1.0, 5.0) * WAD))
        market.open_position(borrower, bought)

    print("Running simulation with visualizations...")
    results = market.simulate_market_scenario(
        30, trades_per_day=24, sell_bias=0.45, burn_per_day=2_000_000 * WAD, seed=42, plot_results=True,
    )

    print("\nSimulation Results:")
    for key, value in results.items():
        print(f"  {key}: {value}")


if __name__ == "__main__":
    run_visualization_simulation()
