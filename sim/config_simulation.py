"""
Config-driven simulation for the floor-price lending market.

Loads market parameters from a YAML file (sim/market.yaml by default), runs
the randomized scenario without plots and prints a summary.

Usage:
    python sim/config_simulation.py [path/to/market.yaml] [days]
"""

import sys
import os

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from chain import Chain
from config import load_market_config
from constants import WAD
from logging_setup import configure_logging
from market import launch_market
from market_token import MarketToken

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "market.yaml")


def run_config_simulation(config_path=DEFAULT_CONFIG_PATH, days=14):
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))
    config = load_market_config(config_path)
    chain = Chain(timestamp=1_700_000_000)

    quote = MarketToken("Wrapped Quote", "WQT", owner="quote_admin")
    quote.add_minter("quote_admin", "quote_admin")
    quote.mint("quote_admin", "creator", 100 * WAD)
    quote.mint("quote_admin", "sim_trader", 100 * WAD)
    quote.mint("quote_admin", "lender", 25 * WAD)

    market = launch_market(chain, "creator", quote, 1_000_000_000 * WAD, 1_000_000_000 * WAD, 100 * WAD,
                           config=config)
    market.supply_liquidity("lender", 25 * WAD)
    market.buy("sim_trader", 20 * WAD)

    results = market.simulate_market_scenario(days, burn_per_day=5_000_000 * WAD, seed=1)
    snap = results["final_snapshot"]

    print("=== Config Simulation ===")
    print(f"Config: {config_path}")
    print(f"Trades: {results['trades']}, recoveries: {results['recoveries']}")
    print(f"Fee: {snap.fee_bps} bps")
    print(f"Spot: {snap.spot_price / WAD:.12f}  pMin: {snap.pmin / WAD:.12f}")
    print(f"Lending utilization: {snap.utilization / WAD:.2%}")
    return results


if __name__ == "__main__":
    path = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_CONFIG_PATH
    days = int(sys.argv[2]) if len(sys.argv) > 2 else 14
    run_config_simulation(path, days)
