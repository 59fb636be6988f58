"""
Simple simulation for the floor-price lending market.

This script walks one market through launch, a borrow at the floor price,
interest accrual that pushes the position under water, and the recovery of
that position by a keeper.
"""

import sys
import os

# Add the core directory to the path
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "core"))
from chain import Chain
from config import MarketConfig, FeeSchedule
from constants import WAD
from logging_setup import configure_logging
from market import launch_market
from market_token import MarketToken


def fmt(amount):
    return f"{amount / WAD:,.6f}"


def run_basic_simulation():
    configure_logging("INFO")
    chain = Chain(timestamp=1_700_000_000)

    # Flat 0.3% fee so the floor sits close to spot
    config = MarketConfig(fees=FeeSchedule(start_fee_bps=30, end_fee_bps=30))

    quote = MarketToken("Wrapped Quote", "WQT", owner="quote_admin")
    quote.add_minter("quote_admin", "quote_admin")
    for account, amount in (("creator", 1_000), ("trader", 10), ("lender", 10), ("whale", 500)):
        quote.mint("quote_admin", account, amount * WAD)

    print("Launching market...")
    market = launch_market(chain, "creator", quote, 1_000_000 * WAD, 1_000_000 * WAD, 1_000 * WAD,
                           config=config)
    market.supply_liquidity("lender", 10 * WAD)

    print("\nTrader buys into the pool...")
    bought = market.buy("trader", 10 * WAD)
    snap = market.snapshot()
    print(f"  Trader received {fmt(bought)} TOK")
    print(f"  Fee: {snap.fee_bps} bps, spot: {fmt(snap.spot_price)}, pMin: {fmt(snap.pmin)}")

    print("\nTrader borrows the full floor-price capacity...")
    borrowed = market.open_position("trader", bought)
    print(f"  Borrowed {fmt(borrowed)} WQT at {market.lending_pool.borrow_rate() / WAD:.2%} a year")

    print("\nNinety days of interest...")
    chain.skip(90 * 24 * 60 * 60)
    state = market.account_state("trader")
    print(f"  Debt {fmt(state.debt)}, healthy: {state.is_healthy}")

    if not state.is_healthy:
        market.vault.mark_otm("keeper", "trader")
        print("  Marked out of the money, waiting out the grace period")
        market.buy("whale", 500 * WAD)
        chain.skip(config.grace_period + 1)
        result = market.vault.recover("keeper", "trader")
        print(f"  Recovered: sold {fmt(result.collateral_sold)} TOK for {fmt(result.quote_received)} WQT")
        print(f"  Bounty {fmt(result.bounty)}, lenders {fmt(result.surplus_to_lenders)}, loss {fmt(result.loss)}")

    print("\nFinal market state:")
    for key, value in market.snapshot().as_dict().items():
        print(f"  {key}: {value}")


if __name__ == "__main__":
    run_basic_simulation()
