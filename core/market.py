"""
Market model for the floor-price lending protocol.

This module combines the individual components into one market: the
collateral token, its trading pool, the quote token lending pool and the
collateral vault. ``launch_market`` is the construction entry point a launch
orchestrator would call; ``FloorLendingMarket`` wires the pieces together and
provides the read-only market interface plus a randomized simulation driver.
"""

import logging
from dataclasses import dataclass, asdict

import numpy as np
import matplotlib.pyplot as plt

from collateral_vault import CollateralVault
from config import DEFAULT_CONFIG
from constants import DEAD_ADDRESS, MAX_UINT112, WAD
from errors import EconomicLimitError, StateError, require_positive, INSUFFICIENT_OUTPUT_AMOUNT, OVERFLOW
from lending_pool import LendingPool
from market_token import MarketToken
from trading_pool import TradingPool

logger = logging.getLogger(__name__)

FACTORY_ADDRESS = "pool_factory"


@dataclass
class MarketSnapshot:
    """Read-only view of a market at one point in time."""
    timestamp: int
    reserve_collateral: int
    reserve_quote: int
    collateral_supply: int
    fee_bps: int
    spot_price: int
    pmin: int
    total_assets: int
    total_borrows: int
    utilization: int
    borrow_rate: int

    def as_dict(self):
        return asdict(self)


class FloorLendingMarket:
    """
    One market: a collateral token, its pool, a lending pool and a vault.
    """

    def __init__(self, chain, collateral_token, quote_token, pool, lending_pool, vault, owner, fee_router):
        self.chain = chain
        self.collateral_token = collateral_token
        self.quote_token = quote_token
        self.pool = pool
        self.lending_pool = lending_pool
        self.vault = vault
        self.owner = owner
        self.fee_router = fee_router

    # ------------------------------------------------------------------
    # Read-only market interface
    # ------------------------------------------------------------------

    def snapshot(self):
        reserve_collateral, reserve_quote = self.pool.get_reserves()
        return MarketSnapshot(
            timestamp=self.chain.now(),
            reserve_collateral=reserve_collateral,
            reserve_quote=reserve_quote,
            collateral_supply=self.collateral_token.total_supply,
            fee_bps=self.pool.current_fee_bps(),
            spot_price=self.pool.spot_price(),
            pmin=self.pool.pmin(),
            total_assets=self.lending_pool.total_assets(),
            total_borrows=self.lending_pool.pending_total_borrows(),
            utilization=self.lending_pool.utilization(),
            borrow_rate=self.lending_pool.borrow_rate(),
        )

    def account_state(self, account):
        return self.vault.get_account_state(account)

    # ------------------------------------------------------------------
    # Trading helpers (exact input, as a router would submit them)
    # ------------------------------------------------------------------

    def buy(self, trader, quote_in):
        """Sell ``quote_in`` quote tokens for collateral. Returns collateral received."""
        amount_out = self._quote_output(quote_in, self.quote_token)
        self.quote_token.transfer(trader, self.pool.address, quote_in)
        self.pool.trade(trader, amount_out, 0, trader)
        return amount_out

    def sell(self, trader, collateral_in):
        """Sell ``collateral_in`` collateral for quote tokens. Returns quote received."""
        amount_out = self._quote_output(collateral_in, self.collateral_token)
        self.collateral_token.transfer(trader, self.pool.address, collateral_in)
        self.pool.trade(trader, 0, amount_out, trader)
        return amount_out

    def _quote_output(self, amount_in, token_in):
        """
        Output the pool would pay for ``amount_in``.

        Every way the trade could be rejected is checked here, before the
        input leaves the trader.
        """
        require_positive(amount_in)
        amount_out = self.pool.get_amount_out(amount_in, token_in)
        if amount_out <= 0:
            raise EconomicLimitError(
                INSUFFICIENT_OUTPUT_AMOUNT,
                f"{amount_in} {token_in.symbol} buys nothing at {self.pool.current_fee_bps()} bps",
            )
        if token_in.balance_of(self.pool.address) + amount_in > MAX_UINT112:
            raise StateError(OVERFLOW, "Trade would push the pool balance past 112 bits")
        return amount_out

    def supply_liquidity(self, lender, amount):
        """Approve and deposit quote tokens into the lending pool."""
        self.quote_token.approve(lender, self.lending_pool.address, amount)
        return self.lending_pool.deposit(lender, amount)

    def open_position(self, borrower, collateral, borrow_amount=None):
        """
        Lock collateral and borrow against it.

        Args:
            borrower: Account holding the collateral
            collateral: Collateral tokens to lock
            borrow_amount: Quote tokens to borrow; defaults to the full floor-price capacity

        Returns:
            Amount borrowed
        """
        self.collateral_token.approve(borrower, self.vault.address, collateral)
        self.vault.deposit_collateral(borrower, collateral)
        if borrow_amount is None:
            borrow_amount = self.vault.max_borrow(borrower) - self.vault.debt_of(borrower)
        borrow_amount = min(borrow_amount, self.lending_pool.cash())
        if borrow_amount <= 0:
            return 0
        return self.vault.borrow(borrower, borrow_amount)

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def simulate_market_scenario(self, days, trades_per_day=24, sell_bias=0.5, trade_size=0.01,
                                 burn_per_day=0, seed=None, plot_results=False):
        """
        Run a simulation of random trading, burning and recovery.

        Each step a trader buys or sells a random fraction of the pool, time
        advances, holders optionally burn collateral, and any unhealthy vault
        position is marked and later recovered by a keeper.

        Args:
            days: Number of days to simulate
            trades_per_day: Trades (and time steps) per day
            sell_bias: Probability that a trade is a sell
            trade_size: Mean trade size as a fraction of the input reserve
            burn_per_day: Collateral burned per day by the burner account
            seed: Seed for the numpy random generator
            plot_results: Whether to plot spot, pMin, fee and utilization

        Returns:
            Dictionary with the final snapshot and event counts
        """
        rng = np.random.default_rng(seed)
        steps = days * trades_per_day
        step_size = 24 * 60 * 60 // trades_per_day
        trader = "sim_trader"
        keeper = "sim_keeper"

        time_points = np.zeros(steps)
        spot_points = np.zeros(steps)
        pmin_points = np.zeros(steps)
        fee_points = np.zeros(steps)
        utilization_points = np.zeros(steps)
        recoveries = 0
        trades = 0

        for i in range(steps):
            reserve_collateral, reserve_quote = self.pool.get_reserves()
            fraction = rng.exponential(trade_size)
            try:
                if rng.random() < sell_bias:
                    amount = min(int(reserve_collateral * fraction), self.collateral_token.balance_of(trader))
                    if amount > 0:
                        self.sell(trader, amount)
                        trades += 1
                else:
                    amount = min(int(reserve_quote * fraction), self.quote_token.balance_of(trader))
                    if amount > 0:
                        self.buy(trader, amount)
                        trades += 1
            except ValueError as exc:
                logger.debug("Simulated trade rejected: %s", exc)

            self.chain.skip(step_size)

            if burn_per_day:
                burn = min(burn_per_day // trades_per_day, self.collateral_token.balance_of(trader))
                if burn > 0:
                    self.collateral_token.burn(trader, burn)

            recoveries += self._run_keeper(keeper)

            time_points[i] = self.chain.now() / (24 * 60 * 60)
            spot_points[i] = self.pool.spot_price() / WAD
            pmin_points[i] = self.pool.pmin() / WAD
            fee_points[i] = self.pool.current_fee_bps()
            utilization_points[i] = self.lending_pool.utilization() / WAD

        if plot_results:
            fig, axs = plt.subplots(4, 1, figsize=(12, 16), sharex=True)

            axs[0].plot(time_points, spot_points, label="spot")
            axs[0].plot(time_points, pmin_points, label="pMin")
            axs[0].set_title('Collateral Price')
            axs[0].set_ylabel('Quote per token')
            axs[0].legend()

            axs[1].plot(time_points, fee_points)
            axs[1].set_title('Trade Fee')
            axs[1].set_ylabel('bps')

            axs[2].plot(time_points, utilization_points)
            axs[2].set_title('Lending Utilization')
            axs[2].set_ylabel('Fraction')

            axs[3].plot(time_points, np.maximum.accumulate(pmin_points))
            axs[3].set_title('Running Max pMin')
            axs[3].set_xlabel('Days')

            plt.tight_layout()
            plt.show()

        final = self.snapshot()
        return {
            'final_snapshot': final,
            'trades': trades,
            'recoveries': recoveries,
            'min_pmin': float(pmin_points.min()) if steps else 0.0,
            'max_spot': float(spot_points.max()) if steps else 0.0,
        }

    def _run_keeper(self, keeper):
        """Mark unhealthy positions and recover those past their grace period."""
        recovered = 0
        for account in list(self.vault.account_borrows):
            state = self.vault.get_account_state(account)
            if not state.is_otm and not state.is_healthy:
                self.vault.mark_otm(keeper, account)
            elif state.is_otm and state.time_until_recoverable == 0:
                self.vault.recover(keeper, account)
                recovered += 1
        return recovered


def launch_market(chain, creator, quote_token, total_supply, pool_collateral, pool_quote,
                  symbol="TOK", owner="protocol_owner", fee_router="fee_router", config=DEFAULT_CONFIG):
    """
    Create a market and seed its pool.

    The whole collateral supply is minted to ``creator``, who deposits
    ``pool_collateral`` of it with ``pool_quote`` quote tokens as the pool's
    principal liquidity. The shares go to the dead address, so that liquidity
    is locked for good.

    Args:
        chain: Execution context
        creator: Account funding the launch
        quote_token: Token the market lends and prices in
        total_supply: Collateral token supply
        pool_collateral: Collateral seeded into the pool
        pool_quote: Quote tokens seeded into the pool
        symbol: Collateral token symbol, also used to namespace addresses
        owner: Principal allowed to authorize vaults on the lending pool
        fee_router: Principal receiving captured trading fees
        config: Market parameters

    Returns:
        FloorLendingMarket
    """
    config.validate()
    if not 0 < pool_collateral <= total_supply:
        raise ValueError("Pool collateral must be positive and within the total supply")

    collateral_token = MarketToken(symbol, symbol, initial_supply=total_supply, initial_holder=creator)
    pool = TradingPool(chain, collateral_token, quote_token, FACTORY_ADDRESS, config, address=f"{symbol}:pool")
    pool.set_fee_router(FACTORY_ADDRESS, fee_router)

    collateral_token.transfer(creator, pool.address, pool_collateral)
    quote_token.transfer(creator, pool.address, pool_quote)
    pool.add_liquidity(creator, DEAD_ADDRESS)

    lending_pool = LendingPool(chain, quote_token, owner, config, address=f"{symbol}:lending_pool")
    vault = CollateralVault(chain, collateral_token, quote_token, pool, lending_pool, config,
                            address=f"{symbol}:vault")
    lending_pool.authorize(owner, vault.address)

    logger.info("Launched %s market: %d supply, pool %d/%d, fee %d bps",
                symbol, total_supply, pool_collateral, pool_quote, pool.current_fee_bps())
    return FloorLendingMarket(chain, collateral_token, quote_token, pool, lending_pool, vault, owner, fee_router)
