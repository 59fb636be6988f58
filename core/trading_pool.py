"""
Trading Pool Model for the floor-price lending market.

This module simulates the constant-product pool that every market trades
through. The pool holds the collateral token and the quote token and issues
pool shares against them.

The pool differs from a plain constant-product pair in three ways:
1. The trade fee decays linearly from a launch fee to an end fee as the
   collateral token supply is burned.
2. A fixed share of the k growth produced by trading fees is captured as new
   pool shares minted to a single fee router.
3. Pool shares can only be transferred to the fee router or back to the pool
   itself, so the launch liquidity stays locked forever.

There is no standalone operation that resyncs reserves to the raw token
balances, so a donation alone never moves pMin. The next trade or
add_liquidity does move the reserves to the full balances. A trade counts the
donation as extra input; add_liquidity acts as a sync and credits the donated
tokens to a depositor that matches them with the other token, as a
constant-product pair's mint does.
"""

import logging
from math import isqrt

from chain import Contract, non_reentrant
from config import DEFAULT_CONFIG
from constants import BASIS_POINTS, DEAD_ADDRESS, MAX_UINT112, MINIMUM_LIQUIDITY
from errors import (
    AuthorizationError,
    EconomicLimitError,
    StateError,
    require_positive,
    UNAUTHORIZED,
    LP_TRANSFER_RESTRICTED,
    INSUFFICIENT_LIQUIDITY,
    INSUFFICIENT_INPUT_AMOUNT,
    INSUFFICIENT_OUTPUT_AMOUNT,
    INSUFFICIENT_LIQUIDITY_MINTED,
    INSUFFICIENT_LIQUIDITY_BURNED,
    INSUFFICIENT_BALANCE,
    K,
    ALREADY_INITIALIZED,
    INVALID_TO,
    OVERFLOW,
)
from floor_price import calculate_pmin, spot_price

logger = logging.getLogger(__name__)


class TradingPool(Contract):
    """
    Simulates the market's constant-product pool and its share token.
    """

    def __init__(self, chain, collateral_token, quote_token, factory, config=DEFAULT_CONFIG,
                 address="trading_pool"):
        super().__init__(chain, address)

        self.collateral_token = collateral_token
        self.quote_token = quote_token
        self.factory = factory
        self.config = config

        # Collateral supply captured at creation, the reference for fee decay
        self.initial_supply = collateral_token.total_supply

        # Reserves as of the last liquidity change or trade
        self.reserve_collateral = 0
        self.reserve_quote = 0

        # reserve product after the last fee capture (0 while fee capture is off)
        self.k_last = 0

        # Pool share token
        self.total_supply = 0
        self.balances = {}

        self.fee_router = None

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def get_reserves(self):
        """Returns (collateral reserve, quote reserve)."""
        return self.reserve_collateral, self.reserve_quote

    def current_fee_bps(self):
        """
        Trade fee in basis points for the current collateral supply.

        The fee falls linearly with the amount burned since launch and is
        floored at the end fee once the decay target has been burned.
        """
        fees = self.config.fees
        burned = max(self.initial_supply - self.collateral_token.total_supply, 0)
        if burned >= fees.decay_target:
            return fees.end_fee_bps
        return fees.start_fee_bps - (fees.start_fee_bps - fees.end_fee_bps) * burned // fees.decay_target

    def pmin(self):
        """Floor price of the collateral token in quote units (WAD)."""
        return calculate_pmin(
            self.reserve_collateral,
            self.reserve_quote,
            self.collateral_token.total_supply,
            self.current_fee_bps(),
            self.config.liq_bounty_bps,
        )

    def spot_price(self):
        return spot_price(self.reserve_collateral, self.reserve_quote)

    def get_amount_out(self, amount_in, token_in):
        """
        Output of an exact-input trade at the current fee.

        Args:
            amount_in: Amount of ``token_in`` sent to the pool
            token_in: The collateral token or the quote token

        Returns:
            Amount of the other token the pool would release
        """
        if token_in is self.collateral_token:
            reserve_in, reserve_out = self.reserve_collateral, self.reserve_quote
        elif token_in is self.quote_token:
            reserve_in, reserve_out = self.reserve_quote, self.reserve_collateral
        else:
            raise ValueError(f"{token_in!r} is not traded by this pool")

        if amount_in <= 0 or reserve_in == 0 or reserve_out == 0:
            return 0

        amount_in_with_fee = amount_in * (BASIS_POINTS - self.current_fee_bps())
        return amount_in_with_fee * reserve_out // (reserve_in * BASIS_POINTS + amount_in_with_fee)

    def balance_of(self, account):
        """Pool share balance of ``account``."""
        return self.balances.get(account, 0)

    # ------------------------------------------------------------------
    # Share token
    # ------------------------------------------------------------------

    def set_fee_router(self, caller, router):
        """One-time registration of the fee collection principal."""
        if caller != self.factory:
            raise AuthorizationError(UNAUTHORIZED, f"{caller} cannot set the fee router")
        if self.fee_router is not None:
            raise StateError(ALREADY_INITIALIZED, "Fee router already set")

        self.fee_router = router
        if self.total_supply > 0:
            self.k_last = self.reserve_collateral * self.reserve_quote
        logger.info("Registered fee router %s on %s", router, self.address)

    def transfer(self, sender, recipient, amount):
        """
        Moves pool shares. Only the fee router and the pool itself may receive.
        """
        if recipient not in (self.fee_router, self.address) or recipient is None:
            raise AuthorizationError(
                LP_TRANSFER_RESTRICTED,
                f"Pool shares can only move to the fee router or the pool, not {recipient}",
            )
        require_positive(amount)
        if self.balances.get(sender, 0) < amount:
            raise EconomicLimitError(INSUFFICIENT_BALANCE, f"{sender} holds {self.balance_of(sender)} shares")

        self.balances[sender] -= amount
        self.balances[recipient] = self.balances.get(recipient, 0) + amount
        return True

    # ------------------------------------------------------------------
    # Liquidity
    # ------------------------------------------------------------------

    @non_reentrant
    def add_liquidity(self, caller, to):
        """
        Mints shares for tokens transferred to the pool since the last update.

        Everything above the stored reserves counts as deposited, donations
        included, and the reserves move to the full balances.

        Args:
            caller: Account submitting the deposit
            to: Recipient of the new shares

        Returns:
            Shares minted to ``to``
        """
        balance_collateral = self.collateral_token.balance_of(self.address)
        balance_quote = self.quote_token.balance_of(self.address)
        amount_collateral = balance_collateral - self.reserve_collateral
        amount_quote = balance_quote - self.reserve_quote

        fee_shares = self._pending_fee_shares()
        supply = self.total_supply + fee_shares

        if supply == 0:
            liquidity = isqrt(amount_collateral * amount_quote) - MINIMUM_LIQUIDITY
        else:
            liquidity = min(
                amount_collateral * supply // self.reserve_collateral,
                amount_quote * supply // self.reserve_quote,
            )
        if liquidity <= 0:
            raise EconomicLimitError(INSUFFICIENT_LIQUIDITY_MINTED, "Deposit mints no shares")
        self._check_reserve_width(balance_collateral, balance_quote)

        self._mint_fee(fee_shares)
        if self.total_supply == 0:
            # First deposit permanently locks the minimum liquidity
            self._mint(DEAD_ADDRESS, MINIMUM_LIQUIDITY)
        self._mint(to, liquidity)

        self._update(balance_collateral, balance_quote)
        if self.fee_router is not None:
            self.k_last = self.reserve_collateral * self.reserve_quote

        logger.info("%s added %d/%d liquidity to %s, minted %d shares to %s",
                    caller, amount_collateral, amount_quote, self.address, liquidity, to)
        return liquidity

    @non_reentrant
    def remove_liquidity(self, caller, to):
        """
        Burns the shares sent to the pool and pays out the underlying tokens.

        Returns:
            (collateral out, quote out)
        """
        balance_collateral = self.collateral_token.balance_of(self.address)
        balance_quote = self.quote_token.balance_of(self.address)
        liquidity = self.balance_of(self.address)

        fee_shares = self._pending_fee_shares()
        supply = self.total_supply + fee_shares

        amount_collateral = liquidity * balance_collateral // supply if supply else 0
        amount_quote = liquidity * balance_quote // supply if supply else 0
        if amount_collateral <= 0 or amount_quote <= 0:
            raise EconomicLimitError(INSUFFICIENT_LIQUIDITY_BURNED, "Burn releases no tokens")

        self._mint_fee(fee_shares)
        self.balances[self.address] -= liquidity
        self.total_supply -= liquidity

        self._update(balance_collateral - amount_collateral, balance_quote - amount_quote)
        if self.fee_router is not None:
            self.k_last = self.reserve_collateral * self.reserve_quote

        self.collateral_token.transfer(self.address, to, amount_collateral)
        self.quote_token.transfer(self.address, to, amount_quote)

        logger.info("%s removed %d shares from %s for %d/%d", caller, liquidity, self.address,
                    amount_collateral, amount_quote)
        return amount_collateral, amount_quote

    @non_reentrant
    def capture_fee(self, caller):
        """
        Mints the fee router's share of the k growth since the last capture.

        Returns:
            Shares minted to the fee router
        """
        if self.fee_router is None or caller != self.fee_router:
            raise AuthorizationError(UNAUTHORIZED, f"{caller} is not the fee router")

        fee_shares = self._pending_fee_shares()
        self._mint_fee(fee_shares)
        self.k_last = self.reserve_collateral * self.reserve_quote
        return fee_shares

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    @non_reentrant
    def trade(self, caller, amount_collateral_out, amount_quote_out, to):
        """
        Releases the requested outputs against inputs already sent to the pool.

        Inputs are measured as the balance above the stored reserves, so any
        mix of deposit-then-call is accepted. The fee-adjusted balances must
        keep the reserve product from falling.

        Args:
            caller: Account submitting the trade
            amount_collateral_out: Collateral token to release
            amount_quote_out: Quote token to release
            to: Recipient of the outputs
        """
        if amount_collateral_out <= 0 and amount_quote_out <= 0:
            raise EconomicLimitError(INSUFFICIENT_OUTPUT_AMOUNT, "Trade requests no output")
        if amount_collateral_out < 0 or amount_quote_out < 0:
            raise EconomicLimitError(INSUFFICIENT_OUTPUT_AMOUNT, "Outputs cannot be negative")

        reserve_collateral, reserve_quote = self.reserve_collateral, self.reserve_quote
        if amount_collateral_out >= reserve_collateral or amount_quote_out >= reserve_quote:
            raise EconomicLimitError(INSUFFICIENT_LIQUIDITY, "Requested output exceeds reserves")
        if to in (self.collateral_token.address, self.quote_token.address):
            raise StateError(INVALID_TO, f"Cannot trade to token address {to}")

        # Balances as they will stand once the outputs have left
        balance_collateral = self.collateral_token.balance_of(self.address) - amount_collateral_out
        balance_quote = self.quote_token.balance_of(self.address) - amount_quote_out

        amount_collateral_in = max(balance_collateral - (reserve_collateral - amount_collateral_out), 0)
        amount_quote_in = max(balance_quote - (reserve_quote - amount_quote_out), 0)
        if amount_collateral_in == 0 and amount_quote_in == 0:
            raise EconomicLimitError(INSUFFICIENT_INPUT_AMOUNT, "No input received")

        fee_bps = self.current_fee_bps()
        adjusted_collateral = balance_collateral * BASIS_POINTS - amount_collateral_in * fee_bps
        adjusted_quote = balance_quote * BASIS_POINTS - amount_quote_in * fee_bps
        if adjusted_collateral * adjusted_quote < reserve_collateral * reserve_quote * BASIS_POINTS ** 2:
            raise EconomicLimitError(K, "Trade would decrease the fee-adjusted reserve product")
        self._check_reserve_width(balance_collateral, balance_quote)

        self._update(balance_collateral, balance_quote)

        if amount_collateral_out > 0:
            self.collateral_token.transfer(self.address, to, amount_collateral_out)
        if amount_quote_out > 0:
            self.quote_token.transfer(self.address, to, amount_quote_out)

        logger.debug("Trade on %s by %s: in %d/%d out %d/%d fee %d bps", self.address, caller,
                     amount_collateral_in, amount_quote_in, amount_collateral_out, amount_quote_out, fee_bps)
        return amount_collateral_in, amount_quote_in

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _pending_fee_shares(self):
        """
        Shares owed to the fee router for k growth since ``k_last``.

        Minting m shares against supply S hands the router m / (S + m) of the
        pool; m is chosen so that equals the capture share of the growth in
        sqrt(k), leaving the rest compounding for depositors.
        """
        if self.fee_router is None or self.k_last == 0 or self.total_supply == 0:
            return 0

        root_k = isqrt(self.reserve_collateral * self.reserve_quote)
        root_k_last = isqrt(self.k_last)
        if root_k <= root_k_last:
            return 0

        share = self.config.fee_capture_bps
        numerator = self.total_supply * (root_k - root_k_last) * share
        denominator = root_k * BASIS_POINTS - (root_k - root_k_last) * share
        return numerator // denominator

    def _mint_fee(self, fee_shares):
        if fee_shares > 0:
            self._mint(self.fee_router, fee_shares)
            logger.info("Captured %d fee shares for %s on %s", fee_shares, self.fee_router, self.address)

    def _mint(self, to, amount):
        self.balances[to] = self.balances.get(to, 0) + amount
        self.total_supply += amount

    def _check_reserve_width(self, balance_collateral, balance_quote):
        if balance_collateral > MAX_UINT112 or balance_quote > MAX_UINT112:
            raise StateError(OVERFLOW, "Reserve exceeds the 112-bit domain")

    def _update(self, balance_collateral, balance_quote):
        self.reserve_collateral = balance_collateral
        self.reserve_quote = balance_quote
