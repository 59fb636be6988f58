"""
Lending Pool Model for the floor-price lending market.

This module simulates the pool of quote token liquidity that collateral
vaults borrow from. Lenders deposit quote tokens for shares; authorized
vaults draw and return liquidity on behalf of their borrowers.

Interest is accrued lazily. Every state-changing entry point first applies
the interest owed since the last accrual, at the rate the kinked utilization
curve gives for the utilization at that moment:

    below the kink:  rate = base + utilization * slope / kink
    above the kink:  rate = base + slope + (utilization - kink) * slope * multiplier

Interest compounds into total borrows, a reserve-factor share of it is
credited to protocol reserves, and the borrow index advances by the same
factor so vaults can compute each account's debt from a snapshot.

Only the deploying owner may authorize vaults. An authorized vault can borrow
and can write off bad debt left by a recovery that fell short.
"""

import logging
from dataclasses import dataclass

from chain import Contract, non_reentrant
from config import DEFAULT_CONFIG
from constants import WAD, ONE_YEAR_IN_SECONDS
from errors import (
    AuthorizationError,
    EconomicLimitError,
    require_positive,
    UNAUTHORIZED,
    INSUFFICIENT_ALLOWANCE,
    INSUFFICIENT_LIQUIDITY,
    INSUFFICIENT_BALANCE,
    INSUFFICIENT_CASH,
    POOL_INSOLVENT,
)

logger = logging.getLogger(__name__)


@dataclass
class AccrualResult:
    """Outcome of a single accrual step."""
    elapsed: int = 0
    utilization: int = 0
    borrow_rate: int = 0
    interest: int = 0
    reserves_added: int = 0


class LendingPool(Contract):
    """
    Simulates the quote token lending pool shared by a market's vaults.
    """

    def __init__(self, chain, asset, owner, config=DEFAULT_CONFIG, address="lending_pool"):
        super().__init__(chain, address)
        self.asset = asset
        self.owner = owner
        self.rates = config.rates

        # Aggregate borrowed amount including compounded interest
        self.total_borrows = 0

        # Cumulative interest factor, starts at 1.0
        self.borrow_index = WAD

        # Protocol share of accrued interest
        self.total_reserves = 0

        self.last_accrual_time = chain.now()

        # Lender shares
        self.total_shares = 0
        self.shares = {}

        # Vaults allowed to borrow and absorb losses
        self.authorized = set()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def cash(self):
        return self.asset.balance_of(self.address)

    def total_assets(self):
        """Quote tokens held plus quote tokens lent out."""
        return self.cash() + self.total_borrows

    def utilization(self):
        """Share of total assets currently borrowed (WAD)."""
        assets = self.total_assets()
        if assets == 0:
            return 0
        return self.total_borrows * WAD // assets

    def borrow_rate(self, utilization=None):
        """
        Annual borrow rate (WAD) for a utilization (WAD).

        Args:
            utilization: Utilization to price; defaults to the current one

        Returns:
            Annual rate; exactly base + slope at the kink
        """
        if utilization is None:
            utilization = self.utilization()
        r = self.rates
        if utilization <= r.kink:
            return r.base_rate + utilization * r.slope // r.kink
        excess = utilization - r.kink
        return r.base_rate + r.slope + excess * r.slope * r.steep_multiplier // WAD

    def supply_rate(self):
        """Annual rate earned by lenders net of the reserve factor (WAD)."""
        utilization = self.utilization()
        rate = self.borrow_rate(utilization)
        return rate * utilization // WAD * (WAD - self.rates.reserve_factor) // WAD

    def pending_interest_factor(self):
        """Interest factor (WAD) owed since the last accrual."""
        elapsed = self.chain.now() - self.last_accrual_time
        if elapsed <= 0:
            return 0
        return self.borrow_rate() * elapsed // ONE_YEAR_IN_SECONDS

    def pending_borrow_index(self):
        """Borrow index as it would stand after accruing now."""
        return self.borrow_index + self.borrow_index * self.pending_interest_factor() // WAD

    def pending_total_borrows(self):
        return self.total_borrows + self.total_borrows * self.pending_interest_factor() // WAD

    def convert_to_shares(self, assets):
        """Shares minted for ``assets``; 0 while outstanding shares are worth nothing."""
        total = self.preview_total_assets()
        if self.total_shares == 0:
            return assets
        if total == 0:
            return 0
        return assets * self.total_shares // total

    def convert_to_assets(self, shares):
        if self.total_shares == 0:
            return shares
        return shares * self.preview_total_assets() // self.total_shares

    def shares_of(self, account):
        return self.shares.get(account, 0)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def authorize(self, caller, vault):
        """Allow ``vault`` to borrow. Only callable by the owner."""
        if caller != self.owner:
            raise AuthorizationError(UNAUTHORIZED, f"{caller} cannot authorize borrowers")
        self.authorized.add(vault)
        logger.info("Authorized %s to borrow from %s", vault, self.address)

    def _require_authorized(self, caller):
        if caller not in self.authorized:
            raise AuthorizationError(UNAUTHORIZED, f"{caller} is not an authorized vault")

    # ------------------------------------------------------------------
    # Interest
    # ------------------------------------------------------------------

    def accrue(self):
        """
        Apply the interest owed since the last accrual.

        Returns:
            AccrualResult describing the step (all zero when no time passed)
        """
        now = self.chain.now()
        elapsed = now - self.last_accrual_time
        if elapsed <= 0:
            return AccrualResult()

        utilization = self.utilization()
        rate = self.borrow_rate(utilization)
        factor = rate * elapsed // ONE_YEAR_IN_SECONDS

        interest = self.total_borrows * factor // WAD
        reserves_added = interest * self.rates.reserve_factor // WAD

        self.total_borrows += interest
        self.total_reserves += reserves_added
        self.borrow_index += self.borrow_index * factor // WAD
        self.last_accrual_time = now

        logger.debug("Accrued %d interest over %ds at %d (utilization %d)", interest, elapsed, rate, utilization)
        return AccrualResult(elapsed, utilization, rate, interest, reserves_added)

    # ------------------------------------------------------------------
    # Vault operations
    # ------------------------------------------------------------------

    @non_reentrant
    def borrow(self, caller, amount):
        """
        Lend ``amount`` of quote token to an authorized vault.

        Args:
            caller: Authorized vault drawing the funds (also the recipient)
            amount: Quote tokens to lend
        """
        self._require_authorized(caller)
        require_positive(amount)

        # total_assets - total_borrows is the cash, which accrual leaves unchanged
        if self.total_assets() < self.total_borrows + amount:
            raise EconomicLimitError(
                INSUFFICIENT_LIQUIDITY,
                f"Cannot lend {amount}: {self.cash()} available",
            )

        self.accrue()
        self.total_borrows += amount
        self.asset.transfer(self.address, caller, amount)
        return amount

    @non_reentrant
    def repay(self, caller, amount):
        """
        Pull a repayment from ``caller``, capped at total borrows.

        Returns:
            Amount actually repaid
        """
        repaid = min(amount, self.pending_total_borrows())
        if repaid <= 0:
            return 0
        self._require_pullable(caller, repaid)

        self.accrue()
        self.total_borrows -= repaid
        self.asset.transfer_from(self.address, caller, self.address, repaid)
        return repaid

    @non_reentrant
    def absorb_loss(self, caller, amount):
        """
        Write off debt that a recovery could not cover.

        Reduces total borrows with no matching cash inflow, so the loss is
        shared by lenders through the share price.
        """
        self._require_authorized(caller)
        self.accrue()

        loss = min(amount, self.total_borrows)
        self.total_borrows -= loss
        logger.warning("%s absorbed a loss of %d", self.address, loss)
        return loss

    # ------------------------------------------------------------------
    # Lender operations
    # ------------------------------------------------------------------

    def preview_total_assets(self):
        return self.cash() + self.pending_total_borrows()

    @non_reentrant
    def deposit(self, caller, assets):
        """
        Supply quote tokens for lender shares.

        Returns:
            Shares minted
        """
        require_positive(assets)
        if self.total_shares and self.preview_total_assets() == 0:
            raise EconomicLimitError(POOL_INSOLVENT, "Outstanding shares are worth nothing; deposits are closed")
        shares = self.convert_to_shares(assets)
        if shares <= 0:
            raise EconomicLimitError(INSUFFICIENT_BALANCE, "Deposit too small to mint a share")
        self._require_pullable(caller, assets)

        self.accrue()
        self.shares[caller] = self.shares.get(caller, 0) + shares
        self.total_shares += shares
        self.asset.transfer_from(self.address, caller, self.address, assets)

        logger.info("%s deposited %d for %d shares", caller, assets, shares)
        return shares

    @non_reentrant
    def withdraw(self, caller, assets):
        """Burn the shares worth ``assets`` (rounded up) and pay them out."""
        require_positive(assets)
        total = self.preview_total_assets()
        shares = -(-assets * self.total_shares // total) if total else 0
        return self._redeem(caller, shares, assets)

    @non_reentrant
    def redeem(self, caller, shares):
        """
        Burn ``shares`` for their quote token value.

        Returns:
            Assets paid out
        """
        require_positive(shares)
        assets = shares * self.preview_total_assets() // self.total_shares if self.total_shares else 0
        return self._redeem(caller, shares, assets)

    def _redeem(self, caller, shares, assets):
        if shares <= 0 or self.shares.get(caller, 0) < shares:
            raise EconomicLimitError(INSUFFICIENT_BALANCE, f"{caller} holds {self.shares_of(caller)} shares")
        if assets <= 0:
            raise EconomicLimitError(INSUFFICIENT_BALANCE, "Redemption is worth nothing")
        if assets > self.cash():
            raise EconomicLimitError(INSUFFICIENT_CASH, f"Only {self.cash()} is not lent out")

        self.accrue()
        self.shares[caller] -= shares
        self.total_shares -= shares
        self.asset.transfer(self.address, caller, assets)

        logger.info("%s redeemed %d shares for %d", caller, shares, assets)
        return assets

    def _require_pullable(self, owner, amount):
        if self.asset.allowance(owner, self.address) < amount:
            raise AuthorizationError(INSUFFICIENT_ALLOWANCE, f"{owner} has not approved {amount}")
        if self.asset.balance_of(owner) < amount:
            raise EconomicLimitError(INSUFFICIENT_BALANCE, f"{owner} holds {self.asset.balance_of(owner)}")
